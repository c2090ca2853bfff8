"""
Studio Back-Office — Email service (SMTP + STARTTLS).

Setup:
1. Create an app password for the sending mailbox
2. Set SMTP_EMAIL and SMTP_APP_PASSWORD (and SMTP_HOST/SMTP_PORT if not Gmail) in .env
"""

import asyncio
import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from backoffice.config import settings

logger = logging.getLogger(__name__)


async def send_email(
    to: str,
    subject: str,
    body_html: str,
    reply_to: str | None = None,
) -> dict:
    """
    Send an email via SMTP.
    Returns {"success": True/False, "message": "..."}; never raises.
    """
    sender = settings.smtp_email
    password = settings.smtp_app_password

    if not sender or not password:
        logger.warning("SMTP not configured — skipping email send")
        return {"success": False, "message": "SMTP credentials not configured. Set SMTP_EMAIL and SMTP_APP_PASSWORD."}
    if not to:
        return {"success": False, "message": "No recipient address"}

    msg = MIMEMultipart("alternative")
    msg["From"] = f"{settings.app_name} <{sender}>"
    msg["To"] = to
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to

    # Plain-text fallback
    plain_text = body_html.replace("<br>", "\n").replace("<br/>", "\n")
    plain_text = re.sub(r"<[^>]+>", "", plain_text)

    msg.attach(MIMEText(plain_text, "plain"))
    msg.attach(MIMEText(body_html, "html"))

    try:
        await asyncio.to_thread(_deliver, sender, password, to, msg.as_string())
        logger.info(f"✅ Email sent to {to}: {subject}")
        return {"success": True, "message": f"Email sent to {to}"}

    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP auth failed: {e}")
        return {"success": False, "message": "SMTP authentication failed. Check your App Password."}
    except Exception as e:
        logger.error(f"Email send failed: {e}")
        return {"success": False, "message": f"Email failed: {str(e)}"}


def _deliver(sender: str, password: str, to: str, raw: str) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
        server.ehlo()
        server.starttls()
        server.ehlo()
        server.login(sender, password)
        server.sendmail(sender, [to], raw)


def _layout(heading: str, body: str, button_url: str | None = None, button_label: str = "") -> str:
    """Shared email chrome: heading, content card, optional call-to-action."""
    button = ""
    if button_url:
        button = f"""
      <div style="text-align: center; margin: 32px 0;">
        <a href="{button_url}" style="display: inline-block; background: #6366f1; color: white; text-decoration: none; padding: 14px 32px; border-radius: 8px; font-size: 16px; font-weight: 600;">
          {button_label} →
        </a>
      </div>"""
    return f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 40px 20px;">
      <div style="text-align: center; margin-bottom: 32px;">
        <h1 style="color: #111; font-size: 24px; margin: 0;">{heading}</h1>
        <p style="color: #666; margin-top: 8px;">{settings.app_name}</p>
      </div>

      <div style="background: #f9fafb; border: 1px solid #e5e7eb; border-radius: 12px; padding: 24px; margin-bottom: 24px;">
        {body}
      </div>
      {button}
      <p style="color: #9ca3af; font-size: 13px; text-align: center; margin-top: 32px;">
        Em caso de dúvidas, responda este email.
      </p>
    </div>
    """


def _p(text: str) -> str:
    return f'<p style="color: #333; font-size: 16px; line-height: 1.6;">{text}</p>'


def _brl(value) -> str:
    """R$ 1.234,56"""
    s = f"{float(value or 0):,.2f}"
    return "R$ " + s.replace(",", "X").replace(".", ",").replace("X", ".")


def build_proposal_email(
    client_name: str,
    project_type: str,
    final_value,
    approval_url: str,
    expires_days: int,
) -> tuple[str, str]:
    """Proposal with the single-use approval link. Returns (subject, html_body)."""
    subject = f"Sua proposta para {project_type} está pronta"
    body = (
        _p(f"Olá <strong>{client_name}</strong>,")
        + _p(
            f"Preparamos a proposta para <strong>{project_type}</strong>"
            + (f" no valor de <strong>{_brl(final_value)}</strong>" if final_value else "")
            + ". Use o botão abaixo para aceitar ou recusar."
        )
        + _p(f"O link é pessoal e expira em {expires_days} dias.")
    )
    return subject, _layout("📄 Proposta pronta", body, approval_url, "Ver proposta")


def build_contract_email(
    client_name: str,
    project_type: str,
    sign_url: str,
) -> tuple[str, str]:
    """Contract signing invitation. Returns (subject, html_body)."""
    subject = f"Contrato de {project_type} — assinatura pendente"
    body = (
        _p(f"Olá <strong>{client_name}</strong>,")
        + _p(
            f"O contrato de <strong>{project_type}</strong> está disponível. "
            "Baixe o documento, assine e envie o PDF assinado pela página abaixo."
        )
    )
    return subject, _layout("📝 Contrato para assinatura", body, sign_url, "Assinar contrato")


def build_payment_link_email(
    client_name: str,
    project_type: str,
    amount,
    payment_url: str,
    is_final: bool = False,
) -> tuple[str, str]:
    label = "pagamento final (75%)" if is_final else "entrada (25%)"
    subject = f"Link de pagamento — {label} de {project_type}"
    body = (
        _p(f"Olá <strong>{client_name}</strong>,")
        + _p(f"Segue o link para o {label} de <strong>{_brl(amount)}</strong>.")
    )
    return subject, _layout("💳 Pagamento", body, payment_url, "Pagar agora")


def build_down_payment_confirmation_email(
    client_name: str,
    project_name: str,
    amount,
) -> tuple[str, str]:
    subject = f"Pagamento confirmado — {project_name}"
    body = (
        _p(f"Olá <strong>{client_name}</strong>,")
        + _p(
            f"Recebemos a entrada de <strong>{_brl(amount)}</strong>. "
            f"O projeto <strong>{project_name}</strong> entrou em planejamento e você "
            "receberá atualizações a cada etapa."
        )
    )
    return subject, _layout("✅ Entrada confirmada", body)


def build_progress_email(
    client_name: str,
    project_name: str,
    progress: int,
    message: str,
) -> tuple[str, str]:
    subject = f"{project_name}: {progress}% concluído"
    bar = (
        '<div style="background: #e5e7eb; border-radius: 8px; height: 12px; margin: 16px 0;">'
        f'<div style="background: #6366f1; width: {progress}%; height: 12px; border-radius: 8px;"></div>'
        "</div>"
    )
    body = _p(f"Olá <strong>{client_name}</strong>,") + bar + _p(message)
    return subject, _layout(f"🚧 {progress}% concluído", body)


def build_final_payment_confirmation_email(
    client_name: str,
    project_name: str,
    amount,
    schedule_url: str,
) -> tuple[str, str]:
    subject = f"Projeto concluído — agende a entrega de {project_name}"
    body = (
        _p(f"Olá <strong>{client_name}</strong>,")
        + _p(
            f"Recebemos o pagamento final de <strong>{_brl(amount)}</strong>. "
            "Agora é só escolher o melhor dia e horário para a reunião de entrega."
        )
    )
    return subject, _layout("🎉 Pagamento final confirmado", body, schedule_url, "Agendar entrega")


def build_notification_email(title: str, message: str, link: str | None = None) -> tuple[str, str]:
    """Generic wrapper used for in-app notifications mirrored to email."""
    return title, _layout(title, _p(message), link, "Abrir painel" if link else "")
