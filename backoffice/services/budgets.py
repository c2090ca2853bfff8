"""
Studio Back-Office — Budget intake, proposal approval and staff decisions.
"""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice import lifecycle
from backoffice.auth import Caller
from backoffice.config import settings
from backoffice.errors import ConflictError, NotFoundError, ValidationError
from backoffice.lifecycle import BudgetStatus, PaymentStatus, ProjectStatus, ProposalResponse
from backoffice.models.budget import Budget
from backoffice.routes.activity import log_activity, diff_fields
from backoffice.services import projects as project_service
from backoffice.services.clients import find_or_create_for_contact
from backoffice.services.email_service import send_email, build_proposal_email
from backoffice.services.notify import notify, notify_admins, whatsapp_link

logger = logging.getLogger(__name__)

_REQUIRED_INTAKE_FIELDS = {"name": "Name", "email": "Email", "project_type": "Project type"}
_UPDATABLE_FIELDS = (
    "final_value", "estimated_min", "estimated_max", "complexity", "timeline", "pages", "details",
)


async def get_budget(db: AsyncSession, budget_id: str, lock: bool = False) -> Budget:
    """Load a budget; ``lock`` takes a row lock for the rest of the transaction."""
    stmt = select(Budget).where(Budget.id == budget_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    budget = result.scalar_one_or_none()
    if not budget:
        raise NotFoundError(f"Budget {budget_id} not found")
    return budget


async def list_budgets(db: AsyncSession, status: str | None = None, limit: int = 100) -> list[Budget]:
    stmt = select(Budget).order_by(Budget.created_at.desc()).limit(limit)
    if status:
        stmt = stmt.where(Budget.status == lifecycle.parse_status(BudgetStatus, status).value)
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ── Intake ──────────────────────────────────────────────

async def create_budget(db: AsyncSession, data: dict, requester: Caller | None = None) -> Budget:
    for field, label in _REQUIRED_INTAKE_FIELDS.items():
        if not (data.get(field) or "").strip():
            raise ValidationError(f"{label} is required")

    budget = Budget(
        status=BudgetStatus.PENDING.value,
        client_name=data["name"].strip(),
        client_email=data["email"].strip(),
        client_phone=data.get("phone") or "",
        company=data.get("company") or "",
        user_id=requester.user_id if requester else None,
        project_type=data["project_type"].strip(),
        complexity=data.get("complexity") or "medio",
        timeline=data.get("timeline") or "normal",
        pages=data.get("pages") or 1,
        features=data.get("features") or [],
        details=data.get("details") or "",
        estimated_min=data.get("estimated_min"),
        estimated_max=data.get("estimated_max"),
    )
    db.add(budget)
    await db.flush()

    await log_activity(
        entity_type="budget", entity_id=budget.id,
        action="created", icon="🆕",
        description=f"Budget requested by {budget.client_name} ({budget.project_type})",
        actor=requester.actor if requester else f"client:{budget.client_name}",
        extra_data={"project_type": budget.project_type, "complexity": budget.complexity},
        db=db,
    )
    await db.commit()
    await db.refresh(budget)
    logger.info(f"✅ Budget created: {budget.id[:8]} – {budget.client_name}")

    await notify_admins(
        "Novo orçamento recebido",
        f"{budget.client_name} solicitou um orçamento de {budget.project_type}.",
        category="budget", link=f"/orcamentos/{budget.id}",
        metadata={"budget_id": budget.id},
    )
    return budget


async def update_budget(db: AsyncSession, budget_id: str, caller: Caller, data: dict) -> Budget:
    budget = await get_budget(db, budget_id, lock=True)
    if budget.status in {s.value for s in lifecycle.TERMINAL_BUDGET_STATES}:
        raise ConflictError(f"Budget is {budget.status} and can no longer be edited")

    before = {f: getattr(budget, f) for f in _UPDATABLE_FIELDS}
    for field in _UPDATABLE_FIELDS:
        if data.get(field) is not None:
            value = data[field]
            if field in ("final_value", "estimated_min", "estimated_max"):
                value = lifecycle.to_money(value)
                if value < 0:
                    raise ValidationError(f"{field} cannot be negative")
            setattr(budget, field, value)
    changes = diff_fields(before, {f: getattr(budget, f) for f in _UPDATABLE_FIELDS})

    if changes:
        await log_activity(
            entity_type="budget", entity_id=budget.id,
            action="updated", icon="✏️",
            description=f"Budget updated ({', '.join(changes)})",
            actor=caller.actor,
            changes={k: {"before": str(v["before"]), "after": str(v["after"])} for k, v in changes.items()},
            db=db,
        )
    await db.commit()
    await db.refresh(budget)
    return budget


async def delete_budget(db: AsyncSession, budget_id: str, caller: Caller, reason: str | None) -> None:
    if not (reason or "").strip():
        raise ValidationError("A deletion reason is required")
    budget = await get_budget(db, budget_id, lock=True)
    if any(p.status == PaymentStatus.PAID.value for p in budget.payments or []):
        raise ConflictError("Budgets with settled payments cannot be deleted")

    await log_activity(
        entity_type="budget", entity_id=budget.id,
        action="deleted", icon="🗑️", level="WARNING",
        description=f"Budget of {budget.client_name} deleted: {reason.strip()}",
        actor=caller.actor,
        extra_data={
            "deletion_reason": reason.strip(),
            "status": budget.status,
            "client_name": budget.client_name,
            "client_email": budget.client_email,
            "project_type": budget.project_type,
        },
        db=db,
    )
    await db.delete(budget)
    await db.commit()
    logger.info(f"🗑️ Budget deleted: {budget_id[:8]} ({reason.strip()})")


# ── Proposal & approval token ───────────────────────────

async def send_proposal(
    db: AsyncSession,
    budget_id: str,
    caller: Caller,
    send_by_email: bool = True,
    send_by_whatsapp: bool = True,
    message: str | None = None,
) -> dict:
    budget = await get_budget(db, budget_id, lock=True)
    budget.status = lifecycle.send_proposal(budget.status).value

    # Re-sending replaces the token, so any older link stops working
    token = secrets.token_urlsafe(32)
    expires_at = lifecycle.utcnow() + timedelta(days=settings.approval_token_ttl_days)
    budget.approval_token = token
    budget.approval_token_expires = expires_at

    approval_url = f"{settings.public_app_url}/orcamento/aprovar/{token}"
    await log_activity(
        entity_type="budget", entity_id=budget.id,
        action="proposal_sent", icon="📤",
        description=f"Proposal sent to {budget.client_name}",
        actor=caller.actor,
        extra_data={"expires_at": expires_at.isoformat(), "email": send_by_email, "whatsapp": send_by_whatsapp},
        db=db,
    )
    await db.commit()
    logger.info(f"📤 Proposal sent for budget {budget.id[:8]} (expires {expires_at:%Y-%m-%d})")

    email_sent = False
    if send_by_email and budget.client_email:
        try:
            subject, html = build_proposal_email(
                budget.client_name, budget.project_type, budget.final_value,
                approval_url, settings.approval_token_ttl_days,
            )
            result = await send_email(to=budget.client_email, subject=subject, body_html=html)
            email_sent = result["success"]
        except Exception as e:
            logger.warning(f"Proposal email failed for budget {budget.id[:8]}: {e}")

    whatsapp_url = None
    if send_by_whatsapp and budget.client_phone:
        text = message or (
            f"Olá {budget.client_name}! Sua proposta de {budget.project_type} está pronta. "
            f"Acesse para aceitar ou recusar: {approval_url}"
        )
        whatsapp_url = whatsapp_link(budget.client_phone, text)

    return {
        "success": True,
        "approval_url": approval_url,
        "whatsapp_url": whatsapp_url,
        "email_sent": email_sent,
        "expires_at": expires_at.isoformat(),
    }


async def get_budget_by_token(db: AsyncSession, token: str, lock: bool = False) -> Budget:
    """Resolve a live approval token; consumed tokens are a conflict, unknown ones 404."""
    stmt = select(Budget).where(Budget.approval_token == token)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    budget = result.scalar_one_or_none()

    if budget is None:
        used = await db.execute(select(Budget.id).where(Budget.consumed_approval_token == token))
        if used.scalar_one_or_none():
            raise ConflictError("This budget has already been answered")
        raise NotFoundError("Approval link not found")

    lifecycle.check_approval_token(budget.approval_token_expires, lifecycle.utcnow())
    if budget.status in (BudgetStatus.ACCEPTED.value, BudgetStatus.REJECTED.value):
        raise ConflictError("This budget has already been answered")
    return budget


async def respond_via_token(db: AsyncSession, token: str, accepted: bool | None) -> Budget:
    if accepted is None:
        raise ValidationError("Field 'accepted' is required")

    budget = await get_budget_by_token(db, token, lock=True)
    budget.status = lifecycle.respond_to_proposal(budget.status, ProposalResponse(accepted)).value
    if accepted:
        budget.user_approved_at = lifecycle.utcnow()

    # Single use: park the token so a replay is recognised and refused
    budget.consumed_approval_token = token
    budget.approval_token = None
    budget.approval_token_expires = None

    await log_activity(
        entity_type="budget", entity_id=budget.id,
        action="accepted" if accepted else "rejected",
        icon="👍" if accepted else "👎",
        level="SUCCESS" if accepted else "INFO",
        description=f"Proposal {'accepted' if accepted else 'rejected'} by {budget.client_name}",
        actor=f"client:{budget.client_name}",
        db=db,
    )
    await db.commit()
    await db.refresh(budget)
    logger.info(f"{'✅' if accepted else '❌'} Budget {budget.id[:8]} {budget.status} via approval link")

    await notify_admins(
        "Proposta aceita" if accepted else "Proposta recusada",
        f"{budget.client_name} {'aceitou' if accepted else 'recusou'} a proposta de {budget.project_type}.",
        category="budget", link=f"/orcamentos/{budget.id}",
        level="success" if accepted else "warning",
        metadata={"budget_id": budget.id},
    )
    return budget


# ── Staff decision ──────────────────────────────────────

async def staff_decide(
    db: AsyncSession, budget_id: str, caller: Caller, action: str | None, reason: str | None = None,
) -> Budget:
    budget = await get_budget(db, budget_id, lock=True)
    decision = lifecycle.staff_decision(budget.status, action)
    now = lifecycle.utcnow()

    if decision is lifecycle.StaffAction.ACCEPT:
        budget.accepted_by = caller.user_id
        budget.accepted_at = now
        budget.declined_by = None
        budget.declined_at = None
        budget.decline_reason = None
    else:
        budget.declined_by = caller.user_id
        budget.declined_at = now
        budget.decline_reason = (reason or "").strip() or None
        budget.accepted_by = None
        budget.accepted_at = None

    accepted = decision is lifecycle.StaffAction.ACCEPT
    await log_activity(
        entity_type="budget", entity_id=budget.id,
        action="staff_accepted" if accepted else "staff_declined",
        icon="✅" if accepted else "⛔",
        description=f"Budget {'accepted' if accepted else 'declined'} by {caller.name or caller.user_id}",
        actor=caller.actor,
        extra_data={"reason": budget.decline_reason} if not accepted else {},
        db=db,
    )
    await db.commit()
    await db.refresh(budget)

    message = (
        f"Seu orçamento de {budget.project_type} foi aceito pela equipe."
        if accepted
        else f"Seu orçamento de {budget.project_type} foi recusado."
        + (f" Motivo: {budget.decline_reason}" if budget.decline_reason else "")
    )
    await notify(
        [budget.user_id],
        "Orçamento aceito" if accepted else "Orçamento recusado",
        message,
        category="budget", link=f"/orcamentos/{budget.id}",
        level="success" if accepted else "warning",
        metadata={"budget_id": budget.id},
    )
    return budget


# ── Manual project start ────────────────────────────────

async def start_project(db: AsyncSession, budget_id: str, caller: Caller):
    budget = await get_budget(db, budget_id, lock=True)
    lifecycle.can_start_project(budget.status, budget.project_id)

    client = await find_or_create_for_contact(
        db, budget.client_name, budget.client_email, budget.client_phone,
    )
    status = (
        ProjectStatus.PLANNING
        if budget.status == BudgetStatus.DOWN_PAYMENT_PAID.value
        else ProjectStatus.WAITING_PAYMENT
    )
    project = project_service.new_project_for(budget, client, status, created_by_id=caller.user_id)
    db.add(project)
    await db.flush()
    budget.project_id = project.id

    await log_activity(
        entity_type="project", entity_id=project.id,
        action="created", icon="🚀",
        description=f"Project '{project.name}' started manually from budget {budget.id[:8]}",
        actor=caller.actor,
        extra_data={"budget_id": budget.id, "client_id": client.id},
        db=db,
    )
    await db.commit()
    await db.refresh(project)
    logger.info(f"🚀 Project {project.id[:8]} started manually for budget {budget.id[:8]}")
    return project
