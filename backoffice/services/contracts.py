"""
Studio Back-Office — Contract issuing, client upload and staff confirmation.
"""

import asyncio
import logging
import time
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice import lifecycle
from backoffice.auth import Caller
from backoffice.config import settings
from backoffice.errors import NotFoundError, ValidationError
from backoffice.lifecycle import ContractStatus
from backoffice.models.budget import Contract
from backoffice.routes.activity import log_activity
from backoffice.services.budgets import get_budget
from backoffice.services.email_service import send_email, build_contract_email
from backoffice.services.notify import notify_admins

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPES = ("application/pdf", "application/x-pdf")


def signing_url(contract_id: str) -> str:
    return f"{settings.public_app_url}/contrato/assinatura/{contract_id}"


async def get_contract(db: AsyncSession, contract_id: str, lock: bool = False) -> Contract:
    stmt = select(Contract).where(Contract.id == contract_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    contract = result.scalar_one_or_none()
    if not contract:
        raise NotFoundError(f"Contract {contract_id} not found")
    return contract


async def get_contract_for_budget(db: AsyncSession, budget_id: str, lock: bool = False) -> Contract:
    stmt = select(Contract).where(Contract.budget_id == budget_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    contract = result.scalar_one_or_none()
    if not contract:
        raise NotFoundError("No contract exists for this budget")
    return contract


# ── Issue ───────────────────────────────────────────────

async def issue_contract(
    db: AsyncSession,
    budget_id: str,
    caller: Caller,
    final_value=None,
    timeline: str | None = None,
    details: str | None = None,
    send_by_email: bool = True,
) -> tuple[Contract, str, bool]:
    """Create (or reset) the budget's contract and email the signing link."""
    budget = await get_budget(db, budget_id, lock=True)
    budget_status = lifecycle.issue_contract(budget.status)

    if final_value is not None:
        value = lifecycle.to_money(final_value)
        if value <= 0:
            raise ValidationError("final_value must be greater than zero")
        budget.final_value = value
    if timeline:
        budget.timeline = timeline
    if details is not None:
        budget.details = details
    budget.status = budget_status.value

    terms = {
        "project_type": budget.project_type,
        "final_value": str(budget.final_value) if budget.final_value is not None else None,
        "timeline": budget.timeline,
        "details": budget.details,
    }

    contract = budget.contract
    if contract is None:
        contract = Contract(status=ContractStatus.DRAFT.value, extra_data=terms)
        budget.contract = contract
        action = "created"
    else:
        contract.status = ContractStatus.DRAFT.value
        contract.extra_data = terms
        contract.sent_at = None
        contract.signed_by_client_at = None
        contract.document_url = None
        contract.document_name = None
        contract.signature_name = None
        contract.confirmed = False
        contract.signed_at = None
        action = "reissued"

    await db.flush()
    await log_activity(
        entity_type="contract", entity_id=contract.id,
        action=action, icon="📝",
        description=f"Contract {action} for {budget.client_name} ({budget.project_type})",
        actor=caller.actor,
        extra_data={"budget_id": budget.id, **terms},
        db=db,
    )
    await db.commit()
    await db.refresh(contract)

    url = signing_url(contract.id)
    email_sent = False
    if send_by_email and budget.client_email:
        try:
            subject, html = build_contract_email(budget.client_name, budget.project_type, url)
            email_sent = (await send_email(to=budget.client_email, subject=subject, body_html=html))["success"]
        except Exception as e:
            logger.warning(f"Contract email failed for budget {budget.id[:8]}: {e}")

    if email_sent:
        contract.status = ContractStatus.SENT.value
        contract.sent_at = lifecycle.utcnow()
        await log_activity(
            entity_type="contract", entity_id=contract.id,
            action="sent", icon="📧",
            description=f"Contract emailed to {budget.client_email}",
            actor=caller.actor,
            db=db,
        )
        await db.commit()
        await db.refresh(contract)

    logger.info(f"📝 Contract {action} for budget {budget.id[:8]} (emailed={email_sent})")
    return contract, url, email_sent


# ── Client upload ───────────────────────────────────────

def _is_pdf(filename: str | None, content_type: str | None) -> bool:
    return (content_type or "").lower() in PDF_CONTENT_TYPES or (filename or "").lower().endswith(".pdf")


def _store_pdf(name: str, data: bytes) -> None:
    folder = Path(settings.upload_dir)
    folder.mkdir(parents=True, exist_ok=True)
    (folder / name).write_bytes(data)


async def upload_signed_contract(
    db: AsyncSession,
    contract_id: str,
    filename: str | None,
    content_type: str | None,
    data: bytes | None,
    signature_name: str | None = None,
) -> Contract:
    # Budget row first, same lock order as settlement
    contract = await get_contract(db, contract_id)
    budget = await get_budget(db, contract.budget_id, lock=True)
    contract = await get_contract(db, contract_id, lock=True)
    status = lifecycle.upload_signed_contract(contract.status)

    if not data:
        raise ValidationError("The signed contract file is required")
    if not _is_pdf(filename, content_type):
        raise ValidationError("Only PDF files are accepted")

    stored_name = f"contrato_{contract.id}_{int(time.time() * 1000)}.pdf"
    await asyncio.to_thread(_store_pdf, stored_name, data)

    now = lifecycle.utcnow()
    contract.status = status.value
    contract.signed_by_client_at = now
    contract.document_url = f"/contratos/{stored_name}"
    contract.document_name = filename or stored_name
    contract.signature_name = (signature_name or "").strip() or None
    contract.extra_data = {**(contract.extra_data or {}), "signature_name": contract.signature_name}

    budget.status = lifecycle.contract_signed_overlay(budget.status).value

    await log_activity(
        entity_type="contract", entity_id=contract.id,
        action="signed_by_client", icon="✍️", level="SUCCESS",
        description=f"Signed contract uploaded by {contract.signature_name or budget.client_name}",
        actor=f"client:{budget.client_name}",
        extra_data={"document_url": contract.document_url, "budget_id": budget.id},
        db=db,
    )
    await db.commit()
    await db.refresh(contract)
    logger.info(f"✍️ Contract {contract.id[:8]} signed by client ({contract.document_name})")

    await notify_admins(
        "Contrato assinado pelo cliente",
        f"{budget.client_name} enviou o contrato assinado de {budget.project_type}.",
        category="contract", link=f"/orcamentos/{budget.id}", level="success",
        metadata={"budget_id": budget.id, "contract_id": contract.id},
    )
    return contract


# ── Staff confirmation ──────────────────────────────────

async def confirm_contract(db: AsyncSession, budget_id: str, caller: Caller) -> Contract:
    contract = await get_contract_for_budget(db, budget_id, lock=True)
    unsigned = contract.status not in (
        ContractStatus.SIGNED_BY_CLIENT.value, ContractStatus.SIGNED.value, ContractStatus.CONFIRMED.value,
    )
    contract.status = lifecycle.confirm_contract(contract.status).value
    contract.confirmed = True
    contract.signed_at = lifecycle.utcnow()

    if unsigned:
        logger.warning(f"Contract {contract.id[:8]} confirmed without a client signature")
    await log_activity(
        entity_type="contract", entity_id=contract.id,
        action="confirmed", icon="🤝",
        level="WARNING" if unsigned else "SUCCESS",
        description="Contract confirmed" + (" without a client-signed document" if unsigned else ""),
        actor=caller.actor,
        extra_data={"budget_id": budget_id, "client_signed": not unsigned},
        db=db,
    )
    await db.commit()
    await db.refresh(contract)
    return contract
