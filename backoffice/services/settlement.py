"""
Studio Back-Office — Payment links and settlement.

Settlement is one transaction per gateway event: the event id is recorded in
``gateway_events`` together with every write it causes, and the budget row is
locked so concurrent deliveries of the same checkout serialise. The
``apply_*`` functions are idempotent; the reconciler reuses them to repair
state that drifted.
"""

import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice import lifecycle
from backoffice.auth import Caller
from backoffice.config import settings
from backoffice.errors import ConflictError, ExternalServiceError, NotFoundError, ValidationError
from backoffice.lifecycle import PaymentStatus, PaymentType
from backoffice.models.budget import Budget, GatewayEvent, Payment
from backoffice.models.project import Project
from backoffice.models.user import User
from backoffice.routes.activity import log_activity
from backoffice.services import payment_gateway
from backoffice.services import projects as project_service
from backoffice.services.budgets import get_budget
from backoffice.services.clients import find_or_create_for_contact
from backoffice.services.email_service import (
    send_email,
    build_payment_link_email,
    build_down_payment_confirmation_email,
    build_final_payment_confirmation_email,
)
from backoffice.services.notify import notify_admins
from backoffice.services.payment_gateway import CheckoutCompleted

logger = logging.getLogger(__name__)

# Effect code → audit description
EFFECTS = {
    "payment_paid": "Payment marked as paid",
    "budget_down_payment_paid": "Budget moved to down_payment_paid",
    "project_created": "Project created from budget",
    "project_planning": "Project moved from waiting_payment to planning",
    "payment_linked": "Payment linked to project",
    "contract_linked": "Contract linked to project",
    "contract_signed": "Contract marked as signed",
    "project_completed": "Project marked as completed",
    "project_progress_100": "Project progress set to 100%",
    "budget_completed": "Budget marked as completed",
}


async def first_admin_id(db: AsyncSession) -> str | None:
    result = await db.execute(
        select(User.id).where(User.role == "ADMIN").order_by(User.created_at).limit(1)
    )
    return result.scalar_one_or_none()


# ═══════════════════════════════════════════════════════
#  Payment links
# ═══════════════════════════════════════════════════════

async def _issue_link(
    db: AsyncSession,
    budget: Budget,
    payment_type: PaymentType,
    caller: Caller,
    project: Project | None = None,
    send_by_email: bool = False,
) -> dict:
    amount = lifecycle.payment_amount(payment_type, budget.final_value)
    if amount <= 0:
        raise ValidationError("Budget has no final value; cannot compute the payment amount")

    if payment_type is PaymentType.DOWN_PAYMENT:
        description = f"Entrada 25% - {budget.project_type} - {budget.client_name}"
    else:
        description = f"Pagamento final 75% - {budget.project_type} - {budget.client_name}"

    link = await payment_gateway.create_payment_link(
        lifecycle.to_cents(amount),
        description,
        {
            "budget_id": budget.id,
            "type": payment_type.value,
            "client_name": budget.client_name,
            "client_email": budget.client_email,
            "project_id": project.id if project else None,
        },
    )

    payment = budget.payment_of(payment_type.value)
    if payment is None:
        payment = Payment(budget_id=budget.id, type=payment_type.value)
        budget.payments.append(payment)
    payment.status = PaymentStatus.PENDING.value
    payment.amount = amount
    payment.description = description
    payment.stripe_payment_link_id = link.id
    payment.payment_link_url = link.url
    payment.due_date = lifecycle.utcnow() + timedelta(days=settings.payment_due_days)
    if project is not None and payment.project_id is None:
        payment.project_id = project.id

    await log_activity(
        entity_type="payment", entity_id=budget.id,
        action="link_created", icon="💳",
        description=f"{description}: R$ {amount}",
        actor=caller.actor,
        extra_data={"type": payment_type.value, "amount": str(amount), "link_id": link.id},
        db=db,
    )
    await db.commit()
    await db.refresh(payment)
    logger.info(f"💳 {payment_type.value} link for budget {budget.id[:8]}: {amount}")

    email_sent = False
    if send_by_email and budget.client_email:
        try:
            subject, html = build_payment_link_email(
                budget.client_name, budget.project_type, amount, link.url,
                is_final=payment_type is PaymentType.FINAL_PAYMENT,
            )
            email_sent = (await send_email(to=budget.client_email, subject=subject, body_html=html))["success"]
        except Exception as e:
            logger.warning(f"Payment link email failed for budget {budget.id[:8]}: {e}")

    return {
        "success": True,
        "message": "Payment link created",
        "payment_link": link.url,
        "payment": payment,
        "email_sent": email_sent,
    }


def _already_paid(payment: Payment) -> dict:
    return {
        "success": True,
        "message": "Payment already paid",
        "payment_link": None,
        "payment": payment,
        "email_sent": False,
    }


async def create_down_payment_link(
    db: AsyncSession, budget_id: str, caller: Caller, send_by_email: bool = False,
) -> dict:
    budget = await get_budget(db, budget_id, lock=True)
    existing = budget.payment_of(PaymentType.DOWN_PAYMENT.value)
    if existing is not None and existing.status == PaymentStatus.PAID.value:
        return _already_paid(existing)
    return await _issue_link(db, budget, PaymentType.DOWN_PAYMENT, caller, send_by_email=send_by_email)


async def create_final_payment_link(
    db: AsyncSession, project_id: str, caller: Caller, send_by_email: bool = False,
) -> dict:
    project = await project_service.get_project(db, project_id, lock=True)
    budget = await project_service.budget_of_project(db, project.id, lock=True)
    if budget is None:
        raise NotFoundError("No budget is linked to this project")

    existing = budget.payment_of(PaymentType.FINAL_PAYMENT.value)
    if existing is not None and existing.status == PaymentStatus.PAID.value:
        return _already_paid(existing)

    project_status, budget_status = lifecycle.request_final_payment(project.status, budget.status)
    project.status = project_status.value
    budget.status = budget_status.value
    return await _issue_link(
        db, budget, PaymentType.FINAL_PAYMENT, caller, project=project, send_by_email=send_by_email,
    )


# ═══════════════════════════════════════════════════════
#  Settlement effects (idempotent)
# ═══════════════════════════════════════════════════════

async def apply_down_payment(db: AsyncSession, budget: Budget, payment: Payment) -> tuple[list[str], Project]:
    """Bring budget, project, payment and contract in line with a paid down payment."""
    effects: list[str] = []
    now = lifecycle.utcnow()

    status = lifecycle.settle_down_payment(budget.status)
    if status.value != budget.status:
        budget.status = status.value
        effects.append("budget_down_payment_paid")

    project = await db.get(Project, budget.project_id) if budget.project_id else None
    if project is None:
        client = await find_or_create_for_contact(
            db, budget.client_name, budget.client_email, budget.client_phone,
        )
        project = project_service.new_project_for(
            budget, client, lifecycle.project_after_down_payment(), await first_admin_id(db),
        )
        db.add(project)
        await db.flush()
        budget.project_id = project.id
        effects.append("project_created")
    else:
        project_status = lifecycle.project_after_down_payment(project.status)
        if project_status.value != project.status:
            project.status = project_status.value
            effects.append("project_planning")

    if payment.project_id is None:
        payment.project_id = project.id
        effects.append("payment_linked")

    contract = budget.contract
    if contract is not None:
        if contract.project_id is None:
            contract.project_id = project.id
            effects.append("contract_linked")
        contract_status = lifecycle.link_contract_to_project(contract.status)
        if contract_status.value != contract.status:
            contract.status = contract_status.value
            contract.signed_at = contract.signed_at or now
            effects.append("contract_signed")

    return effects, project


async def apply_final_payment(db: AsyncSession, budget: Budget, payment: Payment) -> tuple[list[str], Project]:
    """Bring project and budget in line with a paid final payment."""
    effects: list[str] = []
    project_id = budget.project_id or payment.project_id
    project = await db.get(Project, project_id) if project_id else None
    if project is None:
        raise ConflictError(f"Final payment of budget {budget.id} has no project to complete")

    if payment.project_id is None:
        payment.project_id = project.id
        effects.append("payment_linked")

    project_status, budget_status = lifecycle.settle_final_payment(project.status, budget.status)
    if project_status.value != project.status:
        project.status = project_status.value
        project.completed_at = project.completed_at or lifecycle.utcnow()
        effects.append("project_completed")
    if project.progress != 100:
        project.progress = 100
        effects.append("project_progress_100")
    if budget_status.value != budget.status:
        budget.status = budget_status.value
        effects.append("budget_completed")

    return effects, project


async def apply_payment(db: AsyncSession, budget: Budget, payment: Payment) -> tuple[list[str], Project]:
    if lifecycle.parse_status(PaymentType, payment.type) is PaymentType.DOWN_PAYMENT:
        return await apply_down_payment(db, budget, payment)
    return await apply_final_payment(db, budget, payment)


# ═══════════════════════════════════════════════════════
#  Webhook settlement
# ═══════════════════════════════════════════════════════

async def _locate_payment(db: AsyncSession, checkout: CheckoutCompleted) -> tuple[Budget, Payment]:
    if checkout.budget_id:
        budget = await get_budget(db, checkout.budget_id, lock=True)
        if checkout.payment_type:
            payment = budget.payment_of(lifecycle.parse_status(PaymentType, checkout.payment_type).value)
            if payment is not None:
                return budget, payment

    lookups = (
        (Payment.stripe_payment_link_id, checkout.payment_link_id),
        (Payment.stripe_payment_id, checkout.reference),
    )
    for column, value in lookups:
        if not value:
            continue
        result = await db.execute(select(Payment).where(column == value))
        payment = result.scalars().first()
        if payment is not None:
            budget = await get_budget(db, payment.budget_id, lock=True)
            return budget, budget.payment_of(payment.type)

    raise NotFoundError("No payment matches this checkout")


async def settle_checkout(db: AsyncSession, checkout: CheckoutCompleted, event_type: str) -> dict:
    """Apply a completed checkout exactly once per gateway event."""
    if await db.get(GatewayEvent, checkout.event_id) is not None:
        logger.info(f"🔁 Gateway event {checkout.event_id} already processed")
        return {"status": "duplicate", "event_id": checkout.event_id}

    try:
        budget, payment = await _locate_payment(db, checkout)

        effects: list[str] = []
        if payment.status != PaymentStatus.PAID.value:
            payment.status = PaymentStatus.PAID.value
            payment.paid_at = lifecycle.utcnow()
            payment.stripe_payment_id = checkout.reference
            effects.append("payment_paid")

        more, project = await apply_payment(db, budget, payment)
        effects += more

        db.add(GatewayEvent(
            id=checkout.event_id, type=event_type, budget_id=budget.id, payment_id=payment.id,
        ))
        await log_activity(
            entity_type="payment", entity_id=budget.id,
            action="settled" if "payment_paid" in effects else "settlement_replayed",
            icon="💰", level="SUCCESS",
            description=f"{payment.type} settled via gateway ({len(effects)} change(s))",
            actor="stripe",
            extra_data={
                "event_id": checkout.event_id,
                "payment_id": payment.id,
                "project_id": project.id,
                "effects": effects,
                "reference": checkout.reference,
            },
            db=db,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        # Only a concurrent delivery that recorded this event first is a duplicate
        if await db.get(GatewayEvent, checkout.event_id) is None:
            raise
        logger.info(f"🔁 Gateway event {checkout.event_id} settled concurrently")
        return {"status": "duplicate", "event_id": checkout.event_id}
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"💰 {payment.type} settled for budget {budget.id[:8]} → project {project.id[:8]} ({', '.join(effects) or 'no changes'})"
    )

    if "payment_paid" in effects:
        await _announce(budget, payment, project)

    return {
        "status": "settled",
        "event_id": checkout.event_id,
        "budget_id": budget.id,
        "payment_id": payment.id,
        "project_id": project.id,
        "effects": effects,
    }


async def _announce(budget: Budget, payment: Payment, project: Project) -> None:
    """Post-commit email + staff notification; failures only get logged."""
    is_final = payment.type == PaymentType.FINAL_PAYMENT.value
    try:
        if is_final:
            subject, html = build_final_payment_confirmation_email(
                budget.client_name, project.name, payment.amount,
                project_service.schedule_url(project.id),
            )
        else:
            subject, html = build_down_payment_confirmation_email(
                budget.client_name, project.name, payment.amount,
            )
        await send_email(to=budget.client_email, subject=subject, body_html=html)
    except Exception as e:
        logger.warning(f"Payment confirmation email failed for budget {budget.id[:8]}: {e}")

    await notify_admins(
        "Pagamento final recebido" if is_final else "Entrada recebida",
        f"{budget.client_name} pagou R$ {payment.amount} ({'75%' if is_final else '25%'}) de {budget.project_type}.",
        category="payment", link=f"/projetos/{project.id}", level="success",
        metadata={"budget_id": budget.id, "project_id": project.id, "payment_id": payment.id},
    )


async def list_payments(db: AsyncSession, budget_id: str) -> list[Payment]:
    budget = await get_budget(db, budget_id)
    return sorted(budget.payments or [], key=lambda p: p.type)


# ═══════════════════════════════════════════════════════
#  Return from checkout
# ═══════════════════════════════════════════════════════

async def verify_payment(db: AsyncSession, session_id: str | None = None, budget_id: str | None = None) -> dict:
    """
    Called when the client lands back from Stripe. A payment already marked
    paid has its settlement re-applied (a no-op when nothing drifted); a
    pending one is settled when Stripe reports its checkout session paid.
    """
    if not session_id and not budget_id:
        raise ValidationError("session_id or budget_id is required")

    session = None
    if session_id:
        try:
            session = await payment_gateway.retrieve_checkout_session(session_id)
        except ExternalServiceError as e:
            logger.warning(f"Checkout session {session_id} could not be verified: {e.message}")

    metadata = session.metadata if session else {}
    checkout = CheckoutCompleted(
        event_id=session.id if session else "",
        budget_id=metadata.get("budget_id") or budget_id,
        payment_type=metadata.get("type") or PaymentType.DOWN_PAYMENT.value,
        payment_link_id=session.payment_link_id if session else None,
        reference=session.reference if session else session_id,
    )

    effects: list[str] = []
    try:
        budget, payment = await _locate_payment(db, checkout)
        payment_id, paid = payment.id, payment.status == PaymentStatus.PAID.value
        if paid:
            effects, _project = await apply_payment(db, budget, payment)
            if effects:
                await log_activity(
                    entity_type="payment", entity_id=budget.id,
                    action="settlement_repaired", icon="🩹", level="WARNING",
                    description="; ".join(EFFECTS.get(e, e) for e in effects),
                    actor="system",
                    extra_data={"payment_id": payment.id, "effects": effects, "session_id": session_id},
                    db=db,
                )
            await db.commit()
        else:
            await db.rollback()
    except Exception:
        await db.rollback()
        raise

    if not paid and session is not None and session.paid:
        result = await settle_checkout(db, checkout, payment_gateway.CHECKOUT_VERIFIED)
        effects = result.get("effects", [])

    payment = await db.get(Payment, payment_id, populate_existing=True)
    budget = await db.get(Budget, payment.budget_id, populate_existing=True)
    project_id = payment.project_id or budget.project_id
    project = await db.get(Project, project_id, populate_existing=True) if project_id else None
    logger.info(f"🔎 Payment {payment.id[:8]} verified after checkout: {payment.status}")
    return {
        "success": payment.status == PaymentStatus.PAID.value,
        "payment": payment,
        "budget": budget,
        "project": project,
        "effects": effects,
    }
