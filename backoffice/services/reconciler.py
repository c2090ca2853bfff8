"""
Studio Back-Office — Consistency reconciler.

Finds, in SQL, paid payments and contracts whose surrounding state a
settlement should have produced but did not, and repairs each budget in its
own short transaction through the same idempotent settlement functions. Safe
to run any number of times; a clean database yields no corrections.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database import async_session
from backoffice.errors import ConflictError
from backoffice.lifecycle import (
    CLOSED_PROJECT_STATES, PRE_PAYMENT_BUDGET_STATES, SETTLED_FINAL_BUDGET_STATES,
    ContractStatus, PaymentStatus, PaymentType, ProjectStatus,
)
from backoffice.models.budget import Budget, Contract, Payment
from backoffice.models.project import Project
from backoffice.routes.activity import log_activity
from backoffice.services.budgets import get_budget
from backoffice.services.settlement import EFFECTS, apply_payment

logger = logging.getLogger(__name__)


@dataclass
class Correction:
    entity_type: str
    entity_id: str
    budget_id: str
    effects: list[str] = field(default_factory=list)

    @property
    def description(self) -> str:
        return "; ".join(EFFECTS.get(e, e) for e in self.effects)

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "budget_id": self.budget_id,
            "effects": list(self.effects),
            "description": self.description,
        }


def _drifted_payments():
    """Paid payments whose budget, project or contract disagrees with them."""
    pre_payment = [s.value for s in PRE_PAYMENT_BUDGET_STATES]
    closed = [s.value for s in CLOSED_PROJECT_STATES]
    settled_final = [s.value for s in SETTLED_FINAL_BUDGET_STATES]

    down_payment_drift = and_(
        Payment.type == PaymentType.DOWN_PAYMENT.value,
        or_(
            Budget.project_id.is_(None),
            Budget.status.in_(pre_payment),
            Project.status == ProjectStatus.WAITING_PAYMENT.value,
            and_(
                Contract.id.is_not(None),
                or_(
                    Contract.project_id.is_(None),
                    Contract.status.not_in([ContractStatus.SIGNED.value, ContractStatus.CONFIRMED.value]),
                ),
            ),
        ),
    )
    final_payment_drift = and_(
        Payment.type == PaymentType.FINAL_PAYMENT.value,
        or_(
            Project.status.not_in(closed),
            Project.progress != 100,
            Budget.status.not_in(settled_final),
        ),
    )
    return (
        select(Payment.id, Payment.budget_id)
        .join(Budget, Budget.id == Payment.budget_id)
        .outerjoin(Project, Project.id == Budget.project_id)
        .outerjoin(Contract, Contract.budget_id == Budget.id)
        .where(
            Payment.status == PaymentStatus.PAID.value,
            or_(Payment.project_id.is_(None), down_payment_drift, final_payment_drift),
        )
        .order_by(Payment.type, Payment.created_at)
    )


async def _record(db: AsyncSession, correction: Correction) -> None:
    await log_activity(
        entity_type=correction.entity_type, entity_id=correction.entity_id,
        action="reconciled", icon="🩹", level="WARNING",
        description=correction.description,
        actor="system",
        extra_data={"budget_id": correction.budget_id, "effects": correction.effects},
        db=db,
    )


async def _reconcile_payments(db: AsyncSession) -> list[Correction]:
    corrections: list[Correction] = []
    drifted = (await db.execute(_drifted_payments())).all()
    await db.commit()

    # One transaction per budget; at most one row lock held at a time
    for payment_id, budget_id in drifted:
        budget = await get_budget(db, budget_id, lock=True)
        payment = next((p for p in budget.payments if p.id == payment_id), None)
        if payment is None:
            await db.commit()
            continue
        try:
            effects, _project = await apply_payment(db, budget, payment)
        except ConflictError as e:
            await db.rollback()
            logger.warning(f"⚠️ Reconciler skipped payment {payment_id[:8]}: {e.message}")
            continue
        if effects:
            correction = Correction("payment", payment_id, budget_id, effects)
            await _record(db, correction)
            corrections.append(correction)
        await db.commit()
    return corrections


async def _reconcile_contracts(db: AsyncSession) -> list[Correction]:
    corrections: list[Correction] = []
    result = await db.execute(
        select(Contract.id, Contract.budget_id)
        .join(Budget, Budget.id == Contract.budget_id)
        .where(Contract.project_id.is_(None), Budget.project_id.is_not(None))
    )
    drifted = result.all()
    await db.commit()

    for contract_id, budget_id in drifted:
        budget = await get_budget(db, budget_id, lock=True)
        contract = budget.contract
        if contract is None or contract.project_id is not None or budget.project_id is None:
            await db.commit()
            continue
        contract.project_id = budget.project_id
        correction = Correction("contract", contract_id, budget_id, ["contract_linked"])
        await _record(db, correction)
        corrections.append(correction)
        await db.commit()
    return corrections


async def reconcile(db: AsyncSession) -> list[Correction]:
    """Repair drifted settlement state; returns what was changed."""
    corrections = await _reconcile_payments(db)
    corrections += await _reconcile_contracts(db)

    if corrections:
        logger.warning(f"🩹 Reconciler applied {len(corrections)} correction(s)")
    else:
        logger.debug("Reconciler: nothing to repair")
    return corrections


async def run_reconciliation() -> list[Correction]:
    async with async_session() as session:
        return await reconcile(session)
