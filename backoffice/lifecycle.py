"""
Studio Back-Office — Budget → contract → payment → project lifecycle.

Pure state machine: no database and no I/O. Every transition takes the
current state (plus whatever the event carries) and returns the next state,
or raises ``ConflictError`` / ``ValidationError``. The services apply the
returned states to ORM rows inside their own transactions.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from backoffice.errors import ConflictError, ValidationError


# ═══════════════════════════════════════════════════════
#  States
# ═══════════════════════════════════════════════════════

class BudgetStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CONTRACT_SENT = "contract_sent"
    CONTRACT_SIGNED = "contract_signed"
    DOWN_PAYMENT_PAID = "down_payment_paid"
    FINAL_PAYMENT_SENT = "final_payment_sent"
    FINAL_PAYMENT_PAID = "final_payment_paid"
    COMPLETED = "completed"


class ContractStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    SIGNED_BY_CLIENT = "signed_by_client"
    SIGNED = "signed"
    CONFIRMED = "confirmed"


class PaymentType(str, enum.Enum):
    DOWN_PAYMENT = "down_payment"
    FINAL_PAYMENT = "final_payment"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class ProjectStatus(str, enum.Enum):
    WAITING_PAYMENT = "waiting_payment"
    PLANNING = "planning"
    DEVELOPMENT_20 = "development_20"
    DEVELOPMENT_50 = "development_50"
    DEVELOPMENT_70 = "development_70"
    DEVELOPMENT_100 = "development_100"
    WAITING_FINAL_PAYMENT = "waiting_final_payment"
    COMPLETED = "completed"
    FINISHED = "finished"


class ScheduleStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    PENDING_RESCHEDULE = "pending_reschedule"


class MeetingType(str, enum.Enum):
    VIDEO = "video"
    AUDIO = "audio"


class StaffAction(str, enum.Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


TERMINAL_BUDGET_STATES = frozenset({BudgetStatus.COMPLETED, BudgetStatus.REJECTED})

# Budget states that a settled down payment moves forward from.
PRE_PAYMENT_BUDGET_STATES = frozenset({
    BudgetStatus.PENDING,
    BudgetStatus.SENT,
    BudgetStatus.ACCEPTED,
    BudgetStatus.REJECTED,
    BudgetStatus.CONTRACT_SENT,
    BudgetStatus.CONTRACT_SIGNED,
})

SETTLED_FINAL_BUDGET_STATES = frozenset({BudgetStatus.FINAL_PAYMENT_PAID, BudgetStatus.COMPLETED})
CLOSED_PROJECT_STATES = frozenset({ProjectStatus.COMPLETED, ProjectStatus.FINISHED})

PROGRESS_MILESTONES = (20, 50, 70, 100)

COMPLEXITY_MAP = {"simples": "simple", "medio": "medium", "complexo": "complex"}
TIMELINE_MAP = {"urgente": "urgent", "normal": "normal", "flexivel": "flexible"}

DOWN_PAYMENT_RATIO = Decimal("0.25")
FINAL_PAYMENT_RATIO = Decimal("0.75")
CENTS = Decimal("0.01")


def parse_status(enum_cls, value):
    """Parse a stored status string into its enum, rejecting unknown values."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unknown {enum_cls.__name__} value: {value!r}") from None


# ═══════════════════════════════════════════════════════
#  Events
# ═══════════════════════════════════════════════════════

@dataclass(frozen=True)
class ProposalResponse:
    accepted: bool


@dataclass(frozen=True)
class DeliveryOutcome:
    success: bool
    failure_reason: Optional[str] = None
    failure_description: Optional[str] = None

    def __post_init__(self):
        if not self.success and not (self.failure_reason or "").strip():
            raise ValidationError("failure_reason is required when delivery failed")


@dataclass(frozen=True)
class DeliveryResult:
    schedule: ScheduleStatus
    project: Optional[ProjectStatus]
    budget: Optional[BudgetStatus]


# ═══════════════════════════════════════════════════════
#  Money & time helpers
# ═══════════════════════════════════════════════════════

def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def down_payment_amount(final_value) -> Decimal:
    """25% of the final value, rounded half-up to cents."""
    return (to_money(final_value) * DOWN_PAYMENT_RATIO).quantize(CENTS, rounding=ROUND_HALF_UP)


def final_payment_amount(final_value) -> Decimal:
    return (to_money(final_value) * FINAL_PAYMENT_RATIO).quantize(CENTS, rounding=ROUND_HALF_UP)


def payment_amount(payment_type, final_value) -> Decimal:
    if parse_status(PaymentType, payment_type) is PaymentType.DOWN_PAYMENT:
        return down_payment_amount(final_value)
    return final_payment_amount(final_value)


def to_cents(amount) -> int:
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ═══════════════════════════════════════════════════════
#  Budget transitions
# ═══════════════════════════════════════════════════════

def send_proposal(status) -> BudgetStatus:
    status = parse_status(BudgetStatus, status)
    if status not in (BudgetStatus.PENDING, BudgetStatus.SENT):
        raise ConflictError(f"Cannot send a proposal for a budget in status '{status.value}'")
    return BudgetStatus.SENT


def check_approval_token(expires_at: Optional[datetime], now: datetime) -> None:
    expires_at = ensure_aware(expires_at)
    if expires_at is None or expires_at < now:
        raise ValidationError("Approval link has expired")


def respond_to_proposal(status, event: ProposalResponse) -> BudgetStatus:
    status = parse_status(BudgetStatus, status)
    if status not in (BudgetStatus.PENDING, BudgetStatus.SENT):
        raise ConflictError("This budget has already been answered")
    return BudgetStatus.ACCEPTED if event.accepted else BudgetStatus.REJECTED


def staff_decision(status, action) -> StaffAction:
    """Validate a staff accept/decline; the budget status itself does not move."""
    try:
        action = StaffAction(action)
    except ValueError:
        raise ValidationError("Invalid action, expected 'accept' or 'decline'") from None
    status = parse_status(BudgetStatus, status)
    if status is not BudgetStatus.PENDING:
        raise ConflictError("Only pending budgets can be accepted or declined by staff")
    return action


def issue_contract(status) -> BudgetStatus:
    status = parse_status(BudgetStatus, status)
    if status not in (BudgetStatus.ACCEPTED, BudgetStatus.CONTRACT_SENT):
        raise ConflictError(f"Cannot issue a contract for a budget in status '{status.value}'")
    return BudgetStatus.CONTRACT_SENT


def contract_signed_overlay(status) -> BudgetStatus:
    status = parse_status(BudgetStatus, status)
    if status in (BudgetStatus.ACCEPTED, BudgetStatus.CONTRACT_SENT):
        return BudgetStatus.CONTRACT_SIGNED
    return status


def can_start_project(status, project_id: Optional[str]) -> None:
    status = parse_status(BudgetStatus, status)
    if status not in (BudgetStatus.ACCEPTED, BudgetStatus.DOWN_PAYMENT_PAID):
        raise ConflictError("Budget must be accepted or have its down payment paid")
    if project_id:
        raise ConflictError("A project already exists for this budget")


def settle_down_payment(status) -> BudgetStatus:
    status = parse_status(BudgetStatus, status)
    if status in PRE_PAYMENT_BUDGET_STATES:
        return BudgetStatus.DOWN_PAYMENT_PAID
    return status


# ═══════════════════════════════════════════════════════
#  Contract transitions
# ═══════════════════════════════════════════════════════

def upload_signed_contract(status) -> ContractStatus:
    status = parse_status(ContractStatus, status)
    if status not in (ContractStatus.DRAFT, ContractStatus.SENT):
        raise ConflictError("This contract has already been signed")
    return ContractStatus.SIGNED_BY_CLIENT


def confirm_contract(status) -> ContractStatus:
    parse_status(ContractStatus, status)
    return ContractStatus.CONFIRMED


def link_contract_to_project(status) -> ContractStatus:
    status = parse_status(ContractStatus, status)
    if status is ContractStatus.CONFIRMED:
        return status
    return ContractStatus.SIGNED


# ═══════════════════════════════════════════════════════
#  Project transitions
# ═══════════════════════════════════════════════════════

def project_after_down_payment(status=None) -> ProjectStatus:
    if status is None:
        return ProjectStatus.PLANNING
    status = parse_status(ProjectStatus, status)
    if status is ProjectStatus.WAITING_PAYMENT:
        return ProjectStatus.PLANNING
    return status


def set_progress(status, progress: int) -> ProjectStatus:
    if progress not in PROGRESS_MILESTONES:
        raise ValidationError(
            f"Invalid progress, expected one of {', '.join(str(p) for p in PROGRESS_MILESTONES)}"
        )
    status = parse_status(ProjectStatus, status)
    if status in CLOSED_PROJECT_STATES or status is ProjectStatus.WAITING_FINAL_PAYMENT:
        raise ConflictError(f"Cannot report progress for a project in status '{status.value}'")
    return ProjectStatus(f"development_{progress}")


def request_final_payment(project_status, budget_status) -> tuple[ProjectStatus, BudgetStatus]:
    project_status = parse_status(ProjectStatus, project_status)
    parse_status(BudgetStatus, budget_status)
    if project_status in CLOSED_PROJECT_STATES:
        raise ConflictError("Final payment already settled for this project")
    return ProjectStatus.WAITING_FINAL_PAYMENT, BudgetStatus.FINAL_PAYMENT_SENT


def settle_final_payment(project_status, budget_status) -> tuple[ProjectStatus, BudgetStatus]:
    """Idempotent: re-running on already settled state returns it unchanged."""
    project_status = parse_status(ProjectStatus, project_status)
    budget_status = parse_status(BudgetStatus, budget_status)
    if project_status not in CLOSED_PROJECT_STATES:
        project_status = ProjectStatus.COMPLETED
    if budget_status not in SETTLED_FINAL_BUDGET_STATES:
        budget_status = BudgetStatus.COMPLETED
    return project_status, budget_status


# ═══════════════════════════════════════════════════════
#  Delivery schedule transitions
# ═══════════════════════════════════════════════════════

def schedule_delivery(project_status, schedule_status, meeting_type) -> ScheduleStatus:
    try:
        MeetingType(meeting_type)
    except ValueError:
        raise ValidationError("Invalid meeting type, expected 'video' or 'audio'") from None
    project_status = parse_status(ProjectStatus, project_status)
    if project_status not in (ProjectStatus.COMPLETED, ProjectStatus.WAITING_FINAL_PAYMENT):
        raise ConflictError("Delivery can only be scheduled once the project is complete")
    if schedule_status is not None:
        schedule_status = parse_status(ScheduleStatus, schedule_status)
        if schedule_status is ScheduleStatus.SCHEDULED:
            raise ConflictError("A delivery is already scheduled for this project")
        if schedule_status is ScheduleStatus.COMPLETED:
            raise ConflictError("Delivery for this project is already completed")
    return ScheduleStatus.SCHEDULED


def confirm_delivery(schedule_status, outcome: DeliveryOutcome) -> DeliveryResult:
    schedule_status = parse_status(ScheduleStatus, schedule_status)
    if schedule_status is not ScheduleStatus.SCHEDULED:
        raise ConflictError(f"Delivery is not awaiting confirmation (status '{schedule_status.value}')")
    if outcome.success:
        return DeliveryResult(
            schedule=ScheduleStatus.COMPLETED,
            project=ProjectStatus.FINISHED,
            budget=BudgetStatus.COMPLETED,
        )
    return DeliveryResult(
        schedule=ScheduleStatus.PENDING_RESCHEDULE,
        project=None,
        budget=BudgetStatus.FINAL_PAYMENT_PAID,
    )


def delivery_failure_note(outcome: DeliveryOutcome, now: datetime) -> str:
    note = f"[Falha na entrega - {now.strftime('%d/%m/%Y')}]\nMotivo: {outcome.failure_reason}"
    if outcome.failure_description:
        note += f"\nDescrição: {outcome.failure_description}"
    return note


def append_note(existing: Optional[str], note: Optional[str]) -> Optional[str]:
    """Schedule notes only ever grow."""
    if not note:
        return existing
    if not existing:
        return note
    return f"{existing}\n\n{note}"
