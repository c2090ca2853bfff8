"""
Studio Back-Office — Project execution: edits, site URLs, progress milestones,
team, delivery.
"""

import logging
import re
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice import lifecycle
from backoffice.auth import Caller
from backoffice.config import settings
from backoffice.errors import ConflictError, NotFoundError, ValidationError
from backoffice.lifecycle import DeliveryOutcome, MeetingType, ProjectStatus
from backoffice.models.budget import Budget
from backoffice.models.client import Client
from backoffice.models.project import Project, ProjectMember, ProjectUrlHistory, Schedule
from backoffice.models.user import User
from backoffice.routes.activity import diff_fields, log_activity
from backoffice.services.email_service import send_email, build_progress_email
from backoffice.services.notify import notify_admins, whatsapp_link

logger = logging.getLogger(__name__)

VIDEO_MEETING_LINK = "https://meet.google.com/new"

DEFAULT_PROGRESS_MESSAGES = {
    20: "Concluímos o planejamento e o desenvolvimento do seu projeto começou.",
    50: "Seu projeto chegou à metade do desenvolvimento.",
    70: "Estamos na reta final: 70% do projeto já está pronto.",
    100: "O desenvolvimento foi concluído! Em breve você receberá o link do pagamento final.",
}

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def new_project_for(budget: Budget, client: Client, status: ProjectStatus, created_by_id: str | None) -> Project:
    """A fresh project materialised from ``budget`` (not yet added to a session)."""
    return Project(
        name=f"{budget.project_type} - {budget.client_name}",
        description=budget.details or None,
        status=status.value,
        progress=0,
        client_id=client.id,
        client_name=client.name,
        budget_value=budget.final_value,
        complexity=lifecycle.COMPLEXITY_MAP.get(budget.complexity or "", "medium"),
        timeline=lifecycle.TIMELINE_MAP.get(budget.timeline or "", "normal"),
        created_by_id=created_by_id,
        start_date=lifecycle.utcnow(),
    )


async def get_project(db: AsyncSession, project_id: str, lock: bool = False) -> Project:
    stmt = select(Project).where(Project.id == project_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    project = result.scalar_one_or_none()
    if not project:
        raise NotFoundError(f"Project {project_id} not found")
    return project


async def list_projects(db: AsyncSession, status: str | None = None, limit: int = 100) -> list[Project]:
    stmt = select(Project).order_by(Project.created_at.desc()).limit(limit)
    if status:
        stmt = stmt.where(Project.status == lifecycle.parse_status(ProjectStatus, status).value)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def budget_of_project(db: AsyncSession, project_id: str, lock: bool = False) -> Budget | None:
    stmt = select(Budget).where(Budget.project_id == project_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalars().first()


async def client_contact(db: AsyncSession, project: Project) -> tuple[str | None, str | None, str]:
    """(email, phone, name) — the budget's contact first, then the client's primary entries."""
    budget = await budget_of_project(db, project.id)
    email = budget.client_email if budget else None
    phone = budget.client_phone if budget else None
    name = budget.client_name if budget else project.client_name
    if (not email or not phone) and project.client_id:
        client = await db.get(Client, project.client_id)
        if client:
            email = email or client.primary_email
            phone = phone or client.primary_phone
            name = name or client.name
    return email, phone, name or "Cliente"


# ── Edit ────────────────────────────────────────────────

_EDITABLE_FIELDS = ("name", "description", "budget_value", "complexity", "timeline", "start_date", "due_date")

URL_FIELDS = {"git": "git_repository_url", "test": "test_url"}
URL_CHANGE_REASONS = (
    "migracao_repositorio",
    "mudanca_plataforma",
    "atualizacao_ambiente",
    "erro_url_anterior",
    "solicitacao_cliente",
    "outro",
)


def _snapshot(project: Project) -> dict:
    """Editable fields as JSON-safe values for the audit trail."""
    values = {}
    for field in _EDITABLE_FIELDS:
        value = getattr(project, field)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif value is not None and field == "budget_value":
            value = str(lifecycle.to_money(value))
        values[field] = value
    return values


async def update_project(db: AsyncSession, project_id: str, caller: Caller, data: dict) -> tuple[Project, dict]:
    """Edit descriptive fields. Status and progress only move through the lifecycle operations."""
    for field in ("status", "progress"):
        if data.get(field) is not None:
            raise ValidationError(f"'{field}' cannot be edited directly; use the lifecycle operations")
    if "name" in data and not (data["name"] or "").strip():
        raise ValidationError("Project name cannot be empty")
    if data.get("budget_value") is not None and data["budget_value"] < 0:
        raise ValidationError("Project budget cannot be negative")
    if data.get("complexity") is not None and data["complexity"] not in lifecycle.COMPLEXITY_MAP.values():
        raise ValidationError(f"complexity must be one of: {', '.join(lifecycle.COMPLEXITY_MAP.values())}")
    if data.get("timeline") is not None and data["timeline"] not in lifecycle.TIMELINE_MAP.values():
        raise ValidationError(f"timeline must be one of: {', '.join(lifecycle.TIMELINE_MAP.values())}")

    project = await get_project(db, project_id, lock=True)
    before = _snapshot(project)
    for field in _EDITABLE_FIELDS:
        if field in data and data[field] is not None:
            value = data[field]
            setattr(project, field, value.strip() if isinstance(value, str) else value)
    changes = diff_fields(before, _snapshot(project))

    if changes:
        await log_activity(
            entity_type="project", entity_id=project.id,
            action="updated", icon="✏️",
            description=f"Project {project.name} updated ({', '.join(changes)})",
            actor=caller.actor,
            changes=changes,
            db=db,
        )
    await db.commit()
    await db.refresh(project)
    return project, changes


async def update_url(
    db: AsyncSession,
    project_id: str,
    caller: Caller,
    field: str | None,
    url: str | None,
    reason: str | None,
    description: str | None = None,
) -> ProjectUrlHistory:
    """Replace the repository or test URL; the reason is mandatory and kept in the history."""
    if field not in URL_FIELDS:
        raise ValidationError("field must be 'git' or 'test'")
    url = (url or "").strip()
    if not url:
        raise ValidationError("URL is required")
    if reason not in URL_CHANGE_REASONS:
        raise ValidationError(f"reason must be one of: {', '.join(URL_CHANGE_REASONS)}")

    project = await get_project(db, project_id, lock=True)
    column = URL_FIELDS[field]
    entry = ProjectUrlHistory(
        project_id=project.id,
        field=field,
        old_url=getattr(project, column),
        new_url=url,
        reason=reason,
        description=(description or "").strip() or None,
        changed_by=caller.actor,
    )
    setattr(project, column, url)
    project.last_url_change_reason = reason
    project.last_url_changed_at = lifecycle.utcnow()
    db.add(entry)

    await log_activity(
        entity_type="project", entity_id=project.id,
        action="url_changed", icon="🔗",
        description=f"{field} URL changed ({reason})",
        actor=caller.actor,
        changes={column: {"before": entry.old_url, "after": url}},
        db=db,
    )
    await db.commit()
    await db.refresh(entry)
    logger.info(f"🔗 Project {project.id[:8]} {field} URL → {url}")
    return entry


async def url_history(db: AsyncSession, project_id: str) -> list[ProjectUrlHistory]:
    await get_project(db, project_id)
    result = await db.execute(
        select(ProjectUrlHistory)
        .where(ProjectUrlHistory.project_id == project_id)
        .order_by(ProjectUrlHistory.created_at.desc())
    )
    return list(result.scalars().all())


# ── Progress ────────────────────────────────────────────

async def report_progress(
    db: AsyncSession,
    project_id: str,
    caller: Caller,
    progress: int | None,
    message: str | None = None,
    send_by_email: bool = True,
    send_by_whatsapp: bool = True,
) -> dict:
    if progress is None:
        raise ValidationError("progress is required")
    project = await get_project(db, project_id, lock=True)
    previous = project.status
    project.status = lifecycle.set_progress(project.status, progress).value
    project.progress = progress
    text = (message or "").strip() or DEFAULT_PROGRESS_MESSAGES[progress]

    await log_activity(
        entity_type="project", entity_id=project.id,
        action="progress", icon="📈",
        description=f"Progress updated to {progress}%",
        actor=caller.actor,
        changes={"status": {"before": previous, "after": project.status}},
        extra_data={"progress": progress},
        db=db,
    )
    await db.commit()
    await db.refresh(project)
    logger.info(f"📈 Project {project.id[:8]} at {progress}%")

    email, phone, name = await client_contact(db, project)
    email_sent, email_error = False, None
    if send_by_email:
        if not email:
            email_error = "Client has no email address"
        else:
            try:
                subject, html = build_progress_email(name, project.name, progress, text)
                result = await send_email(to=email, subject=subject, body_html=html)
                email_sent = result["success"]
                if not email_sent:
                    email_error = result["message"]
            except Exception as e:
                logger.warning(f"Progress email failed for project {project.id[:8]}: {e}")
                email_error = str(e)

    whatsapp_url = None
    if send_by_whatsapp and phone:
        whatsapp_url = whatsapp_link(phone, f"Olá {name}! {project.name}: {progress}% concluído. {text}")

    return {
        "success": True,
        "project_id": project.id,
        "progress": project.progress,
        "status": project.status,
        "email_sent": email_sent,
        "email_error": email_error,
        "whatsapp_url": whatsapp_url,
    }


# ── Team ────────────────────────────────────────────────

async def add_member(db: AsyncSession, project_id: str, caller: Caller, user_id: str | None, role: str | None) -> ProjectMember:
    if not user_id:
        raise ValidationError("user_id is required")
    project = await get_project(db, project_id)
    if not await db.get(User, user_id):
        raise NotFoundError(f"User {user_id} not found")
    if any(m.user_id == user_id for m in project.members):
        raise ConflictError("User is already a member of this project")

    member = ProjectMember(user_id=user_id, role=(role or "").strip())
    project.members.append(member)
    await log_activity(
        entity_type="project", entity_id=project.id,
        action="member_added", icon="👥",
        description=f"Team member {user_id[:8]} added as {member.role or 'member'}",
        actor=caller.actor,
        db=db,
    )
    await db.commit()
    await db.refresh(member)
    return member


# ── Delivery schedule ───────────────────────────────────

async def schedule_delivery(
    db: AsyncSession,
    project_id: str,
    day: date | None,
    time: str | None,
    meeting_type: str | None,
    notes: str | None = None,
) -> Schedule:
    if day is None or not time or not meeting_type:
        raise ValidationError("date, time and type are required")
    if not _TIME_RE.match(time):
        raise ValidationError("time must be HH:MM")

    project = await get_project(db, project_id, lock=True)
    schedule = project.schedule
    status = lifecycle.schedule_delivery(
        project.status, schedule.status if schedule else None, meeting_type,
    )
    link = VIDEO_MEETING_LINK if meeting_type == MeetingType.VIDEO.value else None

    if schedule is None:
        schedule = Schedule(
            date=day, time=time, type=meeting_type, status=status.value,
            meeting_link=link, notes=(notes or "").strip() or None,
        )
        project.schedule = schedule
        action = "scheduled"
    else:
        schedule.date = day
        schedule.time = time
        schedule.type = meeting_type
        schedule.status = status.value
        schedule.meeting_link = link
        schedule.notes = lifecycle.append_note(schedule.notes, (notes or "").strip() or None)
        action = "rescheduled"

    await log_activity(
        entity_type="project", entity_id=project.id,
        action=f"delivery_{action}", icon="📅",
        description=f"Delivery {action} for {day.isoformat()} {time} ({meeting_type})",
        actor=f"client:{project.client_name}",
        db=db,
    )
    await db.commit()
    await db.refresh(schedule)
    logger.info(f"📅 Delivery {action} for project {project.id[:8]}: {day} {time}")

    await notify_admins(
        "Entrega agendada" if action == "scheduled" else "Entrega reagendada",
        f"{project.client_name} agendou a entrega de {project.name} para "
        f"{day.strftime('%d/%m/%Y')} às {time} ({meeting_type}).",
        category="schedule", link=f"/projetos/{project.id}",
        metadata={"project_id": project.id},
    )
    return schedule


async def confirm_delivery(
    db: AsyncSession,
    project_id: str,
    caller: Caller,
    success: bool | None,
    failure_reason: str | None = None,
    failure_description: str | None = None,
) -> Schedule:
    if success is None:
        raise ValidationError("success is required")
    outcome = DeliveryOutcome(success, failure_reason, failure_description)

    project = await get_project(db, project_id, lock=True)
    schedule = project.schedule
    if schedule is None:
        raise NotFoundError("No delivery scheduled for this project")

    result = lifecycle.confirm_delivery(schedule.status, outcome)
    now = lifecycle.utcnow()
    schedule.status = result.schedule.value
    if result.project is not None:
        project.status = result.project.value
        project.completed_at = now
    if not outcome.success:
        schedule.notes = lifecycle.append_note(schedule.notes, lifecycle.delivery_failure_note(outcome, now))

    budget = await budget_of_project(db, project.id, lock=True)
    if budget is not None and result.budget is not None:
        budget.status = result.budget.value

    await log_activity(
        entity_type="project", entity_id=project.id,
        action="delivered" if outcome.success else "delivery_failed",
        icon="🏁" if outcome.success else "⚠️",
        level="SUCCESS" if outcome.success else "WARNING",
        description=(
            "Delivery confirmed, project finished"
            if outcome.success
            else f"Delivery failed: {outcome.failure_reason}"
        ),
        actor=caller.actor,
        extra_data={"failure_reason": outcome.failure_reason} if not outcome.success else {},
        db=db,
    )
    await db.commit()
    await db.refresh(schedule)

    if not outcome.success:
        await notify_admins(
            "Falha na entrega",
            f"A entrega de {project.name} precisa ser reagendada. Motivo: {outcome.failure_reason}",
            category="schedule", link=f"/projetos/{project.id}", level="warning",
            metadata={"project_id": project.id},
        )
    return schedule


def schedule_url(project_id: str) -> str:
    return f"{settings.public_app_url}/projetos/{project_id}/agendar"
