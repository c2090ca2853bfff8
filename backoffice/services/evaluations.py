"""
Studio Back-Office — Evaluations: team, project, client and project member.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import Caller, Role
from backoffice.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from backoffice.lifecycle import CLOSED_PROJECT_STATES
from backoffice.models.evaluation import Evaluation
from backoffice.models.user import User
from backoffice.routes.activity import log_activity
from backoffice.services.projects import get_project

logger = logging.getLogger(__name__)

KINDS = ("team", "project", "client", "member")
DETAILED_KINDS = ("client", "member")


def _score(name: str, value, required: bool = True) -> int | None:
    if value is None:
        if required:
            raise ValidationError(f"{name} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError(f"{name} must be an integer between 1 and 5")
    return value


async def evaluate(
    db: AsyncSession,
    project_id: str,
    caller: Caller,
    kind: str | None,
    target_id: str | None = None,
    rating: int | None = None,
    participation: int | None = None,
    quality: int | None = None,
    comment: str | None = None,
) -> Evaluation:
    """Record one evaluation; each (kind, project, evaluator, target) only once."""
    if kind not in KINDS:
        raise ValidationError(f"Invalid evaluation kind, expected one of {', '.join(KINDS)}")
    detailed = kind in DETAILED_KINDS
    rating = _score("rating", rating)
    participation = _score("participation", participation, required=detailed)
    quality = _score("quality", quality, required=detailed)

    project = await get_project(db, project_id)

    if kind == "project":
        if caller.role is not Role.ADMIN and project.created_by_id != caller.user_id:
            raise AuthorizationError("Only the project creator or an admin can evaluate the project")
        if project.status not in {s.value for s in CLOSED_PROJECT_STATES}:
            raise ConflictError("The project can only be evaluated once it is completed")
        target_id = project.id
    elif kind == "client":
        if not project.client_id:
            raise ValidationError("This project has no client to evaluate")
        target_id = project.client_id
    else:
        if not target_id:
            raise ValidationError("target_id is required")
        if not await db.get(User, target_id):
            raise NotFoundError(f"User {target_id} not found")
        if kind == "member" and not any(m.user_id == target_id for m in project.members):
            raise ValidationError("The evaluated user is not a member of this project")

    existing = await db.execute(
        select(Evaluation.id).where(
            Evaluation.kind == kind,
            Evaluation.project_id == project.id,
            Evaluation.evaluator_id == caller.user_id,
            Evaluation.target_id == target_id,
        )
    )
    if existing.scalar_one_or_none():
        raise ConflictError("You have already evaluated this")

    evaluation = Evaluation(
        kind=kind,
        project_id=project.id,
        evaluator_id=caller.user_id,
        target_id=target_id,
        rating=rating,
        participation=participation,
        quality=quality,
        comment=(comment or "").strip(),
    )
    db.add(evaluation)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("You have already evaluated this") from None

    await log_activity(
        entity_type="project", entity_id=project.id,
        action=f"evaluated_{kind}", icon="⭐",
        description=f"{kind.capitalize()} evaluation: {rating}/5",
        actor=caller.actor,
        extra_data={"target_id": target_id, "rating": rating},
        db=db,
    )
    await db.commit()
    await db.refresh(evaluation)
    logger.info(f"⭐ {kind} evaluation on project {project.id[:8]} by {caller.user_id[:8]}: {rating}/5")
    return evaluation


async def list_for_project(db: AsyncSession, project_id: str, kind: str | None = None) -> list[Evaluation]:
    await get_project(db, project_id)
    stmt = select(Evaluation).where(Evaluation.project_id == project_id).order_by(Evaluation.created_at)
    if kind:
        stmt = stmt.where(Evaluation.kind == kind)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_all(db: AsyncSession, kind: str | None = None, target_id: str | None = None, limit: int = 200) -> list[Evaluation]:
    stmt = select(Evaluation).order_by(Evaluation.created_at.desc()).limit(limit)
    if kind:
        stmt = stmt.where(Evaluation.kind == kind)
    if target_id:
        stmt = stmt.where(Evaluation.target_id == target_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())
