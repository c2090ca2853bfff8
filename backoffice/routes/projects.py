"""
Studio Back-Office — Project API routes: edits, site URLs, progress, team, delivery, evaluations.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import Caller, require_admin, require_evaluator, require_project_manager
from backoffice.database import get_db
from backoffice.errors import NotFoundError
from backoffice.schemas.project import (
    ProgressRequest, ProjectUpdateRequest, UrlUpdateRequest, TeamMemberRequest, ScheduleRequest,
    DeliveryRequest, EvaluationRequest, project_to_response, member_to_response,
    schedule_to_response, evaluation_to_response, url_change_to_response,
)
from backoffice.services import evaluations as evaluation_service
from backoffice.services import projects as project_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/projects", tags=["projects"])
evaluation_router = APIRouter(prefix="/evaluations", tags=["evaluations"])


# ═══════════════════════════════════════════════════════
#  Projects
# ═══════════════════════════════════════════════════════

@router.get("")
async def list_projects(
    status: str | None = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    projects = await project_service.list_projects(db, status=status, limit=limit)
    return {"projects": [project_to_response(p) for p in projects], "total": len(projects)}


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.get_project(db, project_id)
    return project_to_response(project, detail=True)


@router.put("/{project_id}")
async def update_project(
    project_id: str,
    req: ProjectUpdateRequest,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    project, changes = await project_service.update_project(
        db, project_id, caller, req.model_dump(exclude_none=True),
    )
    return {**project_to_response(project, detail=True), "changes": changes}


# ── Site URLs ───────────────────────────────────────────

@router.patch("/{project_id}/url")
async def update_url(
    project_id: str,
    req: UrlUpdateRequest,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    """Replace the repository (git) or test URL, giving a reason."""
    entry = await project_service.update_url(
        db, project_id, caller, req.field, req.url, req.reason, req.description,
    )
    return {"success": True, "change": url_change_to_response(entry)}


@router.get("/{project_id}/url-history")
async def get_url_history(
    project_id: str,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    history = await project_service.url_history(db, project_id)
    return {"history": [url_change_to_response(h) for h in history], "total": len(history)}


@router.post("/{project_id}/progress")
async def report_progress(
    project_id: str,
    req: ProgressRequest,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    """Move the project to a progress milestone and tell the client."""
    return await project_service.report_progress(
        db, project_id, caller,
        progress=req.progress,
        message=req.message,
        send_by_email=req.send_by_email,
        send_by_whatsapp=req.send_by_whatsapp,
    )


# ── Team ────────────────────────────────────────────────

@router.post("/{project_id}/team", status_code=201)
async def add_team_member(
    project_id: str,
    req: TeamMemberRequest,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    member = await project_service.add_member(db, project_id, caller, req.user_id, req.role)
    return member_to_response(member)


@router.get("/{project_id}/team")
async def list_team(
    project_id: str,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.get_project(db, project_id)
    return {"members": [member_to_response(m) for m in project.members], "total": len(project.members)}


# ── Delivery ────────────────────────────────────────────

@router.post("/{project_id}/schedule", status_code=201)
async def schedule_delivery(
    project_id: str,
    req: ScheduleRequest,
    db: AsyncSession = Depends(get_db),
):
    """Public: the client books the delivery meeting from the emailed link."""
    schedule = await project_service.schedule_delivery(
        db, project_id, req.date, req.time, req.type, req.notes,
    )
    return schedule_to_response(schedule)


@router.get("/{project_id}/schedule")
async def get_schedule(project_id: str, db: AsyncSession = Depends(get_db)):
    project = await project_service.get_project(db, project_id)
    if project.schedule is None:
        raise NotFoundError("No delivery scheduled for this project")
    return schedule_to_response(project.schedule)


@router.post("/{project_id}/delivery")
async def confirm_delivery(
    project_id: str,
    req: DeliveryRequest,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    schedule = await project_service.confirm_delivery(
        db, project_id, caller, req.success, req.failure_reason, req.failure_description,
    )
    return {"success": True, "schedule": schedule_to_response(schedule)}


# ── Evaluations ─────────────────────────────────────────

@router.post("/{project_id}/evaluations", status_code=201)
async def create_evaluation(
    project_id: str,
    req: EvaluationRequest,
    caller: Caller = Depends(require_evaluator),
    db: AsyncSession = Depends(get_db),
):
    evaluation = await evaluation_service.evaluate(
        db, project_id, caller,
        kind=req.kind,
        target_id=req.target_id,
        rating=req.rating,
        participation=req.participation,
        quality=req.quality,
        comment=req.comment,
    )
    return evaluation_to_response(evaluation)


@router.get("/{project_id}/evaluations")
async def list_project_evaluations(
    project_id: str,
    kind: str | None = Query(None),
    caller: Caller = Depends(require_evaluator),
    db: AsyncSession = Depends(get_db),
):
    evaluations = await evaluation_service.list_for_project(db, project_id, kind)
    return {"evaluations": [evaluation_to_response(e) for e in evaluations], "total": len(evaluations)}


@evaluation_router.get("")
async def list_evaluations(
    kind: str | None = Query(None),
    target_id: str | None = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    evaluations = await evaluation_service.list_all(db, kind=kind, target_id=target_id, limit=limit)
    return {"evaluations": [evaluation_to_response(e) for e in evaluations], "total": len(evaluations)}
