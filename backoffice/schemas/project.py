"""
Studio Back-Office — Project, delivery & evaluation Pydantic schemas.
"""

import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from backoffice.models.evaluation import Evaluation
from backoffice.models.project import Project, ProjectMember, ProjectUrlHistory, Schedule
from backoffice.schemas import iso, money


class ProgressRequest(BaseModel):
    progress: Optional[int] = None
    message: Optional[str] = Field(None, max_length=2000)
    send_by_email: bool = Field(True, alias="sendByEmail")
    send_by_whatsapp: bool = Field(True, alias="sendByWhatsApp")

    model_config = {"populate_by_name": True}


class TeamMemberRequest(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId")
    role: Optional[str] = Field(None, max_length=100)

    model_config = {"populate_by_name": True}


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=300)
    description: Optional[str] = Field(None, max_length=5000)
    budget_value: Optional[Decimal] = Field(None, alias="budget")
    complexity: Optional[str] = None
    timeline: Optional[str] = None
    start_date: Optional[dt.datetime] = Field(None, alias="startDate")
    due_date: Optional[dt.datetime] = Field(None, alias="dueDate")
    # Rejected when present; lifecycle operations own these
    status: Optional[str] = None
    progress: Optional[int] = None

    model_config = {"populate_by_name": True}


class UrlUpdateRequest(BaseModel):
    field: Optional[str] = None
    url: Optional[str] = Field(None, max_length=500)
    reason: Optional[str] = None
    description: Optional[str] = Field(None, max_length=2000)


class ScheduleRequest(BaseModel):
    date: Optional[dt.date] = None
    time: Optional[str] = None
    type: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)


class DeliveryRequest(BaseModel):
    success: Optional[bool] = None
    failure_reason: Optional[str] = Field(None, alias="failureReason", max_length=500)
    failure_description: Optional[str] = Field(None, alias="failureDescription", max_length=2000)

    model_config = {"populate_by_name": True}


class EvaluationRequest(BaseModel):
    kind: Optional[str] = None
    target_id: Optional[str] = Field(None, alias="targetId")
    rating: Optional[int] = None
    participation: Optional[int] = None
    quality: Optional[int] = None
    comment: Optional[str] = Field(None, max_length=2000)

    model_config = {"populate_by_name": True}


def member_to_response(m: ProjectMember) -> dict:
    return {"id": m.id, "user_id": m.user_id, "role": m.role, "created_at": iso(m.created_at)}


def schedule_to_response(s: Schedule) -> dict:
    return {
        "id": s.id,
        "project_id": s.project_id,
        "date": s.date.isoformat() if s.date else None,
        "time": s.time,
        "type": s.type,
        "status": s.status,
        "meeting_link": s.meeting_link,
        "notes": s.notes,
        "updated_at": iso(s.updated_at),
    }


def project_to_response(p: Project, detail: bool = False) -> dict:
    data = {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "status": p.status,
        "progress": p.progress,
        "client_id": p.client_id,
        "client_name": p.client_name,
        "budget": money(p.budget_value),
        "complexity": p.complexity,
        "timeline": p.timeline,
        "created_by_id": p.created_by_id,
        "start_date": iso(p.start_date),
        "due_date": iso(p.due_date),
        "completed_at": iso(p.completed_at),
        "created_at": iso(p.created_at),
    }
    if detail:
        data["git_repository_url"] = p.git_repository_url
        data["test_url"] = p.test_url
        data["last_url_change_reason"] = p.last_url_change_reason
        data["last_url_changed_at"] = iso(p.last_url_changed_at)
        data["members"] = [member_to_response(m) for m in p.members]
        data["schedule"] = schedule_to_response(p.schedule) if p.schedule else None
    return data


def evaluation_to_response(e: Evaluation) -> dict:
    return {
        "id": e.id,
        "kind": e.kind,
        "project_id": e.project_id,
        "evaluator_id": e.evaluator_id,
        "target_id": e.target_id,
        "rating": e.rating,
        "participation": e.participation,
        "quality": e.quality,
        "comment": e.comment or "",
        "created_at": iso(e.created_at),
    }


def url_change_to_response(h: ProjectUrlHistory) -> dict:
    return {
        "id": h.id,
        "project_id": h.project_id,
        "field": h.field,
        "old_url": h.old_url,
        "new_url": h.new_url,
        "reason": h.reason,
        "description": h.description,
        "changed_by": h.changed_by,
        "created_at": iso(h.created_at),
    }
