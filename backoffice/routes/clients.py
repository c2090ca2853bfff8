"""
Studio Back-Office — Client registry API routes.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import Caller, require_admin, require_project_manager
from backoffice.database import get_db
from backoffice.routes.activity import log_activity
from backoffice.schemas import money
from backoffice.schemas.client import (
    ClientVerifyRequest, ClientCreateRequest, ClientUpdateRequest, client_to_response,
)
from backoffice.schemas.project import project_to_response
from backoffice.services import clients as client_service
from backoffice.services.notify import notify_admins

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/clients", tags=["clients"])


@router.post("/verify")
async def verify_client(req: ClientVerifyRequest, db: AsyncSession = Depends(get_db)):
    """
    Public: look a client up by CPF/CNPJ, registering them when unknown.
    Existing records are returned as stored, never overwritten.
    """
    client, is_new = await client_service.find_or_create_by_document(db, req.model_dump())
    if is_new:
        await log_activity(
            entity_type="client", entity_id=client.id,
            action="created", icon="🧾",
            description=f"Client self-registered: {client.name} ({client.document_type})",
            actor=f"client:{client.name}",
            db=db,
        )
        await db.commit()
        await db.refresh(client)
    return {"is_new_client": is_new, "client": client_to_response(client)}


@router.get("")
async def list_clients(
    search: str | None = Query(None, description="Name or document"),
    limit: int = Query(100, ge=1, le=500),
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    clients = await client_service.list_clients(db, search=search, limit=limit)
    return {"clients": [client_to_response(c) for c in clients], "total": len(clients)}


@router.post("", status_code=201)
async def create_client(
    req: ClientCreateRequest,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    client = await client_service.create_client(db, req.model_dump())
    await log_activity(
        entity_type="client", entity_id=client.id,
        action="created", icon="🧾",
        description=f"Client registered: {client.name}",
        actor=caller.actor,
        db=db,
    )
    await db.commit()
    await db.refresh(client)
    return client_to_response(client)


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    client = await client_service.get_client(db, client_id)
    return client_to_response(client)


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    req: ClientUpdateRequest,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    client = await client_service.get_client(db, client_id)
    changes = client_service.apply_update(client, req.model_dump(exclude_none=True))
    if changes:
        await log_activity(
            entity_type="client", entity_id=client.id,
            action="updated", icon="✏️",
            description=f"Client {client.name} updated ({', '.join(changes)})",
            actor=caller.actor,
            changes=changes,
            db=db,
        )
    await db.commit()
    await db.refresh(client)

    if changes:
        await notify_admins(
            "Cliente atualizado",
            f"Os dados de {client.name} foram alterados: {', '.join(changes)}.",
            category="client", link=f"/clientes/{client.id}",
            metadata={"client_id": client.id, "fields": list(changes)},
        )
    return client_to_response(client)


@router.get("/{client_id}/projects")
async def client_projects(
    client_id: str,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    client = await client_service.get_client(db, client_id)
    projects = await client_service.projects_of(db, client.id)
    stats = client_service.project_stats(projects)
    return {
        "client": client_to_response(client),
        "projects": [project_to_response(p) for p in projects],
        "stats": {**stats, "total_budget": money(stats["total_budget"])},
    }


@router.delete("/{client_id}")
async def delete_client(
    client_id: str,
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Remove a client; refused while any project still refers to them."""
    client = await client_service.delete_client(db, client_id)
    await log_activity(
        entity_type="client", entity_id=client_id,
        action="deleted", icon="🗑️", level="WARNING",
        description=f"Client {client.name} deleted",
        actor=caller.actor,
        extra_data={"document": client.document},
        db=db,
    )
    await db.commit()
    logger.info(f"🗑️ Client {client.name} deleted by {caller.actor}")
    return {"success": True, "message": "Client deleted"}
