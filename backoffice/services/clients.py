"""
Studio Back-Office — Client registry.

Clients are keyed by CPF/CNPJ digits. Lookup-or-create never overwrites an
existing record: the first write of identity fields wins.
"""

import logging
import re
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.errors import ConflictError, NotFoundError, ValidationError
from backoffice.lifecycle import CLOSED_PROJECT_STATES, ProjectStatus
from backoffice.models.client import Client
from backoffice.models.project import Project
from backoffice.routes.activity import diff_fields

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("name", "company", "emails", "phones", "address", "notes")


# ── Documents ───────────────────────────────────────────

def normalize_document(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def _repeated(digits: str) -> bool:
    return len(set(digits)) == 1


def validate_cpf(value: str) -> bool:
    cpf = normalize_document(value)
    if len(cpf) != 11 or _repeated(cpf):
        return False

    def digit(chunk: str) -> int:
        factor = len(chunk) + 1
        total = sum(int(d) * (factor - i) for i, d in enumerate(chunk))
        remainder = total % 11
        return 0 if remainder < 2 else 11 - remainder

    return digit(cpf[:9]) == int(cpf[9]) and digit(cpf[:10]) == int(cpf[10])


def validate_cnpj(value: str) -> bool:
    cnpj = normalize_document(value)
    if len(cnpj) != 14 or _repeated(cnpj):
        return False

    def digit(chunk: str) -> int:
        total, weight = 0, 2
        for d in reversed(chunk):
            total += int(d) * weight
            weight = 2 if weight == 9 else weight + 1
        remainder = total % 11
        return 0 if remainder < 2 else 11 - remainder

    return digit(cnpj[:12]) == int(cnpj[12]) and digit(cnpj[:13]) == int(cnpj[13])


def document_type(digits: str) -> str:
    return "cnpj" if len(digits) > 11 else "cpf"


def validate_document(value: str | None) -> str:
    """Return normalized digits or raise ValidationError."""
    digits = normalize_document(value)
    if not digits:
        raise ValidationError("Document (CPF/CNPJ) is required")
    valid = validate_cnpj(digits) if document_type(digits) == "cnpj" else validate_cpf(digits)
    if not valid:
        raise ValidationError("Invalid CPF/CNPJ")
    return digits


def split_name(full_name: str) -> tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return "Cliente", ""
    return parts[0], " ".join(parts[1:]) or "Cliente"


def contact_list(value: str | None, key: str) -> list[dict]:
    return [{key: value, "primary": True}] if value else []


# ── Lookups ─────────────────────────────────────────────

async def get_client(db: AsyncSession, client_id: str) -> Client:
    result = await db.execute(select(Client).where(Client.id == client_id))
    client = result.scalar_one_or_none()
    if not client:
        raise NotFoundError(f"Client {client_id} not found")
    return client


async def find_by_document(db: AsyncSession, digits: str) -> Client | None:
    result = await db.execute(select(Client).where(Client.document == digits))
    return result.scalar_one_or_none()


async def find_by_contact(db: AsyncSession, email: str | None, name: str | None) -> Client | None:
    """Match on the primary email address (case-insensitive), then on exact name."""
    if email and email.strip():
        result = await db.execute(
            select(Client)
            .where(Client.email_key == email.strip().lower())
            .order_by(Client.created_at)
            .limit(1)
        )
        client = result.scalar_one_or_none()
        if client:
            return client
    if name:
        result = await db.execute(
            select(Client).where(Client.name == name.strip()).order_by(Client.created_at).limit(1)
        )
        return result.scalar_one_or_none()
    return None


async def list_clients(db: AsyncSession, search: str | None = None, limit: int = 100) -> list[Client]:
    stmt = select(Client).order_by(Client.name).limit(limit)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(Client.name.ilike(like), Client.document.like(f"%{normalize_document(search) or search}%")))
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ── Writes (no commit; callers own the transaction) ─────

async def find_or_create_by_document(db: AsyncSession, data: dict) -> tuple[Client, bool]:
    """Return (client, is_new). An existing client is returned untouched."""
    digits = validate_document(data.get("document"))
    existing = await find_by_document(db, digits)
    if existing:
        return existing, False

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Name is required for a new client")
    first, last = split_name(name)
    client = Client(
        name=name,
        first_name=first,
        last_name=last,
        company=data.get("company") or "",
        document=digits,
        document_type=document_type(digits),
        emails=contact_list(data.get("email"), "address"),
        phones=contact_list(data.get("phone"), "number"),
        address=data.get("address") or "",
    )
    db.add(client)
    await db.flush()
    logger.info(f"✅ Client registered: {name} ({client.document_type})")
    return client, True


async def find_or_create_for_contact(
    db: AsyncSession, name: str, email: str | None = None, phone: str | None = None,
) -> Client:
    """Used when a project is spawned from a budget, where no document is known."""
    existing = await find_by_contact(db, email, name)
    if existing:
        return existing
    first, last = split_name(name)
    client = Client(
        name=name.strip() or "Cliente",
        first_name=first,
        last_name=last,
        emails=contact_list(email, "address"),
        phones=contact_list(phone, "number"),
    )
    db.add(client)
    await db.flush()
    logger.info(f"✅ Client auto-created from budget contact: {client.name}")
    return client


async def create_client(db: AsyncSession, data: dict) -> Client:
    digits = validate_document(data.get("document"))
    if await find_by_document(db, digits):
        raise ConflictError("A client with this document already exists")
    client, _ = await find_or_create_by_document(db, {**data, "document": digits})
    return client


def snapshot(client: Client) -> dict:
    return {field: getattr(client, field) for field in _UPDATABLE_FIELDS}


def apply_update(client: Client, data: dict) -> dict:
    """Apply the given fields and return {field: {before, after}} for what changed."""
    before = snapshot(client)
    for field in _UPDATABLE_FIELDS:
        if field in data and data[field] is not None:
            setattr(client, field, data[field])
    if "name" in data and data["name"]:
        client.first_name, client.last_name = split_name(data["name"])
    return diff_fields(before, snapshot(client))


# ── Projects & removal ──────────────────────────────────

async def projects_of(db: AsyncSession, client_id: str) -> list[Project]:
    result = await db.execute(
        select(Project).where(Project.client_id == client_id).order_by(Project.created_at.desc())
    )
    return list(result.scalars().all())


def project_stats(projects: list[Project]) -> dict:
    closed = {s.value for s in CLOSED_PROJECT_STATES}
    waiting = ProjectStatus.WAITING_PAYMENT.value
    return {
        "total_projects": len(projects),
        "active_projects": sum(1 for p in projects if p.status not in closed and p.status != waiting),
        "completed_projects": sum(1 for p in projects if p.status in closed),
        "total_budget": sum((p.budget_value or Decimal("0") for p in projects), Decimal("0")),
    }


async def delete_client(db: AsyncSession, client_id: str) -> Client:
    """Remove a client that no project refers to. No commit."""
    client = await get_client(db, client_id)
    count = (await db.execute(
        select(func.count(Project.id)).where(Project.client_id == client_id)
    )).scalar_one()
    if count:
        raise ConflictError(f"Client has {count} linked project(s) and cannot be deleted")
    await db.delete(client)
    await db.flush()
    return client
