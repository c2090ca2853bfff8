"""
Studio Back-Office — Authorization gate.

Tokens are issued by the identity provider (HS256, ``sub`` = user id); this
module only verifies them, loads the caller's role, and answers capability
questions through a pure predicate.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.config import settings
from backoffice.database import get_db
from backoffice.errors import AuthenticationError, AuthorizationError
from backoffice.models.user import User

http_bearer = HTTPBearer(auto_error=False)

PROJECT_MANAGER_TITLE = "Gerente de Projetos"


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    TEAM_MEMBER = "TEAM_MEMBER"
    USER = "USER"


class Capability(str, enum.Enum):
    MANAGE_BUDGETS = "manage_budgets"     # decide, send proposals, contracts, payment links
    MANAGE_PROJECTS = "manage_projects"   # projects, clients, progress, delivery
    EVALUATE = "evaluate"
    VIEW_AUDIT = "view_audit"
    ADMINISTER = "administer"             # delete budgets, run reconciliation, all evaluations


_ROLE_CAPABILITIES = {
    Role.ADMIN: frozenset(Capability),
    Role.TEAM_MEMBER: frozenset({Capability.MANAGE_PROJECTS, Capability.EVALUATE}),
    Role.USER: frozenset(),
}


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: Role
    team_role: Optional[str] = None
    name: str = ""

    @property
    def is_project_manager(self) -> bool:
        return self.role is Role.TEAM_MEMBER and (self.team_role or "").strip() == PROJECT_MANAGER_TITLE

    @property
    def capabilities(self) -> frozenset:
        caps = _ROLE_CAPABILITIES[self.role]
        if self.is_project_manager:
            caps = caps | {Capability.MANAGE_BUDGETS}
        return caps

    @property
    def actor(self) -> str:
        return f"user:{self.user_id}"


def is_allowed(caller: Optional[Caller], capability: Capability) -> bool:
    if caller is None:
        return False
    return capability in caller.capabilities


def ensure_allowed(caller: Optional[Caller], capability: Capability) -> None:
    if caller is None:
        raise AuthenticationError("Not authenticated")
    if not is_allowed(caller, capability):
        raise AuthorizationError("You do not have permission to perform this action")


def create_access_token(user_id: str, ttl_seconds: int = 3600) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired") from None
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token") from None


def caller_from_user(user: User) -> Caller:
    try:
        role = Role(user.role)
    except ValueError:
        role = Role.USER
    return Caller(user_id=user.id, role=role, team_role=user.team_role, name=user.name or "")


async def get_optional_caller(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: AsyncSession = Depends(get_db),
) -> Optional[Caller]:
    if creds is None:
        return None
    payload = decode_token(creds.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid subject")
    result = await db.execute(select(User).where(User.id == str(user_id)))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthenticationError("Unknown user")
    return caller_from_user(user)


async def get_caller(caller: Optional[Caller] = Depends(get_optional_caller)) -> Caller:
    if caller is None:
        raise AuthenticationError("Not authenticated")
    return caller


class CapabilityChecker:
    """
    Dependency factory for capability checks.

    Usage: Depends(CapabilityChecker(Capability.MANAGE_BUDGETS))
    """

    def __init__(self, capability: Capability):
        self.capability = capability

    def __call__(self, caller: Caller = Depends(get_caller)) -> Caller:
        ensure_allowed(caller, self.capability)
        return caller


require_budget_manager = CapabilityChecker(Capability.MANAGE_BUDGETS)
require_project_manager = CapabilityChecker(Capability.MANAGE_PROJECTS)
require_evaluator = CapabilityChecker(Capability.EVALUATE)
require_auditor = CapabilityChecker(Capability.VIEW_AUDIT)
require_admin = CapabilityChecker(Capability.ADMINISTER)
