"""
Studio Back-Office — Staff and customer accounts.
"""

import uuid

from sqlalchemy import Column, String, DateTime, func

from backoffice.database import Base


class User(Base):
    """An account known to the identity provider; tokens carry its id as ``sub``."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    email = Column(String(200), unique=True, nullable=False)

    # ADMIN, TEAM_MEMBER, USER
    role = Column(String(20), nullable=False, default="USER")
    # Free-text job title, e.g. "Gerente de Projetos"
    team_role = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
