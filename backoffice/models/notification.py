"""
Studio Back-Office — Per-user in-app notification inbox.
"""

import uuid

from sqlalchemy import Boolean, Column, String, Text, DateTime, ForeignKey, JSON, func

from backoffice.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    message = Column(Text, default="")
    type = Column(String(10), default="info")       # info, success, warning, error
    category = Column(String(30), default="system")  # budget, contract, payment, project, ...
    link = Column(String(500), nullable=True)
    read = Column(Boolean, default=False, nullable=False)

    extra_data = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Notification {self.user_id[:8]} – {self.title}>"
