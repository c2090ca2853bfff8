"""
Studio Back-Office — Activity Log model.
Audit trail for budgets, contracts, payments, projects and clients.
"""

import uuid

from sqlalchemy import Column, String, Text, DateTime, JSON, func

from backoffice.database import Base


class ActivityLog(Base):
    """Append-only audit trail; never consulted for business decisions."""
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # What entity this log belongs to
    entity_type = Column(String(20), nullable=False)   # "budget", "contract", "payment", ...
    entity_id = Column(String(40), nullable=False)

    # What happened
    action = Column(String(50), nullable=False)          # e.g. "created", "sent", "paid", "reconciled"
    description = Column(Text, default="")
    icon = Column(String(10), default="📋")
    level = Column(String(10), default="INFO")           # INFO, WARNING, ERROR, SUCCESS

    # Who did it
    actor = Column(String(200), default="system")        # "user:<id>", "client:<name>", "stripe", "system"

    # {"field": {"before": ..., "after": ...}}
    changes = Column(JSON, nullable=True)
    extra_data = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<ActivityLog {self.entity_type}/{self.entity_id} — {self.action}>"
