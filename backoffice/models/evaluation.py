"""
Studio Back-Office — Evaluations (team, project, client and project member).
"""

import uuid

from sqlalchemy import (
    Column, String, Text, DateTime, Integer, ForeignKey, UniqueConstraint, func,
)

from backoffice.database import Base


class Evaluation(Base):
    """A 1–5 rating given by an evaluator to a target within a project."""
    __tablename__ = "evaluations"
    __table_args__ = (
        UniqueConstraint(
            "kind", "project_id", "evaluator_id", "target_id", name="uq_evaluation_once",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # team, project, client, member
    kind = Column(String(10), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    evaluator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    # user id (team/member), client id (client) or project id (project)
    target_id = Column(String(36), nullable=False)

    rating = Column(Integer, nullable=False)
    participation = Column(Integer, nullable=True)
    quality = Column(Integer, nullable=True)
    comment = Column(Text, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Evaluation {self.kind} {self.target_id[:8]} = {self.rating}>"
