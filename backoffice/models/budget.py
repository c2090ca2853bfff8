"""
Studio Back-Office — Budget, Contract & Payment models.
"""

import uuid

from sqlalchemy import (
    Boolean, Column, String, Text, DateTime, Integer, Numeric,
    ForeignKey, JSON, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from backoffice.database import Base


class Budget(Base):
    """A priced proposal, from public intake until the project is delivered."""
    __tablename__ = "budgets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Lifecycle, see backoffice.lifecycle.BudgetStatus
    status = Column(String(30), nullable=False, default="pending", index=True)

    # Requester
    client_name = Column(String(200), nullable=False)
    client_email = Column(String(200), nullable=False)
    client_phone = Column(String(30), default="")
    company = Column(String(200), default="")
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)  # logged-in requester, if any

    # Scope
    project_type = Column(String(100), nullable=False)
    complexity = Column(String(20), default="medio")    # simples, medio, complexo
    timeline = Column(String(20), default="normal")     # urgente, normal, flexivel
    pages = Column(Integer, default=1)
    features = Column(JSON, default=list)
    details = Column(Text, default="")

    # Pricing
    estimated_min = Column(Numeric(12, 2), nullable=True)
    estimated_max = Column(Numeric(12, 2), nullable=True)
    final_value = Column(Numeric(12, 2), nullable=True)

    # Client self-service approval (single-use capability)
    approval_token = Column(String(64), unique=True, nullable=True, index=True)
    approval_token_expires = Column(DateTime(timezone=True), nullable=True)
    consumed_approval_token = Column(String(64), nullable=True, index=True)
    user_approved_at = Column(DateTime(timezone=True), nullable=True)

    # Staff decision: at most one side set at a time
    accepted_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    declined_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    decline_reason = Column(Text, nullable=True)

    # Set once, when the project is spawned
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    contract = relationship(
        "Contract", back_populates="budget", uselist=False, lazy="selectin",
        cascade="all, delete-orphan",
    )
    payments = relationship(
        "Payment", back_populates="budget", lazy="selectin",
        cascade="all, delete-orphan",
    )

    def payment_of(self, payment_type: str):
        for p in self.payments or []:
            if p.type == payment_type:
                return p
        return None

    def __repr__(self):
        return f"<Budget {self.id[:8]} – {self.client_name} ({self.status})>"


class Contract(Base):
    """The signed agreement for a budget (one per budget)."""
    __tablename__ = "contracts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    budget_id = Column(String(36), ForeignKey("budgets.id"), unique=True, nullable=False)

    # Status: draft, sent, signed_by_client, signed, confirmed
    status = Column(String(20), nullable=False, default="draft")

    # Terms snapshot (value, timeline, notes) at issue time
    extra_data = Column("metadata", JSON, default=dict)

    # Client-uploaded signed PDF
    document_url = Column(String(500), nullable=True)
    document_name = Column(String(255), nullable=True)
    signature_name = Column(String(200), nullable=True)
    signed_by_client_at = Column(DateTime(timezone=True), nullable=True)

    # Staff confirmation
    confirmed = Column(Boolean, default=False, nullable=False)
    signed_at = Column(DateTime(timezone=True), nullable=True)

    project_id = Column(String(36), ForeignKey("projects.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    sent_at = Column(DateTime(timezone=True), nullable=True)

    budget = relationship("Budget", back_populates="contract")

    def __repr__(self):
        return f"<Contract {self.id[:8]} – budget {self.budget_id[:8]} ({self.status})>"


class Payment(Base):
    """A charge against a budget: 25% down payment or 75% final payment."""
    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("budget_id", "type", name="uq_payment_budget_type"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    budget_id = Column(String(36), ForeignKey("budgets.id"), nullable=False)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=True)  # backfilled at settlement

    type = Column(String(20), nullable=False)                  # down_payment, final_payment
    status = Column(String(20), nullable=False, default="pending")  # pending, paid
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(300), default="")

    # Gateway
    stripe_payment_link_id = Column(String(255), nullable=True, index=True)
    payment_link_url = Column(String(500), nullable=True)
    stripe_payment_id = Column(String(255), nullable=True)     # payment_intent or session id

    due_date = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    budget = relationship("Budget", back_populates="payments")

    def __repr__(self):
        return f"<Payment {self.type} – budget {self.budget_id[:8]} ({self.status})>"


class GatewayEvent(Base):
    """Webhook events already applied, keyed by the gateway's event id."""
    __tablename__ = "gateway_events"

    id = Column(String(255), primary_key=True)
    type = Column(String(100), nullable=False)
    budget_id = Column(String(36), nullable=True)
    payment_id = Column(String(36), nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<GatewayEvent {self.id} ({self.type})>"
