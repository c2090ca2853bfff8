"""
Studio Back-Office — Client registry.
"""

import uuid

from sqlalchemy import Column, String, Text, DateTime, JSON, func
from sqlalchemy.orm import validates

from backoffice.database import Base


class Client(Base):
    """A customer, identified by CPF/CNPJ digits when known."""
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(200), nullable=False)
    first_name = Column(String(100), default="")
    last_name = Column(String(100), default="")
    company = Column(String(200), default="")

    # Digits only; null for clients auto-created from a payment without a document
    document = Column(String(14), unique=True, nullable=True, index=True)
    document_type = Column(String(4), nullable=True)  # cpf, cnpj

    # [{"address": "...", "primary": true}]
    emails = Column(JSON, default=list)
    # Lowercased primary address, kept in step with emails for lookups
    email_key = Column(String(200), nullable=True, index=True)
    # [{"number": "...", "primary": true}]
    phones = Column(JSON, default=list)
    address = Column(Text, default="")
    notes = Column(Text, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @validates("emails")
    def _sync_email_key(self, key, emails):
        primary = _primary(emails, "address")
        self.email_key = primary.strip().lower() if primary else None
        return emails

    @property
    def primary_email(self) -> str | None:
        return _primary(self.emails, "address")

    @property
    def primary_phone(self) -> str | None:
        return _primary(self.phones, "number")

    def __repr__(self):
        return f"<Client {self.name} ({self.document or 'no document'})>"


def _primary(entries, key: str) -> str | None:
    entries = entries or []
    for entry in entries:
        if entry.get("primary") and entry.get(key):
            return entry[key]
    for entry in entries:
        if entry.get(key):
            return entry[key]
    return None
