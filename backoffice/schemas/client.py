"""
Studio Back-Office — Client registry Pydantic schemas.
"""

from typing import Optional

from pydantic import BaseModel, Field

from backoffice.models.client import Client
from backoffice.schemas import iso


class ClientVerifyRequest(BaseModel):
    document: Optional[str] = Field(None, max_length=30)
    name: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=30)
    company: Optional[str] = Field(None, max_length=200)
    address: Optional[str] = Field(None, max_length=1000)


class ClientCreateRequest(ClientVerifyRequest):
    pass


class ContactEmail(BaseModel):
    address: str
    primary: bool = False


class ContactPhone(BaseModel):
    number: str
    primary: bool = False


class ClientUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    company: Optional[str] = Field(None, max_length=200)
    emails: Optional[list[ContactEmail]] = None
    phones: Optional[list[ContactPhone]] = None
    address: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=5000)


def client_to_response(c: Client) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "first_name": c.first_name,
        "last_name": c.last_name,
        "company": c.company or "",
        "document": c.document,
        "document_type": c.document_type,
        "emails": c.emails or [],
        "phones": c.phones or [],
        "primary_email": c.primary_email,
        "primary_phone": c.primary_phone,
        "address": c.address or "",
        "notes": c.notes or "",
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
