"""Pydantic schemas for the JSON endpoints."""
from datetime import datetime

from pydantic import BaseModel, Field


class LinkTicketCreate(BaseModel):
    """Optional body for ticket issuance by an authenticated initiator."""
    issuer_user_id: str | None = Field(default=None, max_length=64)


class LinkTicketResponse(BaseModel):
    """Issued ticket and the link the initiator should hand to the user."""
    state: str
    start_url: str
    expires_at: datetime


class HealthResponse(BaseModel):
    status: str
    version: str
    ticket_policy: str
