"""
Pydantic schemas for application endpoints.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class ApplicationCreate(BaseModel):
    """Request schema for applying to a gig."""
    iterations: int = Field(3, ge=1, le=20, description="Revision rounds offered (1-20)")
    cover_letter: Optional[str] = Field(None, max_length=5000, description="Optional pitch to the company")


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000, description="Optional reason shown to the freelancer")


class ApplicationResponse(BaseModel):
    """Response schema for an application."""
    id: int
    gig_id: int
    freelancer_id: int
    status: str
    iterations: int
    is_priority: bool
    cover_letter: Optional[str]
    rejection_reason: Optional[str]
    current_escrow_order_id: Optional[int]
    created_at: Optional[datetime]
    accepted_at: Optional[datetime]
    rejected_at: Optional[datetime]

    class Config:
        from_attributes = True


class ApplicationListResponse(BaseModel):
    applications: List[ApplicationResponse]
    total: int


class AcceptResponse(BaseModel):
    """
    Result of accepting an application.

    Either accepted=True (no escrow) or requires_payment=True with the
    gateway handle the client pays against.
    """
    application_id: int
    accepted: bool = False
    requires_payment: bool = False
    status: Optional[str] = None
    escrow_order_id: Optional[int] = None
    gateway_order_id: Optional[str] = None
    client_secret: Optional[str] = None
    amount: Optional[int] = None
    platform_fee: Optional[int] = None
    currency: Optional[str] = None
    expires_at: Optional[datetime] = None
