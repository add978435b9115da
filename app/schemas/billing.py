"""
Pydantic schemas for billing endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CreateCheckoutSessionRequest(BaseModel):
    """Request schema for creating checkout session."""
    plan: str = Field(..., description="Plan type: 'basic' or 'pro'", pattern="^(basic|pro)$")
    success_url: Optional[str] = Field(None, description="URL to redirect after successful payment")
    cancel_url: Optional[str] = Field(None, description="URL to redirect if payment is canceled")

    class Config:
        json_schema_extra = {
            "example": {
                "plan": "basic",
                "success_url": "https://gigmarket.example/dashboard?success=true",
                "cancel_url": "https://gigmarket.example/pricing?canceled=true"
            }
        }


class CreateCheckoutSessionResponse(BaseModel):
    """Response schema for checkout session creation."""
    checkout_url: str = Field(..., description="Stripe checkout session URL")
    session_id: str = Field(..., description="Stripe checkout session ID")


class SubscriptionResponse(BaseModel):
    """Plan and quota for the current user."""
    role: str
    plan: Optional[str]
    duration: Optional[str]
    status: str
    unlimited: bool
    remaining: Optional[int] = Field(None, description="Remaining gig or application slots; null when unlimited")
    current_period_end: Optional[datetime]
    first_gig_available: Optional[bool] = None
    is_priority_eligible: Optional[bool] = None
