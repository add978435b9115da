"""
Pydantic schemas for gig endpoints.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


class GigCreate(BaseModel):
    """Request schema for posting a gig."""
    title: str = Field(..., min_length=3, max_length=200, description="Gig title")
    description: Optional[str] = Field(None, description="What the work involves")
    budget: int = Field(..., gt=0, description="Budget in the smallest currency unit (e.g. paise)")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="ISO currency code; defaults to the platform currency")
    quantity: int = Field(1, ge=1, le=1000, description="Number of freelancers to hire")
    escrow_required: bool = Field(True, description="Require an escrow payment before acceptance")
    draft: bool = Field(False, description="Create as draft; publish later")

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Title must be at least 3 characters")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Landing page copy",
                "description": "Three variants of hero copy for a fintech launch",
                "budget": 500000,
                "quantity": 2
            }
        }


class GigResponse(BaseModel):
    """Response schema for a gig."""
    id: int
    company_id: int
    title: str
    description: Optional[str]
    budget: int
    currency: str
    quantity: int
    filled_count: int
    status: str
    escrow_required: bool
    is_first_gig: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class GigListResponse(BaseModel):
    gigs: List[GigResponse]
    total: int
