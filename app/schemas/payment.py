"""
Pydantic schemas for escrow payment endpoints.
"""
from typing import Optional
from pydantic import BaseModel, Field


class EscrowVerifyRequest(BaseModel):
    """Payment proof the client holds after paying the intent."""
    gateway_order_id: str = Field(..., min_length=1, description="Gateway order id from the accept response")
    gateway_payment_id: str = Field(..., min_length=1, description="Gateway payment id")
    signature: str = Field(..., min_length=1, description="client_secret of the paid PaymentIntent")
    application_id: Optional[int] = Field(None, description="Application the payment is for")

    class Config:
        json_schema_extra = {
            "example": {
                "gateway_order_id": "pi_3PabcXYZ",
                "gateway_payment_id": "ch_3PabcXYZ",
                "signature": "pi_3PabcXYZ_secret_Qx7...",
                "application_id": 42
            }
        }


class EscrowVerifyResponse(BaseModel):
    """Coarse result; internal outcome detail stays in the logs."""
    success: bool
    status: str
