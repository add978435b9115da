"""
Escrow payment endpoints: client-side verification and gateway webhook.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, Header, status
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db
from app.core.errors import MarketplaceError
from app.schemas.payment import EscrowVerifyRequest, EscrowVerifyResponse
from app.services.escrow_coordinator import EscrowCoordinator, get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/escrow/verify", response_model=EscrowVerifyResponse)
def verify_escrow_payment(
    payload: EscrowVerifyRequest,
    db: Session = Depends(get_db),
    coordinator: EscrowCoordinator = Depends(get_coordinator),
):
    """
    Check a payment proof with the gateway and finalize the acceptance.

    Repeating a verification is safe; duplicates and replaced orders answer
    success without changing anything.
    """
    try:
        result = coordinator.verify(
            db,
            payload.gateway_order_id,
            payload.gateway_payment_id,
            payload.signature,
            application_id=payload.application_id,
        )
        return EscrowVerifyResponse(success=result.success, status="verified")
    except MarketplaceError as e:
        db.rollback()
        raise e.to_http_exception()
    except Exception as e:
        db.rollback()
        logger.error(f"Escrow verification crashed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify payment"
        )


@router.post("/webhook")
async def escrow_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
    coordinator: EscrowCoordinator = Depends(get_coordinator),
):
    """
    Stripe PaymentIntent events for escrow orders.

    Signature-verified by Stripe, so the client proof step is skipped; the
    received amount is still checked against the order.
    """
    payload = await request.body()
    try:
        event = coordinator.gateway.construct_webhook_event(payload, stripe_signature)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    intent = event["data"]["object"]
    try:
        if event["type"] == "payment_intent.succeeded":
            payment_id = intent.get("latest_charge") or intent["id"]
            coordinator.confirm_from_gateway_event(
                db,
                intent["id"],
                payment_id,
                paid_amount=intent.get("amount_received"),
                paid_currency=intent.get("currency"),
            )
        elif event["type"] == "payment_intent.payment_failed":
            error = intent.get("last_payment_error") or {}
            coordinator.fail(db, intent["id"], error.get("message") or "payment_failed")
        else:
            logger.debug(f"Unhandled escrow event type: {event['type']}")
    except MarketplaceError as e:
        # Acknowledged anyway: Stripe retries would hit the same outcome
        db.rollback()
        logger.warning(f"Escrow webhook not applied: type={event['type']}, code={e.code}, detail={e.message}")
        return {"status": "ignored", "reason": e.code}
    except Exception as e:
        db.rollback()
        logger.error(f"Escrow webhook handling failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook handling failed")

    return {"status": "success"}
