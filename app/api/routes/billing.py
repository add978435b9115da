"""
Billing endpoints: plan status, free plan, Stripe checkout and webhooks.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, Header, status
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db, get_current_user_obj
from app.core.errors import MarketplaceError
from app.db.models.user import User
from app.schemas.billing import (
    CreateCheckoutSessionRequest,
    CreateCheckoutSessionResponse,
    SubscriptionResponse,
)
from app.services import billing_service
from app.services.subscription_ledger import get_subscription_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.get("/subscription", response_model=SubscriptionResponse)
def get_subscription(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    summary = get_subscription_summary(db, user.id, user.role)
    db.commit()
    return SubscriptionResponse(**summary)


@router.post("/free-plan", response_model=SubscriptionResponse)
def activate_free_plan(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """Switch to the free plan (freelancers: 3 applications)."""
    try:
        billing_service.activate_free_plan(db, user)
    except MarketplaceError as e:
        db.rollback()
        raise e.to_http_exception()
    return SubscriptionResponse(**get_subscription_summary(db, user.id, user.role))


@router.post("/checkout", response_model=CreateCheckoutSessionResponse)
def create_checkout(
    payload: CreateCheckoutSessionRequest,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    try:
        session = billing_service.create_checkout_session(
            db, user, payload.plan, success_url=payload.success_url, cancel_url=payload.cancel_url
        )
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create checkout session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create checkout session"
        )
    return CreateCheckoutSessionResponse(checkout_url=session["url"], session_id=session["session_id"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    """Stripe subscription events; the only path that resets paid quota."""
    payload = await request.body()
    try:
        event = billing_service.verify_webhook(payload, stripe_signature)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        handled = billing_service.handle_billing_event(event, db)
    except ValueError as e:
        db.rollback()
        logger.warning(f"Billing webhook not applied: type={event['type']}, error={e}")
        return {"status": "ignored", "reason": str(e)}
    except Exception as e:
        db.rollback()
        logger.error(f"Billing webhook handling failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook handling failed")

    return {"status": "success" if handled else "ignored"}
