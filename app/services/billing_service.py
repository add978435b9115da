"""
Billing service for plan purchases.

Sole writer of plan activation and quota resets on the subscription ledger:
free-plan activation, Stripe checkout for paid plans, and Stripe subscription
webhooks (activate, renew, cancel).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import stripe
from sqlalchemy.orm import Session

from app.core.clock import as_utc
from app.core.config import (
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    STRIPE_PRICE_ID_BASIC,
    STRIPE_PRICE_ID_PRO,
    FRONTEND_URL,
)
from app.core.errors import ConflictError, MarketplaceError
from app.core.plan_limits import SUPPORTED_DURATIONS, is_priority_plan, slot_grant, ROLE_COMPANY
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.db.models.user import User
from app.services.subscription_ledger import get_or_create_subscription, is_active

logger = logging.getLogger(__name__)

PAID_PLANS = ("basic", "pro")


def _build_price_mappings() -> Tuple[Dict[str, str], Dict[str, str]]:
    """Build price ID mappings from environment variables."""
    price_to_plan: Dict[str, str] = {}
    plan_to_price: Dict[str, str] = {}

    if STRIPE_PRICE_ID_BASIC:
        price_to_plan[STRIPE_PRICE_ID_BASIC] = "basic"
        plan_to_price["basic"] = STRIPE_PRICE_ID_BASIC

    if STRIPE_PRICE_ID_PRO:
        price_to_plan[STRIPE_PRICE_ID_PRO] = "pro"
        plan_to_price["pro"] = STRIPE_PRICE_ID_PRO

    return price_to_plan, plan_to_price


PRICE_ID_TO_PLAN, PLAN_TO_PRICE_ID = _build_price_mappings()


def get_plan_from_price_id(price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    return PRICE_ID_TO_PLAN.get(price_id)


def get_price_id_from_plan(plan: str) -> Optional[str]:
    price_id = PLAN_TO_PRICE_ID.get(plan.lower())
    if not price_id or price_id.startswith("price_your_"):
        # Placeholder values from .env.example
        return None
    return price_id


def activate_plan(
    db: Session,
    user: User,
    plan_type: str,
    duration: str = "monthly",
    period_end: Optional[datetime] = None,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
) -> Subscription:
    """
    Activate or renew a plan and reset its quota for the new period.

    Args:
        db: Database session (committed here)
        user: Plan holder
        plan_type: free, basic or pro
        duration: monthly, yearly or lifetime
        period_end: End of the paid period; None for lifetime plans

    Returns:
        Updated Subscription
    """
    if duration not in SUPPORTED_DURATIONS:
        raise MarketplaceError(f"Unsupported plan duration: {duration}", code="INVALID_PLAN")

    subscription = get_or_create_subscription(db, user.id, user.role)
    grant = slot_grant(user.role, plan_type)

    subscription.plan_type = plan_type
    subscription.duration = duration
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.current_period_end = period_end
    subscription.unlimited = grant is None
    subscription.is_priority_eligible = is_priority_plan(user.role, plan_type)
    if user.role == ROLE_COMPANY:
        subscription.remaining_gig_slots = grant or 0
    else:
        subscription.remaining_application_slots = grant or 0
    if stripe_customer_id:
        subscription.stripe_customer_id = stripe_customer_id
    if stripe_subscription_id:
        subscription.stripe_subscription_id = stripe_subscription_id

    db.commit()
    db.refresh(subscription)

    logger.info(
        f"Plan activated: user_id={user.id}, role={user.role}, plan={plan_type}, duration={duration}, "
        f"slots={'unlimited' if grant is None else grant}, period_end={period_end}"
    )
    return subscription


def activate_free_plan(db: Session, user: User) -> Subscription:
    """
    Put a user on the free plan.

    Idempotent for users already on an active free plan, so quota is never
    refilled by calling it again. Refused while a paid plan is active.
    """
    subscription = get_or_create_subscription(db, user.id, user.role)
    if is_active(subscription):
        if subscription.plan_type == "free":
            return subscription
        raise ConflictError(
            f"An active {subscription.plan_type} plan is already in place",
            code="PLAN_ALREADY_ACTIVE",
        )
    if subscription.plan_type == "free" and subscription.status == SubscriptionStatus.EXPIRED:
        raise ConflictError("The free plan has already been used", code="FREE_PLAN_USED")
    return activate_plan(db, user, "free", duration="lifetime")


def expire_plan(db: Session, subscription: Subscription, reason: str) -> Subscription:
    """
    End a plan. Applications keep the priority flag they were created with.
    """
    subscription.status = SubscriptionStatus.EXPIRED
    subscription.is_priority_eligible = False
    subscription.unlimited = False
    subscription.stripe_subscription_id = None
    db.commit()
    db.refresh(subscription)
    logger.info(f"Plan expired: user_id={subscription.user_id}, plan={subscription.plan_type}, reason={reason}")
    return subscription


def create_checkout_session(
    db: Session,
    user: User,
    plan: str,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a Stripe Checkout session for a paid plan.

    Returns:
        Dictionary with the checkout 'url' and 'session_id'
    """
    if not STRIPE_SECRET_KEY:
        raise ValueError("Stripe not configured - STRIPE_SECRET_KEY required")
    if plan not in PAID_PLANS:
        raise ValueError(f"Invalid plan type: {plan}. Must be 'basic' or 'pro'")
    price_id = get_price_id_from_plan(plan)
    if not price_id:
        raise ValueError(f"No Stripe price configured for plan '{plan}'")

    success_url = success_url or f"{FRONTEND_URL}/dashboard?upgraded=1"
    cancel_url = cancel_url or f"{FRONTEND_URL}/pricing?cancelled=1"

    subscription = get_or_create_subscription(db, user.id, user.role)
    if not subscription.stripe_customer_id:
        customer = stripe.Customer.create(
            email=user.email,
            name=user.full_name,
            metadata={"user_id": str(user.id)},
            api_key=STRIPE_SECRET_KEY,
        )
        subscription.stripe_customer_id = customer.id
    db.commit()

    metadata = {"user_id": str(user.id), "plan": plan, "role": user.role}
    session = stripe.checkout.Session.create(
        customer=subscription.stripe_customer_id,
        mode="subscription",
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata,
        subscription_data={"metadata": metadata},
        api_key=STRIPE_SECRET_KEY,
    )

    logger.info(f"Created checkout session: session_id={session.id}, user_id={user.id}, plan={plan}")
    return {"url": session.url, "session_id": session.id}


def verify_webhook(request_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """
    Verify and parse a Stripe billing webhook.

    Raises:
        ValueError: If webhook verification fails
    """
    if not STRIPE_WEBHOOK_SECRET:
        raise ValueError("STRIPE_WEBHOOK_SECRET not configured")

    try:
        event = stripe.Webhook.construct_event(request_body, signature, STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise ValueError(f"Invalid webhook payload: {e}")
    except stripe.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise ValueError(f"Invalid signature: {e}")

    logger.info(f"Verified webhook event: {event['type']}, id={event['id']}")
    return event.to_dict()


def _period_end(subscription_data: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions report the period on the subscription item
    timestamp = subscription_data.get("current_period_end")
    if not timestamp:
        items = (subscription_data.get("items") or {}).get("data") or [{}]
        timestamp = items[0].get("current_period_end")
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _price_id(subscription_data: Dict[str, Any]) -> Optional[str]:
    items = (subscription_data.get("items") or {}).get("data") or [{}]
    return (items[0].get("price") or {}).get("id")


def _duration(subscription_data: Dict[str, Any]) -> str:
    items = (subscription_data.get("items") or {}).get("data") or [{}]
    interval = ((items[0].get("price") or {}).get("recurring") or {}).get("interval")
    return "yearly" if interval == "year" else "monthly"


def handle_checkout_session_completed(event_data: Dict[str, Any], db: Session) -> Subscription:
    """
    Handle checkout.session.completed: activate the purchased plan.
    """
    session_data = event_data.get("object", {})
    metadata = session_data.get("metadata") or {}
    user_id_str = metadata.get("user_id")
    if not user_id_str:
        raise ValueError("Cannot identify user from checkout session")

    user = db.query(User).filter(User.id == int(user_id_str)).first()
    if not user:
        raise ValueError("User not found for checkout session")

    plan = metadata.get("plan")
    subscription_id = session_data.get("subscription")
    period_end = None
    duration = "monthly"

    if subscription_id:
        try:
            stripe_sub = stripe.Subscription.retrieve(subscription_id, api_key=STRIPE_SECRET_KEY).to_dict()
            period_end = _period_end(stripe_sub)
            duration = _duration(stripe_sub)
            plan = plan or get_plan_from_price_id(_price_id(stripe_sub))
        except stripe.StripeError as e:
            logger.warning(f"Failed to retrieve subscription from Stripe: {e}")

    if plan not in PAID_PLANS:
        raise ValueError(f"Unknown plan on checkout session: {plan}")

    return activate_plan(
        db,
        user,
        plan,
        duration=duration,
        period_end=period_end,
        stripe_customer_id=session_data.get("customer"),
        stripe_subscription_id=subscription_id,
    )


def handle_subscription_updated(event_data: Dict[str, Any], db: Session) -> Optional[Subscription]:
    """
    Handle customer.subscription.updated: renewals reset quota, lapses expire.
    """
    subscription_data = event_data.get("object", {})
    subscription_id = subscription_data.get("id")
    stripe_status = subscription_data.get("status")

    subscription = db.query(Subscription).filter(
        Subscription.stripe_subscription_id == subscription_id
    ).first()
    if not subscription:
        logger.warning(f"Subscription not found for subscription_id={subscription_id}")
        return None

    if stripe_status in ("canceled", "unpaid", "incomplete_expired"):
        return expire_plan(db, subscription, f"stripe_status={stripe_status}")

    if stripe_status not in ("active", "trialing"):
        logger.info(f"Subscription status ignored: subscription_id={subscription_id}, status={stripe_status}")
        return subscription

    period_end = _period_end(subscription_data)
    plan = get_plan_from_price_id(_price_id(subscription_data)) or subscription.plan_type
    if (
        subscription.status == SubscriptionStatus.ACTIVE
        and plan == subscription.plan_type
        and period_end is not None
        and subscription.current_period_end is not None
        and period_end <= as_utc(subscription.current_period_end)
    ):
        # Same period: metadata-only update, no quota reset
        return subscription

    user = db.query(User).filter(User.id == subscription.user_id).first()
    return activate_plan(
        db,
        user,
        plan,
        duration=_duration(subscription_data),
        period_end=period_end,
        stripe_subscription_id=subscription_id,
    )


def handle_subscription_deleted(event_data: Dict[str, Any], db: Session) -> Optional[Subscription]:
    """Handle customer.subscription.deleted: the plan ends immediately."""
    subscription_id = event_data.get("object", {}).get("id")
    subscription = db.query(Subscription).filter(
        Subscription.stripe_subscription_id == subscription_id
    ).first()
    if not subscription:
        logger.warning(f"Subscription not found for subscription_id={subscription_id}")
        return None
    return expire_plan(db, subscription, "stripe_subscription_deleted")


BILLING_EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}


def handle_billing_event(event: Dict[str, Any], db: Session) -> bool:
    """
    Dispatch a verified billing webhook event.

    Returns:
        True if the event type is handled, False if ignored
    """
    handler = BILLING_EVENT_HANDLERS.get(event["type"])
    if not handler:
        logger.debug(f"Unhandled billing event type: {event['type']}")
        return False
    handler(event.get("data", {}), db)
    return True
