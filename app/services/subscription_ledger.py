"""
Subscription ledger: plan state and quota for gated actions.

Authorization and consumption are one conditional UPDATE per decision, so two
concurrent requests can never both pass the check on the last slot. Callers
own the transaction: a denied or rolled-back request leaves quota untouched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Any

from sqlalchemy import and_, or_, case
from sqlalchemy.orm import Session

from app.core.clock import utcnow, as_utc
from app.core.plan_limits import ROLE_COMPANY, ROLE_FREELANCER
from app.db.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)

NO_ACTIVE_SUBSCRIPTION = "NO_ACTIVE_SUBSCRIPTION"
QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"


@dataclass(frozen=True)
class LedgerDecision:
    allowed: bool
    reason: Optional[str] = None
    is_priority: bool = False
    first_gig_free: bool = False
    remaining: Optional[int] = None  # None when unlimited or not applicable


def get_subscription(db: Session, user_id: int) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.user_id == user_id).first()


def get_or_create_subscription(db: Session, user_id: int, role: str) -> Subscription:
    """
    Fetch the ledger row for a user, creating it in status 'none' if missing.

    Rows are normally created at signup; this covers users that predate the
    ledger. The new row is flushed, not committed.
    """
    subscription = get_subscription(db, user_id)
    if subscription:
        return subscription

    subscription = Subscription(
        user_id=user_id,
        role=role,
        status=SubscriptionStatus.NONE,
        remaining_gig_slots=0,
        remaining_application_slots=0,
        unlimited=False,
        is_priority_eligible=False,
        is_first_gig_consumed=False,
    )
    db.add(subscription)
    db.flush()
    logger.info(f"Ledger row created: user_id={user_id}, role={role}")
    return subscription


def is_active(subscription: Optional[Subscription], now: Optional[datetime] = None) -> bool:
    """Python-side mirror of _active_clause for read paths."""
    if not subscription or subscription.status != SubscriptionStatus.ACTIVE:
        return False
    period_end = as_utc(subscription.current_period_end)
    return period_end is None or period_end > (now or utcnow())


def _active_clause(now: datetime):
    return and_(
        Subscription.status == SubscriptionStatus.ACTIVE,
        or_(Subscription.current_period_end.is_(None), Subscription.current_period_end > now),
    )


def _deny(db: Session, user_id: int, action: str, now: datetime) -> LedgerDecision:
    subscription = get_subscription(db, user_id)
    reason = QUOTA_EXHAUSTED if is_active(subscription, now) else NO_ACTIVE_SUBSCRIPTION
    # Expected business outcome, not a fault
    logger.info(f"Ledger denied: user_id={user_id}, action={action}, reason={reason}")
    return LedgerDecision(allowed=False, reason=reason)


def authorize_gig_creation(db: Session, company_id: int, now: Optional[datetime] = None) -> LedgerDecision:
    """
    Authorize and consume one gig creation for a company.

    1. First-gig-free: flip is_first_gig_consumed false -> true.
    2. Otherwise require an active, unexpired plan with unlimited quota or a
       remaining gig slot, decrementing the slot in the same statement.

    Args:
        db: Database session (not committed here)
        company_id: Company user ID
        now: Clock override for tests

    Returns:
        LedgerDecision; allowed=False carries NO_ACTIVE_SUBSCRIPTION or QUOTA_EXHAUSTED
    """
    now = now or utcnow()
    get_or_create_subscription(db, company_id, ROLE_COMPANY)

    flipped = db.query(Subscription).filter(
        Subscription.user_id == company_id,
        Subscription.is_first_gig_consumed.is_(False),
    ).update(
        {Subscription.is_first_gig_consumed: True},
        synchronize_session="fetch",
    )
    if flipped == 1:
        logger.info(f"First gig free path used: company_id={company_id}")
        return LedgerDecision(allowed=True, first_gig_free=True)

    consumed = db.query(Subscription).filter(
        Subscription.user_id == company_id,
        _active_clause(now),
        or_(Subscription.unlimited.is_(True), Subscription.remaining_gig_slots > 0),
    ).update(
        {
            Subscription.remaining_gig_slots: case(
                (Subscription.unlimited.is_(True), Subscription.remaining_gig_slots),
                else_=Subscription.remaining_gig_slots - 1,
            )
        },
        synchronize_session="fetch",
    )
    if consumed != 1:
        return _deny(db, company_id, "gig_create", now)

    subscription = get_subscription(db, company_id)
    remaining = None if subscription.unlimited else subscription.remaining_gig_slots
    logger.info(f"Gig slot consumed: company_id={company_id}, remaining={remaining if remaining is not None else 'unlimited'}")
    return LedgerDecision(allowed=True, remaining=remaining)


def authorize_application(db: Session, freelancer_id: int, now: Optional[datetime] = None) -> LedgerDecision:
    """
    Authorize and consume one application for a freelancer.

    is_priority reflects the plan at this moment; the caller copies it onto
    the Application and it is never recomputed.
    """
    now = now or utcnow()
    get_or_create_subscription(db, freelancer_id, ROLE_FREELANCER)

    consumed = db.query(Subscription).filter(
        Subscription.user_id == freelancer_id,
        _active_clause(now),
        or_(Subscription.unlimited.is_(True), Subscription.remaining_application_slots > 0),
    ).update(
        {
            Subscription.remaining_application_slots: case(
                (Subscription.unlimited.is_(True), Subscription.remaining_application_slots),
                else_=Subscription.remaining_application_slots - 1,
            )
        },
        synchronize_session="fetch",
    )
    if consumed != 1:
        return _deny(db, freelancer_id, "apply", now)

    subscription = get_subscription(db, freelancer_id)
    remaining = None if subscription.unlimited else subscription.remaining_application_slots
    logger.info(
        f"Application slot consumed: freelancer_id={freelancer_id}, "
        f"priority={subscription.is_priority_eligible}, remaining={remaining if remaining is not None else 'unlimited'}"
    )
    return LedgerDecision(
        allowed=True,
        is_priority=bool(subscription.is_priority_eligible),
        remaining=remaining,
    )


def get_subscription_summary(db: Session, user_id: int, role: str) -> Dict[str, Any]:
    """
    Get ledger state formatted for GET /billing/subscription.

    Returns:
        Dictionary with plan, status, quota and first-gig entitlement
    """
    subscription = get_or_create_subscription(db, user_id, role)
    active = is_active(subscription)

    if role == ROLE_COMPANY:
        remaining = subscription.remaining_gig_slots
    else:
        remaining = subscription.remaining_application_slots

    summary = {
        "role": role,
        "plan": subscription.plan_type,
        "duration": subscription.duration,
        "status": subscription.status if active or subscription.status != SubscriptionStatus.ACTIVE else SubscriptionStatus.EXPIRED,
        "unlimited": bool(subscription.unlimited),
        "remaining": None if subscription.unlimited else remaining,
        "current_period_end": subscription.current_period_end,
    }
    if role == ROLE_COMPANY:
        summary["first_gig_available"] = not subscription.is_first_gig_consumed
    else:
        summary["is_priority_eligible"] = bool(subscription.is_priority_eligible) and active
    return summary
