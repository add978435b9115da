"""
Tests for plan activation and Stripe subscription webhooks.
"""
from types import SimpleNamespace

import pytest
import stripe

from app.core.errors import ConflictError
from app.db.models.subscription import SubscriptionStatus
from app.services import billing_service
from app.services.subscription_ledger import authorize_application, get_subscription

PERIOD_END = 1893456000  # 2030-01-01T00:00:00Z
NEXT_PERIOD_END = PERIOD_END + 30 * 24 * 3600


def _stripe_subscription(status="active", period_end=PERIOD_END, interval="month"):
    return {
        "id": "sub_123",
        "status": status,
        "items": {"data": [{
            "current_period_end": period_end,
            "price": {"id": "price_basic", "recurring": {"interval": interval}},
        }]},
    }


@pytest.fixture
def paid_freelancer(db, freelancer, monkeypatch):
    """Freelancer who completed a basic checkout."""
    monkeypatch.setattr(
        stripe.Subscription,
        "retrieve",
        lambda subscription_id, api_key=None: SimpleNamespace(to_dict=lambda: _stripe_subscription()),
    )
    billing_service.handle_billing_event({
        "type": "checkout.session.completed",
        "data": {"object": {
            "customer": "cus_123",
            "subscription": "sub_123",
            "metadata": {"user_id": str(freelancer.id), "plan": "basic", "role": "freelancer"},
        }},
    }, db)
    return freelancer


def test_free_plan_activation_is_idempotent(db, freelancer):
    billing_service.activate_free_plan(db, freelancer)
    assert authorize_application(db, freelancer.id).allowed
    db.commit()

    subscription = billing_service.activate_free_plan(db, freelancer)

    assert subscription.remaining_application_slots == 2
    assert subscription.duration == "lifetime"


def test_free_plan_refused_while_paid_plan_active(db, freelancer, grant_plan):
    grant_plan(freelancer, "pro")
    with pytest.raises(ConflictError) as exc_info:
        billing_service.activate_free_plan(db, freelancer)
    assert exc_info.value.code == "PLAN_ALREADY_ACTIVE"


def test_free_plan_is_single_use(db, freelancer):
    subscription = billing_service.activate_free_plan(db, freelancer)
    billing_service.expire_plan(db, subscription, "test")

    with pytest.raises(ConflictError) as exc_info:
        billing_service.activate_free_plan(db, freelancer)
    assert exc_info.value.code == "FREE_PLAN_USED"


def test_checkout_completed_activates_paid_plan(db, paid_freelancer):
    subscription = get_subscription(db, paid_freelancer.id)

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.plan_type == "basic"
    assert subscription.duration == "monthly"
    assert subscription.remaining_application_slots == 20
    assert subscription.is_priority_eligible is True
    assert subscription.stripe_customer_id == "cus_123"
    assert subscription.stripe_subscription_id == "sub_123"
    assert subscription.current_period_end is not None


def test_checkout_without_user_is_rejected(db):
    with pytest.raises(ValueError):
        billing_service.handle_billing_event({
            "type": "checkout.session.completed",
            "data": {"object": {"metadata": {}}},
        }, db)


def test_same_period_update_keeps_quota(db, paid_freelancer):
    authorize_application(db, paid_freelancer.id)
    db.commit()

    billing_service.handle_billing_event({
        "type": "customer.subscription.updated",
        "data": {"object": _stripe_subscription()},
    }, db)

    assert get_subscription(db, paid_freelancer.id).remaining_application_slots == 19


def test_renewal_resets_quota(db, paid_freelancer):
    authorize_application(db, paid_freelancer.id)
    db.commit()

    billing_service.handle_billing_event({
        "type": "customer.subscription.updated",
        "data": {"object": _stripe_subscription(period_end=NEXT_PERIOD_END)},
    }, db)

    subscription = get_subscription(db, paid_freelancer.id)
    assert subscription.remaining_application_slots == 20
    assert subscription.status == SubscriptionStatus.ACTIVE


def test_cancelled_subscription_expires_plan(db, paid_freelancer):
    billing_service.handle_billing_event({
        "type": "customer.subscription.updated",
        "data": {"object": _stripe_subscription(status="canceled")},
    }, db)

    subscription = get_subscription(db, paid_freelancer.id)
    assert subscription.status == SubscriptionStatus.EXPIRED
    assert subscription.is_priority_eligible is False
    assert authorize_application(db, paid_freelancer.id).allowed is False


def test_deleted_subscription_expires_plan(db, paid_freelancer):
    billing_service.handle_billing_event({
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_123"}},
    }, db)

    assert get_subscription(db, paid_freelancer.id).status == SubscriptionStatus.EXPIRED


def test_unhandled_event_type_is_ignored(db):
    assert billing_service.handle_billing_event({"type": "invoice.created", "data": {}}, db) is False


def test_checkout_requires_stripe_key(db, freelancer, monkeypatch):
    monkeypatch.setattr(billing_service, "STRIPE_SECRET_KEY", None)
    with pytest.raises(ValueError):
        billing_service.create_checkout_session(db, freelancer, "basic")
