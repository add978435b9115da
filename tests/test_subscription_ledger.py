"""
Unit tests for the subscription ledger.
Tests first-gig-free, quota consumption, expiry and priority capture.
"""
from datetime import timedelta

from app.core.clock import utcnow
from app.db.models.subscription import Subscription
from app.services.subscription_ledger import (
    authorize_gig_creation,
    authorize_application,
    get_subscription_summary,
    NO_ACTIVE_SUBSCRIPTION,
    QUOTA_EXHAUSTED,
)


def _subscription(db, user):
    db.expire_all()
    return db.query(Subscription).filter(Subscription.user_id == user.id).first()


def test_first_gig_is_free_without_subscription(db, company):
    decision = authorize_gig_creation(db, company.id)
    db.commit()

    assert decision.allowed is True
    assert decision.first_gig_free is True
    assert _subscription(db, company).is_first_gig_consumed is True


def test_second_gig_without_subscription_is_denied(db, company):
    authorize_gig_creation(db, company.id)
    db.commit()

    decision = authorize_gig_creation(db, company.id)

    assert decision.allowed is False
    assert decision.reason == NO_ACTIVE_SUBSCRIPTION


def test_paid_company_plan_is_unlimited(db, company, grant_plan):
    grant_plan(company, "basic")
    authorize_gig_creation(db, company.id)  # free first gig

    for _ in range(5):
        decision = authorize_gig_creation(db, company.id)
        assert decision.allowed is True
        assert decision.first_gig_free is False
        assert decision.remaining is None
    db.commit()


def test_freelancer_without_plan_cannot_apply(db, freelancer):
    decision = authorize_application(db, freelancer.id)

    assert decision.allowed is False
    assert decision.reason == NO_ACTIVE_SUBSCRIPTION


def test_free_plan_allows_three_applications(db, freelancer, grant_plan):
    grant_plan(freelancer, "free", duration="lifetime")

    remaining = [authorize_application(db, freelancer.id).remaining for _ in range(3)]
    db.commit()
    assert remaining == [2, 1, 0]

    decision = authorize_application(db, freelancer.id)
    assert decision.allowed is False
    assert decision.reason == QUOTA_EXHAUSTED
    assert _subscription(db, freelancer).remaining_application_slots == 0


def test_free_plan_is_not_priority(db, freelancer, grant_plan):
    grant_plan(freelancer, "free", duration="lifetime")

    assert authorize_application(db, freelancer.id).is_priority is False


def test_paid_freelancer_plan_grants_priority(db, freelancer, grant_plan):
    grant_plan(freelancer, "basic", period_end=utcnow() + timedelta(days=30))

    decision = authorize_application(db, freelancer.id)

    assert decision.allowed is True
    assert decision.is_priority is True
    assert decision.remaining == 19


def test_pro_plan_does_not_decrement(db, freelancer, grant_plan):
    grant_plan(freelancer, "pro")
    before = _subscription(db, freelancer).remaining_application_slots

    for _ in range(10):
        assert authorize_application(db, freelancer.id).allowed is True
    db.commit()

    sub = _subscription(db, freelancer)
    assert sub.unlimited is True
    assert sub.remaining_application_slots == before


def test_expired_period_is_treated_as_no_subscription(db, freelancer, grant_plan):
    grant_plan(freelancer, "basic", period_end=utcnow() - timedelta(minutes=1))

    decision = authorize_application(db, freelancer.id)

    assert decision.allowed is False
    assert decision.reason == NO_ACTIVE_SUBSCRIPTION
    assert _subscription(db, freelancer).remaining_application_slots == 20


def test_rolled_back_consumption_restores_quota(db, freelancer, grant_plan):
    grant_plan(freelancer, "free", duration="lifetime")

    authorize_application(db, freelancer.id)
    db.rollback()

    assert _subscription(db, freelancer).remaining_application_slots == 3


def test_subscription_summary_for_company(db, company):
    summary = get_subscription_summary(db, company.id, "company")

    assert summary["status"] == "none"
    assert summary["first_gig_available"] is True
    assert summary["remaining"] == 0


def test_subscription_summary_reports_expired_period(db, freelancer, grant_plan):
    grant_plan(freelancer, "basic", period_end=utcnow() - timedelta(days=1))

    summary = get_subscription_summary(db, freelancer.id, "freelancer")

    assert summary["status"] == "expired"
    assert summary["is_priority_eligible"] is False
