"""
Tests for gig creation, lifecycle and slot reservation.
"""
import pytest

from app.core.errors import BillingRequiredError, ForbiddenError, GigFullError, InvalidTransitionError, MarketplaceError
from app.db.models.gig import Gig, GigStatus
from app.db.models.user import User
from app.db.session import run_with_conflict_retry
from app.services import gig_store


def _gig_data(**overrides):
    data = {"title": "Product photos", "budget": 250000, "quantity": 1}
    data.update(overrides)
    return data


def test_first_gig_created_through_free_path(db, company):
    gig = gig_store.create_gig(db, company, _gig_data())

    assert gig.id is not None
    assert gig.status == GigStatus.ACTIVE
    assert gig.is_first_gig is True
    assert gig.filled_count == 0
    assert gig.escrow_required is True


def test_second_gig_requires_subscription(db, company):
    gig_store.create_gig(db, company, _gig_data())

    with pytest.raises(BillingRequiredError) as exc_info:
        gig_store.create_gig(db, company, _gig_data(title="Second gig"))

    assert exc_info.value.code == "NO_ACTIVE_SUBSCRIPTION"
    assert exc_info.value.to_dict()["upgrade_url"].endswith("/pricing")
    assert db.query(Gig).count() == 1


def test_paid_company_creates_more_gigs(db, company, grant_plan):
    grant_plan(company, "basic")
    first = gig_store.create_gig(db, company, _gig_data())
    second = gig_store.create_gig(db, company, _gig_data(title="Another gig"))

    assert first.is_first_gig is True
    assert second.is_first_gig is False


def test_freelancer_cannot_create_gig(db, freelancer):
    with pytest.raises(ForbiddenError) as exc_info:
        gig_store.create_gig(db, freelancer, _gig_data())
    assert exc_info.value.code == "ROLE_NOT_ALLOWED"


@pytest.mark.parametrize("overrides", [{"budget": 0}, {"quantity": 0}, {"title": "ab"}])
def test_invalid_gig_data_rejected_before_quota(db, company, overrides):
    with pytest.raises(MarketplaceError) as exc_info:
        gig_store.create_gig(db, company, _gig_data(**overrides))

    assert exc_info.value.code == "INVALID_GIG"
    # first-gig entitlement untouched
    assert gig_store.create_gig(db, company, _gig_data()).is_first_gig is True


def test_draft_gig_must_be_published(db, company):
    gig = gig_store.create_gig(db, company, _gig_data(draft=True))
    assert gig.status == GigStatus.DRAFT
    assert gig_store.reserve_slot(db, gig.id) is False

    gig = gig_store.transition_gig(db, gig.id, company.id, "publish")
    assert gig.status == GigStatus.ACTIVE


def test_reserve_fills_and_completes(db, company, make_gig):
    gig = make_gig(company, quantity=2)

    assert gig_store.reserve_slot(db, gig.id) is True
    db.commit()
    db.refresh(gig)
    assert gig.filled_count == 1
    assert gig.status == GigStatus.ACTIVE

    assert gig_store.reserve_slot(db, gig.id) is True
    db.commit()
    db.refresh(gig)
    assert gig.filled_count == 2
    assert gig.status == GigStatus.COMPLETED

    assert gig_store.reserve_slot(db, gig.id) is False
    assert isinstance(gig_store.reservation_failure(db, gig.id), GigFullError)


def test_release_reopens_completed_gig(db, company, make_gig):
    gig = make_gig(company, quantity=1)
    gig_store.reserve_slot(db, gig.id)
    db.commit()

    assert gig_store.release_slot(db, gig.id) is True
    db.commit()
    db.refresh(gig)

    assert gig.filled_count == 0
    assert gig.status == GigStatus.ACTIVE


def test_release_never_goes_below_zero(db, company, make_gig):
    gig = make_gig(company)

    assert gig_store.release_slot(db, gig.id) is False
    db.refresh(gig)
    assert gig.filled_count == 0


def test_paused_gig_cannot_be_reserved(db, company, make_gig):
    gig = make_gig(company)
    gig_store.transition_gig(db, gig.id, company.id, "pause")

    assert gig_store.reserve_slot(db, gig.id) is False
    assert gig_store.reservation_failure(db, gig.id).code == "GIG_NOT_OPEN"

    gig = gig_store.transition_gig(db, gig.id, company.id, "resume")
    assert gig.status == GigStatus.ACTIVE
    assert gig_store.reserve_slot(db, gig.id) is True


def test_invalid_lifecycle_transition(db, company, make_gig):
    gig = make_gig(company)

    with pytest.raises(InvalidTransitionError):
        gig_store.transition_gig(db, gig.id, company.id, "resume")

    gig_store.close_gig(db, gig.id, company.id)
    with pytest.raises(InvalidTransitionError):
        gig_store.transition_gig(db, gig.id, company.id, "pause")


def test_completed_gig_cannot_be_closed(db, company, make_gig):
    gig = make_gig(company)
    gig_store.reserve_slot(db, gig.id)
    db.commit()

    with pytest.raises(InvalidTransitionError):
        gig_store.close_gig(db, gig.id, company.id)


def test_only_owner_manages_gig(db, company, make_user, make_gig):
    gig = make_gig(company)
    other = make_user("company")

    with pytest.raises(ForbiddenError) as exc_info:
        gig_store.close_gig(db, gig.id, other.id)
    assert exc_info.value.code == "NOT_GIG_OWNER"


def test_list_open_gigs_skips_full_and_paused(db, company, make_gig):
    open_gig = make_gig(company, title="Open gig")
    full_gig = make_gig(company, title="Full gig")
    make_gig(company, title="Paused gig", status=GigStatus.PAUSED)
    gig_store.reserve_slot(db, full_gig.id)
    db.commit()

    assert [g.id for g in gig_store.list_open_gigs(db)] == [open_gig.id]
    assert len(gig_store.list_company_gigs(db, company.id)) == 3


def test_concurrent_reservations_fill_exactly_one_slot(file_sessions, run_racers):
    """Many workers race for the single slot of a quantity=1 gig."""
    setup = file_sessions()
    owner = User(full_name="Race Co", email="race@example.com", role="company")
    setup.add(owner)
    setup.flush()
    gig = Gig(company_id=owner.id, title="Race gig", budget=1000, currency="inr", quantity=1)
    setup.add(gig)
    setup.commit()
    gig_id = gig.id
    setup.close()

    def _reserve(session):
        won = gig_store.reserve_slot(session, gig_id)
        session.commit()
        return won

    def worker():
        session = file_sessions()
        try:
            return run_with_conflict_retry(session, _reserve)
        finally:
            session.close()

    results = run_racers(*[worker for _ in range(8)])

    assert all(isinstance(r, bool) for r in results), results
    assert results.count(True) == 1

    check = file_sessions()
    final = check.query(Gig).filter(Gig.id == gig_id).one()
    assert final.filled_count == 1
    assert final.status == GigStatus.COMPLETED
    check.close()


def test_claim_slot_retries_after_concurrent_release(db, company, make_gig, monkeypatch):
    gig = make_gig(company, quantity=1)
    assert gig_store.reserve_slot(db, gig.id) is True
    db.commit()
    real_reserve = gig_store.reserve_slot
    calls = []

    def reserve_then_release(session, gig_id):
        won = real_reserve(session, gig_id)
        if not calls:
            # the holder compensates between the refused update and the diagnosis
            gig_store.release_slot(session, gig_id)
        calls.append(won)
        return won

    monkeypatch.setattr(gig_store, "reserve_slot", reserve_then_release)

    gig_store.claim_slot(db, gig.id)

    assert calls == [False, True]
    db.refresh(gig)
    assert gig.filled_count == 1
    assert gig.status == GigStatus.COMPLETED


def test_claim_slot_on_full_gig_reports_full(db, company, make_gig):
    gig = make_gig(company, quantity=1)
    gig_store.claim_slot(db, gig.id)

    with pytest.raises(GigFullError):
        gig_store.claim_slot(db, gig.id)


def test_claim_slot_on_paused_gig_reports_not_open(db, company, make_gig):
    gig = make_gig(company, status=GigStatus.PAUSED)

    with pytest.raises(MarketplaceError) as exc_info:
        gig_store.claim_slot(db, gig.id)
    assert exc_info.value.code == "GIG_NOT_OPEN"


@pytest.mark.parametrize("field", ["budget", "quantity"])
def test_boolean_amounts_are_rejected(db, company, field):
    with pytest.raises(MarketplaceError) as exc_info:
        gig_store.create_gig(db, company, _gig_data(**{field: True}))
    assert exc_info.value.code == "INVALID_GIG"
