"""
Gig store: gig records and slot capacity.

reserve_slot/release_slot are the only writers of filled_count. Both are a
single conditional UPDATE; the affected row count says whether the caller won.
Neither commits: they run inside the caller's transaction.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from app.core.config import CURRENCY
from app.core.errors import ForbiddenError, NotFoundError, MarketplaceError, ConflictError, GigFullError, InvalidTransitionError
from app.core.gating import enforce_ledger_decision
from app.core.plan_limits import ROLE_COMPANY
from app.db.models.gig import Gig, GigStatus
from app.db.models.user import User
from app.services import subscription_ledger

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 3


def get_gig(db: Session, gig_id: int) -> Gig:
    gig = db.query(Gig).filter(Gig.id == gig_id).first()
    if not gig:
        raise NotFoundError("Gig not found", code="GIG_NOT_FOUND")
    return gig


def get_owned_gig(db: Session, gig_id: int, company_id: int) -> Gig:
    """Fetch a gig and check that company_id owns it."""
    gig = get_gig(db, gig_id)
    if gig.company_id != company_id:
        logger.warning(f"Gig ownership check failed: gig_id={gig_id}, company_id={company_id}")
        raise ForbiddenError("You do not own this gig", code="NOT_GIG_OWNER")
    return gig


def _validate_gig_data(data: Dict[str, Any]) -> None:
    title = (data.get("title") or "").strip()
    if len(title) < MIN_TITLE_LENGTH:
        raise MarketplaceError(f"Title must be at least {MIN_TITLE_LENGTH} characters", code="INVALID_GIG")
    budget = data.get("budget")
    if not isinstance(budget, int) or isinstance(budget, bool) or budget <= 0:
        raise MarketplaceError("Budget must be a positive amount", code="INVALID_GIG")
    quantity = data.get("quantity", 1)
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise MarketplaceError("Quantity must be at least 1", code="INVALID_GIG")


def create_gig(db: Session, company: User, data: Dict[str, Any]) -> Gig:
    """
    Create a gig after the subscription ledger authorizes it.

    The ledger consumption and the insert commit together; a denied request
    is rolled back and leaves no trace.

    Args:
        db: Database session
        company: Authenticated company user
        data: title, description, budget, currency, quantity, escrow_required, draft

    Returns:
        The committed Gig

    Raises:
        ForbiddenError: Caller is not a company
        BillingRequiredError: Ledger denied the creation
    """
    if company.role != ROLE_COMPANY:
        raise ForbiddenError("Only companies can post gigs", code="ROLE_NOT_ALLOWED")
    _validate_gig_data(data)

    decision = subscription_ledger.authorize_gig_creation(db, company.id)
    if not decision.allowed:
        db.rollback()
        enforce_ledger_decision(decision, "gig_create")

    gig = Gig(
        company_id=company.id,
        title=data["title"].strip(),
        description=data.get("description"),
        budget=data["budget"],
        currency=(data.get("currency") or CURRENCY).lower(),
        quantity=data.get("quantity", 1),
        filled_count=0,
        status=GigStatus.DRAFT if data.get("draft") else GigStatus.ACTIVE,
        escrow_required=data.get("escrow_required", True),
        is_first_gig=decision.first_gig_free,
    )
    db.add(gig)
    db.commit()
    db.refresh(gig)

    logger.info(
        f"Gig created: gig_id={gig.id}, company_id={company.id}, quantity={gig.quantity}, "
        f"status={gig.status}, first_gig_free={decision.first_gig_free}"
    )
    return gig


def reserve_slot(db: Session, gig_id: int) -> bool:
    """
    Take one slot on an active gig.

    Increments filled_count only while filled_count < quantity, and flips the
    gig to completed in the same statement when the last slot is taken.
    Returns False when the gig is full or not active.
    """
    updated = db.query(Gig).filter(
        Gig.id == gig_id,
        Gig.status == GigStatus.ACTIVE,
        Gig.filled_count < Gig.quantity,
    ).update(
        {
            Gig.filled_count: Gig.filled_count + 1,
            Gig.status: case(
                (Gig.filled_count + 1 >= Gig.quantity, GigStatus.COMPLETED),
                else_=GigStatus.ACTIVE,
            ),
        },
        synchronize_session="fetch",
    )
    if updated == 1:
        logger.info(f"Slot reserved: gig_id={gig_id}")
        return True
    return False


def release_slot(db: Session, gig_id: int) -> bool:
    """Give back one slot; reopens a completed gig. No-op at zero."""
    updated = db.query(Gig).filter(
        Gig.id == gig_id,
        Gig.filled_count > 0,
    ).update(
        {
            Gig.filled_count: Gig.filled_count - 1,
            Gig.status: case(
                (Gig.status == GigStatus.COMPLETED, GigStatus.ACTIVE),
                else_=Gig.status,
            ),
        },
        synchronize_session="fetch",
    )
    if updated == 1:
        logger.info(f"Slot released: gig_id={gig_id}")
        return True
    logger.warning(f"Slot release skipped, nothing reserved: gig_id={gig_id}")
    return False


def _fresh_gig(db: Session, gig_id: int) -> Optional[Gig]:
    gig = db.query(Gig).filter(Gig.id == gig_id).first()
    if gig is not None:
        db.refresh(gig)
    return gig


def reservation_failure(db: Session, gig_id: int) -> MarketplaceError:
    """Explain why reserve_slot returned False."""
    gig = _fresh_gig(db, gig_id)
    if gig is None:
        return NotFoundError("Gig not found", code="GIG_NOT_FOUND")
    if gig.status in (GigStatus.ACTIVE, GigStatus.COMPLETED):
        # an active gig only refuses a reservation when it is full
        return GigFullError("All slots for this gig are filled or held for payment")
    return ConflictError(f"Gig is not open (status={gig.status})", code="GIG_NOT_OPEN")


def claim_slot(db: Session, gig_id: int) -> None:
    """
    reserve_slot, raising the reason when no slot could be taken.

    A refused reservation on a gig that now shows a free slot lost to a
    concurrent release; it is tried once more before giving up.
    """
    if reserve_slot(db, gig_id):
        return
    gig = _fresh_gig(db, gig_id)
    if gig is not None and gig.status == GigStatus.ACTIVE and gig.filled_count < gig.quantity:
        logger.info(f"Slot freed during reservation, retrying: gig_id={gig_id}")
        if reserve_slot(db, gig_id):
            return
    raise reservation_failure(db, gig_id)


_TRANSITIONS = {
    "publish": ((GigStatus.DRAFT,), GigStatus.ACTIVE),
    "pause": ((GigStatus.ACTIVE,), GigStatus.PAUSED),
    "resume": ((GigStatus.PAUSED,), GigStatus.ACTIVE),
    "close": ((GigStatus.DRAFT, GigStatus.ACTIVE, GigStatus.PAUSED), GigStatus.CLOSED),
}


def transition_gig(db: Session, gig_id: int, company_id: int, action: str) -> Gig:
    """
    Owner-driven lifecycle change: publish, pause, resume or close.

    Conditional on the current status, so a close racing with the last
    reservation either wins before completion or fails afterwards.
    """
    from_statuses, to_status = _TRANSITIONS[action]
    get_owned_gig(db, gig_id, company_id)

    updated = db.query(Gig).filter(
        Gig.id == gig_id,
        Gig.status.in_(from_statuses),
    ).update({Gig.status: to_status}, synchronize_session="fetch")

    if updated != 1:
        db.rollback()
        gig = get_gig(db, gig_id)
        logger.info(f"Gig {action} refused: gig_id={gig_id}, status={gig.status}")
        raise InvalidTransitionError(f"Cannot {action} a gig in status '{gig.status}'")

    db.commit()
    gig = get_gig(db, gig_id)
    db.refresh(gig)
    logger.info(f"Gig {action}: gig_id={gig_id}, status={gig.status}")
    return gig


def close_gig(db: Session, gig_id: int, company_id: int) -> Gig:
    return transition_gig(db, gig_id, company_id, "close")


def list_company_gigs(db: Session, company_id: int, status: Optional[str] = None) -> List[Gig]:
    query = db.query(Gig).filter(Gig.company_id == company_id)
    if status:
        query = query.filter(Gig.status == status)
    return query.order_by(Gig.created_at.desc(), Gig.id.desc()).all()


def list_open_gigs(db: Session, limit: int = 50, offset: int = 0) -> List[Gig]:
    """Active gigs with at least one open slot, newest first."""
    return (
        db.query(Gig)
        .filter(Gig.status == GigStatus.ACTIVE, Gig.filled_count < Gig.quantity)
        .order_by(Gig.created_at.desc(), Gig.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
