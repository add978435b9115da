"""
Application state machine.

    pending --reject--> rejected
    pending --accept--> payment_pending --verify--> accepted
                              |
                              +--fail/expire--> pending (slot released)

Gigs that do not require escrow go pending -> accepted directly. Every
transition is a conditional UPDATE keyed by the expected current status and
writes exactly one outbox event in the same transaction.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
)
from app.core.gating import enforce_ledger_decision
from app.core.plan_limits import ROLE_COMPANY, ROLE_FREELANCER
from app.db.models.application import Application, ApplicationStatus
from app.db.models.gig import Gig, GigStatus
from app.db.models.user import User
from app.db.session import run_with_conflict_retry
from app.services import gig_store, subscription_ledger
from app.services.notification_dispatcher import (
    emit_event,
    APPLICATION_ACCEPTED,
    APPLICATION_REJECTED,
    APPLICATION_PAYMENT_FAILED,
)

logger = logging.getLogger(__name__)

MIN_ITERATIONS = 1
MAX_ITERATIONS = 20


def _require_role(user: User, role: str, action: str) -> None:
    if user.role != role:
        raise ForbiddenError(f"Only {role} accounts can {action}", code="ROLE_NOT_ALLOWED")


def get_application(db: Session, gig_id: int, freelancer_id: int) -> Application:
    application = db.query(Application).filter(
        Application.gig_id == gig_id,
        Application.freelancer_id == freelancer_id,
    ).first()
    if not application:
        raise NotFoundError("Application not found", code="APPLICATION_NOT_FOUND")
    return application


def apply_to_gig(
    db: Session,
    gig_id: int,
    freelancer: User,
    iterations: int = 3,
    cover_letter: Optional[str] = None,
) -> Application:
    """
    Create a pending application, consuming one application slot.

    is_priority is copied from the freelancer's plan here and never changes,
    even if the plan later lapses.
    """
    _require_role(freelancer, ROLE_FREELANCER, "apply to gigs")
    if not isinstance(iterations, int) or not MIN_ITERATIONS <= iterations <= MAX_ITERATIONS:
        raise MarketplaceError(
            f"Iterations must be between {MIN_ITERATIONS} and {MAX_ITERATIONS}",
            code="INVALID_ITERATIONS",
        )

    gig = gig_store.get_gig(db, gig_id)
    if gig.status != GigStatus.ACTIVE:
        raise ConflictError(f"Gig is not accepting applications (status={gig.status})", code="GIG_NOT_OPEN")

    existing = db.query(Application.id).filter(
        Application.gig_id == gig_id,
        Application.freelancer_id == freelancer.id,
    ).first()
    if existing:
        raise ConflictError("You have already applied to this gig", code="ALREADY_APPLIED")

    decision = subscription_ledger.authorize_application(db, freelancer.id)
    if not decision.allowed:
        db.rollback()
        enforce_ledger_decision(decision, "apply")

    application = Application(
        gig_id=gig_id,
        freelancer_id=freelancer.id,
        status=ApplicationStatus.PENDING,
        iterations=iterations,
        is_priority=decision.is_priority,
        cover_letter=cover_letter,
    )
    db.add(application)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent duplicate; the rollback also restores the consumed slot
        db.rollback()
        logger.info(f"Duplicate application rejected: gig_id={gig_id}, freelancer_id={freelancer.id}")
        raise ConflictError("You have already applied to this gig", code="ALREADY_APPLIED")

    db.refresh(application)
    logger.info(
        f"Application created: application_id={application.id}, gig_id={gig_id}, "
        f"freelancer_id={freelancer.id}, priority={application.is_priority}"
    )
    return application


def reject_application(
    db: Session,
    gig_id: int,
    freelancer_id: int,
    company: User,
    reason: Optional[str] = None,
) -> Application:
    """pending -> rejected, by the gig owner."""
    _require_role(company, ROLE_COMPANY, "reject applications")
    gig = gig_store.get_owned_gig(db, gig_id, company.id)
    application = get_application(db, gig_id, freelancer_id)

    updated = db.query(Application).filter(
        Application.id == application.id,
        Application.status == ApplicationStatus.PENDING,
    ).update(
        {
            Application.status: ApplicationStatus.REJECTED,
            Application.rejection_reason: reason,
            Application.rejected_at: utcnow(),
        },
        synchronize_session="fetch",
    )
    if updated != 1:
        db.rollback()
        db.refresh(application)
        logger.warning(f"Reject refused: application_id={application.id}, status={application.status}")
        raise InvalidTransitionError(f"Cannot reject an application in status '{application.status}'")

    emit_event(db, APPLICATION_REJECTED, application, gig.company_id, reason=reason)
    db.commit()
    db.refresh(application)

    logger.info(f"Application rejected: application_id={application.id}, gig_id={gig_id}")
    return application


class AcceptanceSaga:
    """
    Acceptance as reserve -> await payment -> complete | compensate.

    Each step runs in the caller's transaction and does not commit. The slot
    reservation commits together with the escrow order that holds it, before
    the payment gateway is called; compensation gives the slot back when that
    order fails or expires.
    """

    def __init__(self, db: Session, application: Application):
        self.db = db
        self.application = application

    @property
    def gig(self) -> Gig:
        return self.application.gig

    def _reserve(self) -> None:
        try:
            gig_store.claim_slot(self.db, self.application.gig_id)
        except MarketplaceError as e:
            logger.info(f"Acceptance refused: application_id={self.application.id}, reason={e.code}")
            raise

    def _move(self, from_status: str, values: Dict[Any, Any], escrow_order_id: Optional[int] = None) -> bool:
        query = self.db.query(Application).filter(
            Application.id == self.application.id,
            Application.status == from_status,
        )
        if escrow_order_id is not None:
            query = query.filter(Application.current_escrow_order_id == escrow_order_id)
        return query.update(values, synchronize_session="fetch") == 1

    def begin(self) -> None:
        """Reserve a slot and hold the application in payment_pending."""
        self._reserve()
        if not self._move(ApplicationStatus.PENDING, {Application.status: ApplicationStatus.PAYMENT_PENDING}):
            raise InvalidTransitionError("Application is no longer pending")
        logger.info(f"Acceptance started: application_id={self.application.id}, gig_id={self.application.gig_id}")

    def accept_directly(self) -> None:
        """Reserve and accept in one step for gigs without escrow."""
        self._reserve()
        moved = self._move(
            ApplicationStatus.PENDING,
            {Application.status: ApplicationStatus.ACCEPTED, Application.accepted_at: utcnow()},
        )
        if not moved:
            raise InvalidTransitionError("Application is no longer pending")
        emit_event(self.db, APPLICATION_ACCEPTED, self.application, self.gig.company_id)
        logger.info(f"Application accepted without escrow: application_id={self.application.id}")

    def attach_order(self, escrow_order_id: int) -> None:
        if not self._move(ApplicationStatus.PAYMENT_PENDING, {Application.current_escrow_order_id: escrow_order_id}):
            raise InvalidTransitionError("Application left payment_pending before the order was attached")

    def complete(self, escrow_order_id: int) -> None:
        """payment_pending -> accepted for the current order."""
        moved = self._move(
            ApplicationStatus.PAYMENT_PENDING,
            {Application.status: ApplicationStatus.ACCEPTED, Application.accepted_at: utcnow()},
            escrow_order_id=escrow_order_id,
        )
        if not moved:
            raise InvalidTransitionError("Application is not awaiting this payment")
        emit_event(self.db, APPLICATION_ACCEPTED, self.application, self.gig.company_id, escrow_order_id=escrow_order_id)
        logger.info(f"Application accepted: application_id={self.application.id}, escrow_order_id={escrow_order_id}")

    def compensate(self, reason: str, escrow_order_id: Optional[int] = None) -> bool:
        """
        payment_pending -> pending and release the slot.

        Returns False (and releases nothing) if the application already left
        payment_pending, so a late failure never undoes an acceptance.
        """
        moved = self._move(
            ApplicationStatus.PAYMENT_PENDING,
            {Application.status: ApplicationStatus.PENDING},
            escrow_order_id=escrow_order_id,
        )
        if not moved:
            logger.info(f"Compensation skipped: application_id={self.application.id}, reason={reason}")
            return False
        gig_store.release_slot(self.db, self.application.gig_id)
        emit_event(
            self.db, APPLICATION_PAYMENT_FAILED, self.application, self.gig.company_id,
            reason=reason, escrow_order_id=escrow_order_id,
        )
        logger.info(f"Acceptance compensated: application_id={self.application.id}, reason={reason}")
        return True


def accept_application(db: Session, gig_id: int, freelancer_id: int, company: User, coordinator) -> Dict[str, Any]:
    """
    Company accepts an application.

    Returns {"accepted": True, ...} for gigs without escrow, otherwise the
    escrow handle from the coordinator ({"requires_payment": True, ...}).

    Raises:
        GigFullError: No open slot (including slots held by payment_pending)
        GatewayUnavailableError: Order could not be opened; the slot is released

    The slot, the payment_pending move and the escrow order commit together,
    so a crash before the gateway answers leaves an order the expiry sweep
    settles.
    """
    _require_role(company, ROLE_COMPANY, "accept applications")
    gig = gig_store.get_owned_gig(db, gig_id, company.id)
    application = get_application(db, gig_id, freelancer_id)
    if application.status != ApplicationStatus.PENDING:
        raise InvalidTransitionError(f"Cannot accept an application in status '{application.status}'")

    if not gig.escrow_required:
        def _accept(session: Session) -> None:
            AcceptanceSaga(session, application).accept_directly()
            session.commit()

        _run_saga_step(db, _accept)
        db.refresh(application)
        return {"accepted": True, "application_id": application.id, "status": application.status}

    def _begin(session: Session) -> None:
        AcceptanceSaga(session, application).begin()
        coordinator.open_order(session, application)
        session.commit()

    _run_saga_step(db, _begin)
    return coordinator.initiate(db, application.id)


def _run_saga_step(db: Session, step) -> None:
    try:
        run_with_conflict_retry(db, step)
    except MarketplaceError:
        db.rollback()
        raise


def list_gig_applications(db: Session, gig_id: int, company: User, status: Optional[str] = None) -> List[Application]:
    """Applications on an owned gig, priority first, then oldest first."""
    _require_role(company, ROLE_COMPANY, "review applications")
    gig_store.get_owned_gig(db, gig_id, company.id)
    query = db.query(Application).filter(Application.gig_id == gig_id)
    if status:
        query = query.filter(Application.status == status)
    return query.order_by(
        Application.is_priority.desc(),
        Application.created_at.asc(),
        Application.id.asc(),
    ).all()


def list_freelancer_applications(db: Session, freelancer: User) -> List[Application]:
    _require_role(freelancer, ROLE_FREELANCER, "list applications")
    return (
        db.query(Application)
        .filter(Application.freelancer_id == freelancer.id)
        .order_by(Application.created_at.desc(), Application.id.desc())
        .all()
    )
