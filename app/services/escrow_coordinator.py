"""
Escrow payment coordinator.

The EscrowOrder row is written in the same transaction that reserves the gig
slot, under a placeholder gateway id, so every held slot has an order the
expiry sweep can find. initiate() then opens the gateway order and records its
id. verify() checks the payment with the gateway and only then finalizes
acceptance. Verification is idempotent on (gateway_order_id,
gateway_payment_id) and safe against concurrent duplicates and the expiry
sweep: every step is a conditional UPDATE and the second writer loses at the
status guard.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import ESCROW_ORDER_TTL_MINUTES
from app.core.errors import (
    ConflictError,
    GatewayUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    PaymentVerificationError,
)
from app.core.fees import escrow_amount
from app.db.models.application import Application
from app.db.models.escrow_order import EscrowOrder, EscrowOrderStatus
from app.db.session import run_with_conflict_retry
from app.services.application_workflow import AcceptanceSaga
from app.services.payment_gateway import StripeEscrowGateway, get_gateway

logger = logging.getLogger(__name__)

OUTCOME_ACCEPTED = "accepted"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_SUPERSEDED = "superseded"

# gateway_order_id of an order whose gateway intent is not created yet
PENDING_ORDER_PREFIX = "pending:"


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    outcome: str
    application_id: Optional[int] = None
    escrow_order_id: Optional[int] = None


class EscrowCoordinator:
    def __init__(self, gateway: StripeEscrowGateway):
        self.gateway = gateway

    def open_order(self, db: Session, application: Application) -> EscrowOrder:
        """
        Add a created order for an application just moved to payment_pending
        and point the application at it. Flushed, not committed.
        """
        gig = application.gig
        amount, fee, fee_version = escrow_amount(gig.budget)
        order = EscrowOrder(
            application_id=application.id,
            gig_id=gig.id,
            amount=amount,
            platform_fee=fee,
            fee_version=fee_version,
            currency=gig.currency,
            gateway_order_id=f"{PENDING_ORDER_PREFIX}{uuid.uuid4().hex}",
            status=EscrowOrderStatus.CREATED,
            expires_at=utcnow() + timedelta(minutes=ESCROW_ORDER_TTL_MINUTES),
        )
        db.add(order)
        db.flush()
        AcceptanceSaga(db, application).attach_order(order.id)
        return order

    def initiate(self, db: Session, application_id: int) -> Dict[str, Any]:
        """
        Open the gateway order for the application's current escrow order.

        Any failure fails the order and compensates the acceptance (slot
        released, application back to pending) before the error surfaces.

        Returns:
            Client handle: gateway_order_id, client_secret, amount, fee, currency, expiry
        """
        application = db.query(Application).filter(Application.id == application_id).first()
        if not application:
            raise NotFoundError("Application not found", code="APPLICATION_NOT_FOUND")
        order = db.query(EscrowOrder).filter(EscrowOrder.id == application.current_escrow_order_id).first()
        if (
            order is None
            or order.status != EscrowOrderStatus.CREATED
            or not order.gateway_order_id.startswith(PENDING_ORDER_PREFIX)
        ):
            raise InvalidTransitionError("Application has no escrow order awaiting the payment gateway")

        order_id = order.id
        placeholder = order.gateway_order_id
        try:
            gateway_order = self.gateway.create_order(
                amount=order.amount,
                currency=order.currency,
                receipt=placeholder,
                metadata={"application_id": application.id, "gig_id": order.gig_id, "escrow_order_id": order_id},
            )
        except Exception as e:
            db.rollback()
            reason = "gateway_unavailable" if isinstance(e, GatewayUnavailableError) else f"gateway_error: {e}"[:500]
            logger.error(
                f"Escrow order could not be opened, acceptance rolled back: application_id={application_id}, "
                f"escrow_order_id={order_id}, error={e}",
                exc_info=not isinstance(e, GatewayUnavailableError),
            )
            settle_unpaid_order(db, order_id, EscrowOrderStatus.FAILED, reason)
            raise

        try:
            recorded = db.query(EscrowOrder).filter(
                EscrowOrder.id == order_id,
                EscrowOrder.status == EscrowOrderStatus.CREATED,
                EscrowOrder.gateway_order_id == placeholder,
            ).update({EscrowOrder.gateway_order_id: gateway_order.order_id}, synchronize_session="fetch")
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(
                f"Gateway order not recorded, acceptance rolled back: escrow_order_id={order_id}, "
                f"gateway_order_id={gateway_order.order_id}, error={e}",
                exc_info=True,
            )
            settle_unpaid_order(db, order_id, EscrowOrderStatus.FAILED, "order_not_recorded")
            raise

        if recorded != 1:
            logger.warning(
                f"Escrow order settled before the gateway order was recorded: escrow_order_id={order_id}, "
                f"gateway_order_id={gateway_order.order_id}"
            )
            raise ConflictError("Acceptance expired before payment could start; accept again", code="ORDER_EXPIRED")

        order = db.query(EscrowOrder).filter(EscrowOrder.id == order_id).first()
        logger.info(
            f"Escrow order created: escrow_order_id={order.id}, application_id={application_id}, "
            f"gateway_order_id={order.gateway_order_id}, amount={order.amount}, fee={order.platform_fee}, "
            f"fee_version={order.fee_version}"
        )
        return {
            "requires_payment": True,
            "application_id": application_id,
            "escrow_order_id": order.id,
            "gateway_order_id": order.gateway_order_id,
            "client_secret": gateway_order.client_secret,
            "amount": order.amount,
            "platform_fee": order.platform_fee,
            "currency": order.currency,
            "expires_at": order.expires_at,
        }

    def verify(
        self,
        db: Session,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        application_id: Optional[int] = None,
    ) -> VerificationResult:
        """
        Verify a client-submitted payment proof and finalize acceptance.

        The proof is the PaymentIntent client_secret; the intent is looked up
        at the gateway and must have succeeded with this payment.

        Raises:
            PaymentVerificationError: INVALID_SIGNATURE, ORDER_NOT_FOUND or PAYMENT_FAILED
            GatewayUnavailableError: The gateway could not be reached; nothing changed
        """
        payment = self.gateway.verify_payment(gateway_order_id, gateway_payment_id, signature)
        if payment is None:
            logger.warning(f"Invalid payment proof: gateway_order_id={gateway_order_id}")
            raise PaymentVerificationError("Payment proof is invalid", code="INVALID_SIGNATURE")
        return finalize_payment(
            db,
            gateway_order_id,
            gateway_payment_id,
            application_id,
            paid_amount=payment.amount,
            paid_currency=payment.currency,
        )

    def confirm_from_gateway_event(
        self,
        db: Session,
        gateway_order_id: str,
        gateway_payment_id: str,
        paid_amount: Optional[int] = None,
        paid_currency: Optional[str] = None,
    ) -> VerificationResult:
        """Finalize from a gateway webhook whose signature was already checked."""
        return finalize_payment(
            db, gateway_order_id, gateway_payment_id, paid_amount=paid_amount, paid_currency=paid_currency
        )

    def fail(self, db: Session, gateway_order_id: str, reason: str) -> bool:
        """Gateway reported the payment failed."""
        order = db.query(EscrowOrder).filter(EscrowOrder.gateway_order_id == gateway_order_id).first()
        if not order:
            logger.warning(f"Payment failure for unknown order: gateway_order_id={gateway_order_id}")
            return False
        return settle_unpaid_order(db, order.id, EscrowOrderStatus.FAILED, reason)


def get_coordinator() -> EscrowCoordinator:
    """FastAPI dependency."""
    return EscrowCoordinator(get_gateway())


def finalize_payment(
    db: Session,
    gateway_order_id: str,
    gateway_payment_id: str,
    application_id: Optional[int] = None,
    paid_amount: Optional[int] = None,
    paid_currency: Optional[str] = None,
) -> VerificationResult:
    """
    Mark an order verified and accept its application, exactly once.

    Order of checks: idempotency key, order lookup, paid amount, superseded
    order, settled order, then the conditional verify + accept. paid_amount
    and paid_currency come from the gateway's record of the payment.
    """
    key = EscrowOrder.make_idempotency_key(gateway_order_id, gateway_payment_id)

    duplicate = db.query(EscrowOrder).filter(
        EscrowOrder.idempotency_key == key,
        EscrowOrder.status == EscrowOrderStatus.VERIFIED,
    ).first()
    if duplicate:
        logger.info(f"Duplicate payment verification ignored: escrow_order_id={duplicate.id}")
        return VerificationResult(True, OUTCOME_DUPLICATE, duplicate.application_id, duplicate.id)

    order = db.query(EscrowOrder).filter(EscrowOrder.gateway_order_id == gateway_order_id).first()
    if not order or (application_id is not None and order.application_id != application_id):
        logger.error(
            f"Payment verification for unknown order: gateway_order_id={gateway_order_id}, "
            f"application_id={application_id}"
        )
        raise PaymentVerificationError("Escrow order not found", code="ORDER_NOT_FOUND")

    if paid_amount is not None and (
        paid_amount != order.amount or (paid_currency or "").lower() != order.currency.lower()
    ):
        logger.error(
            f"Paid amount does not match escrow order: escrow_order_id={order.id}, "
            f"expected={order.amount} {order.currency}, paid={paid_amount} {paid_currency}"
        )
        raise PaymentVerificationError("Payment does not match the escrow order", code="INVALID_SIGNATURE")

    application = order.application
    if application.current_escrow_order_id != order.id:
        logger.warning(
            f"superseded: verification for a replaced order ignored, escrow_order_id={order.id}, "
            f"current_escrow_order_id={application.current_escrow_order_id}, application_id={application.id}"
        )
        return VerificationResult(True, OUTCOME_SUPERSEDED, application.id, order.id)

    if order.status != EscrowOrderStatus.CREATED:
        logger.warning(f"Payment verification for settled order: escrow_order_id={order.id}, status={order.status}")
        raise PaymentVerificationError("Escrow order is no longer payable", code="ORDER_NOT_FOUND")

    order_id = order.id
    try:
        won = run_with_conflict_retry(db, _mark_verified_and_accept, order_id, gateway_payment_id, key)
    except Exception as e:
        db.rollback()
        logger.error(f"Payment finalization failed: escrow_order_id={order_id}, error={e}", exc_info=True)
        settle_unpaid_order(db, order_id, EscrowOrderStatus.FAILED, f"finalization_error: {e}"[:500])
        raise PaymentVerificationError("Payment could not be finalized", code="PAYMENT_FAILED")

    if won:
        return VerificationResult(True, OUTCOME_ACCEPTED, application.id, order_id)

    # Lost the race to a concurrent verify or the sweep
    db.rollback()
    order = db.query(EscrowOrder).filter(EscrowOrder.id == order_id).first()
    if order.status == EscrowOrderStatus.VERIFIED and order.idempotency_key == key:
        logger.info(f"Concurrent duplicate verification: escrow_order_id={order_id}")
        return VerificationResult(True, OUTCOME_DUPLICATE, order.application_id, order_id)
    logger.warning(f"Payment verification lost to settled order: escrow_order_id={order_id}, status={order.status}")
    raise PaymentVerificationError("Escrow order is no longer payable", code="ORDER_NOT_FOUND")


def _mark_verified_and_accept(db: Session, order_id: int, gateway_payment_id: str, key: str) -> bool:
    updated = db.query(EscrowOrder).filter(
        EscrowOrder.id == order_id,
        EscrowOrder.status == EscrowOrderStatus.CREATED,
    ).update(
        {
            EscrowOrder.status: EscrowOrderStatus.VERIFIED,
            EscrowOrder.gateway_payment_id: gateway_payment_id,
            EscrowOrder.idempotency_key: key,
            EscrowOrder.verified_at: utcnow(),
        },
        synchronize_session="fetch",
    )
    if updated != 1:
        return False

    order = db.query(EscrowOrder).filter(EscrowOrder.id == order_id).first()
    AcceptanceSaga(db, order.application).complete(order_id)
    db.commit()
    logger.info(f"Payment verified: escrow_order_id={order_id}, application_id={order.application_id}")
    return True


def settle_unpaid_order(db: Session, order_id: int, status: str, reason: str) -> bool:
    """
    Move a created order to failed/expired and compensate its acceptance.

    The application is only reverted when this order is still its current
    one; a superseded order is closed without touching the application.
    Runs in its own transaction.
    """
    values = {EscrowOrder.status: status, EscrowOrder.failure_reason: reason}
    if status == EscrowOrderStatus.FAILED:
        values[EscrowOrder.failed_at] = utcnow()

    updated = db.query(EscrowOrder).filter(
        EscrowOrder.id == order_id,
        EscrowOrder.status == EscrowOrderStatus.CREATED,
    ).update(values, synchronize_session="fetch")
    if updated != 1:
        db.rollback()
        logger.info(f"Order already settled, nothing to compensate: escrow_order_id={order_id}")
        return False

    order = db.query(EscrowOrder).filter(EscrowOrder.id == order_id).first()
    compensated = AcceptanceSaga(db, order.application).compensate(reason, escrow_order_id=order_id)
    db.commit()
    logger.info(f"Escrow order {status}: escrow_order_id={order_id}, compensated={compensated}, reason={reason}")
    return True


def expire_stale_orders(db: Session, now: Optional[datetime] = None) -> int:
    """
    Sweep created orders past expires_at: expire them and release their slots.

    Returns:
        Number of orders expired
    """
    now = now or utcnow()
    stale_ids = [
        row.id
        for row in db.query(EscrowOrder.id).filter(
            EscrowOrder.status == EscrowOrderStatus.CREATED,
            EscrowOrder.expires_at < now,
        ).order_by(EscrowOrder.expires_at.asc()).all()
    ]

    expired = 0
    for order_id in stale_ids:
        try:
            if settle_unpaid_order(db, order_id, EscrowOrderStatus.EXPIRED, "expired"):
                expired += 1
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to expire escrow order: escrow_order_id={order_id}, error={e}", exc_info=True)

    if expired:
        logger.info(f"Escrow sweep expired {expired} order(s)")
    return expired
