"""
Escrow payment gateway (Stripe PaymentIntents).

An escrow "order" is a PaymentIntent; its id is the gateway_order_id. After
paying, the client submits the intent's client_secret as its proof. The proof
is checked against the intent retrieved server-side: it must have succeeded,
the payment id must be the intent's charge, and the client_secret must match.
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

from app.core.config import (
    STRIPE_SECRET_KEY,
    STRIPE_ESCROW_WEBHOOK_SECRET,
    GATEWAY_TIMEOUT_SECONDS,
)
from app.core.errors import GatewayUnavailableError

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class GatewayOrder:
    order_id: str
    amount: int
    currency: str
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class GatewayPayment:
    """Server-side view of a PaymentIntent."""
    order_id: str
    payment_id: Optional[str]
    status: str
    amount: int
    currency: str
    client_secret: Optional[str] = None


def payment_proof_matches(payment: Optional[GatewayPayment], gateway_payment_id: str, proof: Optional[str]) -> bool:
    """
    Check a client-submitted proof against the gateway's record of the payment.

    The payment id may be the intent's latest charge or the intent id itself.
    """
    if payment is None or not proof or not payment.client_secret:
        return False
    if payment.status != PAYMENT_SUCCEEDED:
        logger.warning(f"Payment proof for unpaid intent: order_id={payment.order_id}, status={payment.status}")
        return False
    if gateway_payment_id not in (payment.payment_id, payment.order_id):
        logger.warning(f"Payment id does not belong to intent: order_id={payment.order_id}")
        return False
    return hmac.compare_digest(payment.client_secret, proof)


def _object_id(value: Any) -> Optional[str]:
    # latest_charge is an id unless the request expanded it
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


class StripeEscrowGateway:
    """Opens escrow orders and checks payment proofs."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key if api_key is not None else STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else STRIPE_ESCROW_WEBHOOK_SECRET

    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        """
        Create a PaymentIntent for the escrow amount.

        Transient network errors are retried once with the same idempotency
        key, so a request that reached Stripe is not duplicated.

        Args:
            amount: Amount in the smallest currency unit
            currency: ISO currency code
            receipt: Unique per acceptance attempt; used as the idempotency key
            metadata: Stored on the intent (application/gig ids)

        Raises:
            GatewayUnavailableError: Gateway not configured or unreachable
        """
        if not self.api_key:
            logger.error("STRIPE_SECRET_KEY not configured - cannot open escrow order")
            raise GatewayUnavailableError("Payment gateway is not configured")

        metadata = {k: str(v) for k, v in (metadata or {}).items()}
        last_error: Optional[Exception] = None

        for attempt in (1, 2):
            try:
                intent = stripe.PaymentIntent.create(
                    amount=amount,
                    currency=currency,
                    metadata=metadata,
                    automatic_payment_methods={"enabled": True},
                    api_key=self.api_key,
                    idempotency_key=f"escrow-{receipt}",
                )
                logger.info(f"Escrow order opened: order_id={intent.id}, amount={amount}, currency={currency}, attempt={attempt}")
                return GatewayOrder(
                    order_id=intent.id,
                    amount=amount,
                    currency=currency,
                    client_secret=getattr(intent, "client_secret", None),
                )
            except stripe.APIConnectionError as e:
                last_error = e
                logger.warning(f"Payment gateway connection error (attempt {attempt}): {e}")
            except stripe.StripeError as e:
                logger.error(f"Payment gateway rejected order: {e}")
                raise GatewayUnavailableError("Payment gateway rejected the order") from e

        raise GatewayUnavailableError("Payment gateway unavailable, please retry") from last_error

    def fetch_payment(self, gateway_order_id: str) -> Optional[GatewayPayment]:
        """
        Retrieve a PaymentIntent; None when Stripe has no such intent.

        Raises:
            GatewayUnavailableError: Gateway not configured or unreachable
        """
        if not self.api_key:
            logger.error("STRIPE_SECRET_KEY not configured - cannot check payment")
            raise GatewayUnavailableError("Payment gateway is not configured")

        last_error: Optional[Exception] = None
        for attempt in (1, 2):
            try:
                intent = stripe.PaymentIntent.retrieve(gateway_order_id, api_key=self.api_key)
                return GatewayPayment(
                    order_id=intent.id,
                    payment_id=_object_id(getattr(intent, "latest_charge", None)),
                    status=intent.status,
                    amount=intent.amount_received or 0,
                    currency=intent.currency,
                    client_secret=getattr(intent, "client_secret", None),
                )
            except stripe.InvalidRequestError as e:
                if e.code == "resource_missing":
                    logger.warning(f"Payment intent not found at gateway: order_id={gateway_order_id}")
                    return None
                logger.error(f"Payment gateway rejected lookup: {e}")
                raise GatewayUnavailableError("Payment gateway rejected the lookup") from e
            except stripe.APIConnectionError as e:
                last_error = e
                logger.warning(f"Payment gateway connection error on lookup (attempt {attempt}): {e}")
            except stripe.StripeError as e:
                logger.error(f"Payment gateway lookup failed: {e}")
                raise GatewayUnavailableError("Payment gateway unavailable, please retry") from e

        raise GatewayUnavailableError("Payment gateway unavailable, please retry") from last_error

    def verify_payment(self, gateway_order_id: str, gateway_payment_id: str, proof: Optional[str]) -> Optional[GatewayPayment]:
        """The verified payment, or None when the proof does not hold."""
        payment = self.fetch_payment(gateway_order_id)
        if not payment_proof_matches(payment, gateway_payment_id, proof):
            return None
        return payment

    def construct_webhook_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify and parse a Stripe escrow webhook.

        Raises:
            ValueError: Secret missing, bad payload or bad signature
        """
        if not self.webhook_secret:
            raise ValueError("STRIPE_ESCROW_WEBHOOK_SECRET not configured")
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except ValueError as e:
            logger.error(f"Invalid escrow webhook payload: {e}")
            raise ValueError(f"Invalid webhook payload: {e}")
        except stripe.SignatureVerificationError as e:
            logger.error(f"Escrow webhook signature verification failed: {e}")
            raise ValueError(f"Invalid signature: {e}")
        logger.info(f"Verified escrow webhook event: {event['type']}, id={event['id']}")
        return event.to_dict()


def configure_stripe_http_client(timeout: Optional[float] = None) -> None:
    """Bound every Stripe request by GATEWAY_TIMEOUT_SECONDS."""
    stripe.default_http_client = stripe.new_default_http_client(timeout=timeout or GATEWAY_TIMEOUT_SECONDS)


def get_gateway() -> StripeEscrowGateway:
    """FastAPI dependency; tests override it with a fake gateway."""
    return StripeEscrowGateway()
