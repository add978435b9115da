"""
Tests for the Stripe escrow gateway wrapper. Stripe calls are monkeypatched.
"""
from types import SimpleNamespace

import pytest
import stripe

from app.core.errors import GatewayUnavailableError
from app.services.payment_gateway import StripeEscrowGateway


@pytest.fixture
def stripe_gateway():
    return StripeEscrowGateway(api_key="sk_test_123", webhook_secret="whsec_test")


def test_create_order_passes_idempotency_key(stripe_gateway, monkeypatch):
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="pi_123", client_secret="pi_123_secret")

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

    order = stripe_gateway.create_order(amount=5000, currency="inr", receipt="app1-abc", metadata={"application_id": 1})

    assert order.order_id == "pi_123"
    assert order.client_secret == "pi_123_secret"
    assert calls[0]["idempotency_key"] == "escrow-app1-abc"
    assert calls[0]["metadata"] == {"application_id": "1"}
    assert calls[0]["api_key"] == "sk_test_123"


def test_create_order_retries_connection_error_once(stripe_gateway, monkeypatch):
    calls = []

    def flaky_create(**kwargs):
        calls.append(kwargs["idempotency_key"])
        if len(calls) == 1:
            raise stripe.APIConnectionError("connection reset")
        return SimpleNamespace(id="pi_456", client_secret=None)

    monkeypatch.setattr(stripe.PaymentIntent, "create", flaky_create)

    order = stripe_gateway.create_order(amount=5000, currency="inr", receipt="app1-def")

    assert order.order_id == "pi_456"
    assert calls == ["escrow-app1-def", "escrow-app1-def"]


def test_create_order_gives_up_after_two_connection_errors(stripe_gateway, monkeypatch):
    def down(**kwargs):
        raise stripe.APIConnectionError("timeout")

    monkeypatch.setattr(stripe.PaymentIntent, "create", down)

    with pytest.raises(GatewayUnavailableError):
        stripe_gateway.create_order(amount=5000, currency="inr", receipt="app1-ghi")


def test_create_order_maps_stripe_rejection(stripe_gateway, monkeypatch):
    def rejected(**kwargs):
        raise stripe.InvalidRequestError("bad currency", param="currency")

    monkeypatch.setattr(stripe.PaymentIntent, "create", rejected)

    with pytest.raises(GatewayUnavailableError):
        stripe_gateway.create_order(amount=5000, currency="xxx", receipt="app1-jkl")


def test_create_order_requires_api_key():
    gateway = StripeEscrowGateway(api_key="", webhook_secret="whsec_test")
    with pytest.raises(GatewayUnavailableError):
        gateway.create_order(amount=5000, currency="inr", receipt="app1-mno")


def test_webhook_requires_secret():
    gateway = StripeEscrowGateway(api_key="sk_test", webhook_secret="")
    with pytest.raises(ValueError):
        gateway.construct_webhook_event(b"{}", "t=1,v1=abc")


def test_webhook_rejects_bad_signature(stripe_gateway):
    with pytest.raises(ValueError):
        stripe_gateway.construct_webhook_event(b'{"id": "evt_1", "type": "payment_intent.succeeded"}', "t=1,v1=bad")


def _intent(**overrides):
    fields = {
        "id": "pi_1",
        "status": "succeeded",
        "latest_charge": "ch_1",
        "amount_received": 5000,
        "currency": "inr",
        "client_secret": "pi_1_secret_abc",
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_verify_payment_checks_intent_server_side(stripe_gateway, monkeypatch):
    calls = []

    def fake_retrieve(intent_id, **kwargs):
        calls.append((intent_id, kwargs["api_key"]))
        return _intent()

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)

    payment = stripe_gateway.verify_payment("pi_1", "ch_1", "pi_1_secret_abc")

    assert payment.amount == 5000
    assert payment.currency == "inr"
    assert calls == [("pi_1", "sk_test_123")]
    assert stripe_gateway.verify_payment("pi_1", "ch_1", "pi_1_secret_forged") is None
    assert stripe_gateway.verify_payment("pi_1", "ch_other", "pi_1_secret_abc") is None


def test_verify_payment_rejects_unfinished_intent(stripe_gateway, monkeypatch):
    monkeypatch.setattr(
        stripe.PaymentIntent, "retrieve",
        lambda intent_id, **kwargs: _intent(status="processing", latest_charge=None, amount_received=0),
    )

    assert stripe_gateway.verify_payment("pi_1", "pi_1", "pi_1_secret_abc") is None


def test_fetch_payment_reads_expanded_charge(stripe_gateway, monkeypatch):
    monkeypatch.setattr(
        stripe.PaymentIntent, "retrieve",
        lambda intent_id, **kwargs: _intent(latest_charge=SimpleNamespace(id="ch_expanded")),
    )

    assert stripe_gateway.fetch_payment("pi_1").payment_id == "ch_expanded"


def test_fetch_payment_unknown_intent_is_none(stripe_gateway, monkeypatch):
    def missing(intent_id, **kwargs):
        raise stripe.InvalidRequestError("No such payment_intent", param="intent", code="resource_missing")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", missing)

    assert stripe_gateway.fetch_payment("pi_missing") is None
    assert stripe_gateway.verify_payment("pi_missing", "ch_1", "pi_missing_secret") is None


def test_fetch_payment_outage_raises(stripe_gateway, monkeypatch):
    calls = []

    def down(intent_id, **kwargs):
        calls.append(intent_id)
        raise stripe.APIConnectionError("timeout")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", down)

    with pytest.raises(GatewayUnavailableError):
        stripe_gateway.fetch_payment("pi_1")
    assert calls == ["pi_1", "pi_1"]
