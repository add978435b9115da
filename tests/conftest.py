"""
Shared fixtures: in-memory SQLite database, users, plans, gigs, a fake
escrow gateway and a file-backed database for threaded race tests.
"""
import itertools
import json
import threading

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.db.models  # noqa: F401
from app.core.errors import GatewayUnavailableError
from app.core.security import hash_password
from app.db.base import Base
from app.db.models.gig import Gig, GigStatus
from app.db.models.user import User
from app.services.billing_service import activate_plan
from app.services.escrow_coordinator import EscrowCoordinator
from app.services.payment_gateway import PAYMENT_SUCCEEDED, GatewayOrder, GatewayPayment, payment_proof_matches
from app.services.subscription_ledger import get_or_create_subscription

# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# One bcrypt hash for every fixture user keeps the suite fast
_PASSWORD_HASH = hash_password("testpass123")
_user_seq = itertools.count(1)


@pytest.fixture
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def make_user(db):
    def _make_user(role: str, email: str = None) -> User:
        user = User(
            full_name=f"Test {role.title()}",
            email=email or f"{role}{next(_user_seq)}@example.com",
            password_hash=_PASSWORD_HASH,
            role=role,
        )
        db.add(user)
        db.flush()
        get_or_create_subscription(db, user.id, role)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def company(make_user):
    return make_user("company")


@pytest.fixture
def freelancer(make_user):
    return make_user("freelancer")


@pytest.fixture
def grant_plan(db):
    def _grant(user: User, plan_type: str, **kwargs):
        return activate_plan(db, user, plan_type, **kwargs)
    return _grant


@pytest.fixture
def make_gig(db):
    """Insert a gig directly, bypassing the ledger gate."""
    def _make_gig(company: User, quantity: int = 1, budget: int = 100000, **kwargs) -> Gig:
        gig = Gig(
            company_id=company.id,
            title=kwargs.pop("title", "Logo design"),
            budget=budget,
            currency=kwargs.pop("currency", "inr"),
            quantity=quantity,
            filled_count=0,
            status=kwargs.pop("status", GigStatus.ACTIVE),
            escrow_required=kwargs.pop("escrow_required", True),
            is_first_gig=False,
            **kwargs,
        )
        db.add(gig)
        db.commit()
        db.refresh(gig)
        return gig
    return _make_gig


class FakeGateway:
    """In-process stand-in for StripeEscrowGateway."""

    def __init__(self):
        self.orders = []
        self.payments = {}
        # True for an outage, or an exception instance to raise once
        self.fail_next = False
        self._seq = itertools.count(1)

    def create_order(self, amount, currency, receipt, metadata=None):
        if self.fail_next:
            error = self.fail_next
            self.fail_next = False
            if isinstance(error, Exception):
                raise error
            raise GatewayUnavailableError("Payment gateway unavailable, please retry")
        order_id = f"pi_test_{next(self._seq)}"
        order = GatewayOrder(
            order_id=order_id,
            amount=amount,
            currency=currency,
            client_secret=f"{order_id}_secret_test",
        )
        self.orders.append((order, receipt, metadata))
        self.payments[order_id] = GatewayPayment(
            order_id=order_id,
            payment_id=None,
            status="requires_payment_method",
            amount=0,
            currency=currency,
            client_secret=order.client_secret,
        )
        return order

    def pay(self, gateway_order_id, gateway_payment_id, amount=None, currency=None):
        """Mark the intent paid and return the proof a client would submit."""
        known = self.payments.get(gateway_order_id)
        created = next((o for o, _, _ in self.orders if o.order_id == gateway_order_id), None)
        payment = GatewayPayment(
            order_id=gateway_order_id,
            payment_id=gateway_payment_id,
            status=PAYMENT_SUCCEEDED,
            amount=amount if amount is not None else (created.amount if created else 0),
            currency=currency or (created.currency if created else "inr"),
            client_secret=known.client_secret if known else f"{gateway_order_id}_secret_test",
        )
        self.payments[gateway_order_id] = payment
        return payment.client_secret

    def fetch_payment(self, gateway_order_id):
        return self.payments.get(gateway_order_id)

    def verify_payment(self, gateway_order_id, gateway_payment_id, proof):
        payment = self.fetch_payment(gateway_order_id)
        if not payment_proof_matches(payment, gateway_payment_id, proof):
            return None
        return payment

    def construct_webhook_event(self, payload, sig_header):
        if sig_header != "valid":
            raise ValueError("Invalid signature: test")
        return json.loads(payload)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def coordinator(gateway):
    return EscrowCoordinator(gateway)


@pytest.fixture
def pay(gateway):
    return gateway.pay


@pytest.fixture
def file_sessions(tmp_path):
    """
    Sessionmaker over a file-backed SQLite database that threads can share.

    Every transaction opens with BEGIN IMMEDIATE, so concurrent writers queue
    on the database lock (up to the 30s busy timeout) rather than failing a
    read-to-write lock upgrade.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def run_racers():
    """
    Start every callable at once behind a barrier.

    Returns each callable's result, or the exception it raised, in order.
    Callables must open their database sessions after they start.
    """
    def _run(*targets):
        barrier = threading.Barrier(len(targets))
        results = [None] * len(targets)

        def _race(index, target):
            barrier.wait()
            try:
                results[index] = target()
            except Exception as e:
                results[index] = e

        threads = [threading.Thread(target=_race, args=(i, t)) for i, t in enumerate(targets)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=120)
        assert not any(t.is_alive() for t in threads), "racer did not finish"
        return results
    return _run
