"""
EscrowOrder model: one row per acceptance attempt.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base import Base


class EscrowOrderStatus:
    CREATED = "created"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"


class EscrowOrder(Base):
    __tablename__ = "escrow_orders"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    gig_id = Column(Integer, ForeignKey("gigs.id"), nullable=False, index=True)

    amount = Column(Integer, nullable=False)  # budget + platform_fee
    platform_fee = Column(Integer, nullable=False, default=0)
    fee_version = Column(String, nullable=False)
    currency = Column(String(3), nullable=False)

    gateway_order_id = Column(String, unique=True, nullable=False, index=True)
    gateway_payment_id = Column(String, nullable=True)
    # "<gateway_order_id>:<gateway_payment_id>", set on verification
    idempotency_key = Column(String, unique=True, nullable=True)

    status = Column(String, nullable=False, default=EscrowOrderStatus.CREATED, index=True)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    application = relationship("Application", backref="escrow_orders")

    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        Index("idx_escrow_status_expires", "status", "expires_at"),
    )

    @staticmethod
    def make_idempotency_key(gateway_order_id: str, gateway_payment_id: str) -> str:
        return f"{gateway_order_id}:{gateway_payment_id}"

    def __repr__(self):
        return f"<EscrowOrder(id={self.id}, gateway_order_id='{self.gateway_order_id}', status='{self.status}')>"
