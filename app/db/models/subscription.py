"""
Subscription ledger state, one row per user.

Quota columns are only ever changed through conditional UPDATE statements in
app.services.subscription_ledger and app.services.billing_service.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from app.db.base import Base


class SubscriptionStatus:
    ACTIVE = "active"
    EXPIRED = "expired"
    NONE = "none"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    role = Column(String, nullable=False)  # company | freelancer

    plan_type = Column(String, nullable=True)  # free | basic | pro
    duration = Column(String, nullable=True)  # monthly | yearly | lifetime
    status = Column(String, nullable=False, default=SubscriptionStatus.NONE)

    # Quota
    remaining_gig_slots = Column(Integer, nullable=False, default=0)
    remaining_application_slots = Column(Integer, nullable=False, default=0)
    unlimited = Column(Boolean, nullable=False, default=False)
    is_priority_eligible = Column(Boolean, nullable=False, default=False)
    is_first_gig_consumed = Column(Boolean, nullable=False, default=False)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("remaining_gig_slots >= 0", name="gig_slots_non_negative"),
        CheckConstraint("remaining_application_slots >= 0", name="application_slots_non_negative"),
    )

    def __repr__(self):
        return f"<Subscription(user_id={self.user_id}, plan='{self.plan_type}', status='{self.status}')>"
