"""
Outbox of workflow events waiting to be handed to the notification sink.
"""
import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index
from sqlalchemy.sql import func
from app.db.base import Base


class NotificationEventStatus:
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class NotificationEvent(Base):
    __tablename__ = "notification_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    type = Column(String, nullable=False, index=True)  # application.accepted | application.rejected | application.payment_failed

    application_id = Column(Integer, nullable=False, index=True)
    gig_id = Column(Integer, nullable=False)
    company_id = Column(Integer, nullable=False)
    freelancer_id = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False)

    status = Column(String, nullable=False, default=NotificationEventStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_notification_status_id", "status", "id"),
    )
