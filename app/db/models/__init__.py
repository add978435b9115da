"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from app.db.models.user import User
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.db.models.gig import Gig, GigStatus
from app.db.models.application import Application, ApplicationStatus
from app.db.models.escrow_order import EscrowOrder, EscrowOrderStatus
from app.db.models.notification_event import NotificationEvent, NotificationEventStatus

# Explicitly export all models for clarity
__all__ = [
    "User",
    "Subscription",
    "SubscriptionStatus",
    "Gig",
    "GigStatus",
    "Application",
    "ApplicationStatus",
    "EscrowOrder",
    "EscrowOrderStatus",
    "NotificationEvent",
    "NotificationEventStatus",
]
