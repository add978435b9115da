"""
Notification outbox.

Workflow transitions write a NotificationEvent in their own transaction via
emit_event(); dispatch_pending_events() later hands each event to a sink.
Delivery is at-least-once, so sinks dedupe by event_id. A sink failure is
recorded on the event and never touches the transition that produced it.
"""
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import NOTIFICATION_MAX_ATTEMPTS
from app.db.models.application import Application
from app.db.models.notification_event import NotificationEvent, NotificationEventStatus

logger = logging.getLogger(__name__)

APPLICATION_ACCEPTED = "application.accepted"
APPLICATION_REJECTED = "application.rejected"
APPLICATION_PAYMENT_FAILED = "application.payment_failed"

Sink = Callable[[Dict[str, Any]], None]


def emit_event(db: Session, event_type: str, application: Application, company_id: int, **extra: Any) -> NotificationEvent:
    """
    Add an outbox row for a transition. Flushed, not committed.
    """
    event_id = str(uuid.uuid4())
    payload = {
        "event_id": event_id,
        "type": event_type,
        "application_id": application.id,
        "gig_id": application.gig_id,
        "company_id": company_id,
        "freelancer_id": application.freelancer_id,
        "timestamp": utcnow().isoformat(),
    }
    payload.update(extra)

    event = NotificationEvent(
        event_id=event_id,
        type=event_type,
        application_id=application.id,
        gig_id=application.gig_id,
        company_id=company_id,
        freelancer_id=application.freelancer_id,
        payload=payload,
        status=NotificationEventStatus.PENDING,
        attempts=0,
    )
    db.add(event)
    db.flush()
    logger.debug(f"Event queued: type={event_type}, event_id={event_id}, application_id={application.id}")
    return event


def log_sink(payload: Dict[str, Any]) -> None:
    """Default sink: the transport (email, push) lives outside this service."""
    logger.info(
        f"Notification: type={payload['type']}, event_id={payload['event_id']}, "
        f"application_id={payload['application_id']}, freelancer_id={payload['freelancer_id']}"
    )


def _claim(db: Session, event: NotificationEvent) -> bool:
    # attempts doubles as a claim token: only one dispatcher bumps it from the observed value
    claimed = db.query(NotificationEvent).filter(
        NotificationEvent.id == event.id,
        NotificationEvent.status == NotificationEventStatus.PENDING,
        NotificationEvent.attempts == event.attempts,
    ).update(
        {NotificationEvent.attempts: NotificationEvent.attempts + 1},
        synchronize_session="fetch",
    )
    db.commit()
    return claimed == 1


def dispatch_pending_events(
    db: Session,
    sink: Optional[Sink] = None,
    batch_size: int = 50,
    max_attempts: Optional[int] = None,
) -> int:
    """
    Deliver pending outbox events, oldest first.

    Args:
        db: Database session
        sink: Callable receiving the event payload; defaults to log_sink
        batch_size: Maximum events handled in one call
        max_attempts: Attempts before an event is parked as failed

    Returns:
        Number of events delivered
    """
    sink = sink or log_sink
    max_attempts = max_attempts or NOTIFICATION_MAX_ATTEMPTS

    events = (
        db.query(NotificationEvent)
        .filter(NotificationEvent.status == NotificationEventStatus.PENDING)
        .order_by(NotificationEvent.id.asc())
        .limit(batch_size)
        .all()
    )

    delivered = 0
    for event in events:
        if not _claim(db, event):
            continue
        db.refresh(event)

        try:
            sink(dict(event.payload))
        except Exception as e:
            event.last_error = str(e)[:1000]
            if event.attempts >= max_attempts:
                event.status = NotificationEventStatus.FAILED
                logger.error(f"Notification parked after {event.attempts} attempts: event_id={event.event_id}, error={e}")
            else:
                logger.warning(f"Notification delivery failed: event_id={event.event_id}, attempt={event.attempts}, error={e}")
            db.commit()
            continue

        event.status = NotificationEventStatus.DELIVERED
        event.delivered_at = utcnow()
        event.last_error = None
        db.commit()
        delivered += 1

    if delivered:
        logger.info(f"Notifications delivered: count={delivered}")
    return delivered
