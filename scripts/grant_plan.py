"""
Grant a plan to an existing user from the shell.
Run: python -m scripts.grant_plan user@example.com pro --duration yearly --days 365
"""
import argparse
import logging
import sys
from datetime import timedelta

from app.core.clock import utcnow
from app.core.plan_limits import SUPPORTED_PLANS, SUPPORTED_DURATIONS
from app.db.session import SessionLocal
from app.db.models.user import User
from app.services.billing_service import activate_plan

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def grant_plan(email: str, plan_type: str, duration: str = "monthly", days: int = None) -> bool:
    """Activate `plan_type` for the user with `email`; lifetime when days is None."""
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user:
            logger.error(f"User {email} not found")
            return False

        period_end = utcnow() + timedelta(days=days) if days else None
        subscription = activate_plan(db, user, plan_type, duration=duration, period_end=period_end)
        logger.info(
            f"Granted {plan_type} ({duration}) to {email}: "
            f"role={user.role}, unlimited={subscription.unlimited}, period_end={period_end}"
        )
        return True
    except Exception as e:
        db.rollback()
        logger.error(f"Error granting plan: {e}", exc_info=True)
        return False
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Grant a plan to a user")
    parser.add_argument("email")
    parser.add_argument("plan", choices=SUPPORTED_PLANS)
    parser.add_argument("--duration", choices=SUPPORTED_DURATIONS, default="monthly")
    parser.add_argument("--days", type=int, default=None, help="Period length; omit for no expiry")
    args = parser.parse_args(argv)

    if not grant_plan(args.email, args.plan, duration=args.duration, days=args.days):
        print(f"\n[ERROR] Failed to grant {args.plan} to {args.email}")
        return 1
    print(f"\n[SUCCESS] {args.email} is now on the {args.plan} plan")
    return 0


if __name__ == "__main__":
    sys.exit(main())
