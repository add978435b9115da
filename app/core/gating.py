"""
Plan gating for marketplace actions.

Turns a subscription ledger denial into the 402 payload the frontend uses to
redirect to the pricing page.
"""
import logging

from app.core.config import FRONTEND_URL
from app.core.errors import BillingRequiredError
from app.services.subscription_ledger import LedgerDecision, NO_ACTIVE_SUBSCRIPTION

logger = logging.getLogger(__name__)

_ACTION_MESSAGES = {
    "gig_create": {
        "NO_ACTIVE_SUBSCRIPTION": "An active plan is required to post more gigs. Upgrade to continue.",
        "QUOTA_EXHAUSTED": "Gig posting limit reached for your plan. Upgrade to post more gigs.",
    },
    "apply": {
        "NO_ACTIVE_SUBSCRIPTION": "An active plan is required to apply to gigs. Choose a plan to continue.",
        "QUOTA_EXHAUSTED": "Application limit reached for your plan. Upgrade to apply to more gigs.",
    },
}


def enforce_ledger_decision(decision: LedgerDecision, action: str) -> None:
    """
    Raise BillingRequiredError if the ledger denied the action.

    Args:
        decision: Result of a subscription_ledger.authorize_* call
        action: "gig_create" or "apply"
    """
    if decision.allowed:
        return

    reason = decision.reason or NO_ACTIVE_SUBSCRIPTION
    message = _ACTION_MESSAGES.get(action, {}).get(reason, "Upgrade your plan to continue.")
    raise BillingRequiredError(
        message,
        code=reason,
        feature=action,
        upgrade_url=f"{FRONTEND_URL}/pricing",
    )
