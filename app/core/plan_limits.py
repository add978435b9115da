"""
Plan-based quota configuration.

Single source of truth for what each plan grants per role.
None means unlimited quota for that action.
"""
from typing import Dict, Optional, Any

ROLE_COMPANY = "company"
ROLE_FREELANCER = "freelancer"
SUPPORTED_ROLES = (ROLE_COMPANY, ROLE_FREELANCER)

SUPPORTED_PLANS = ("free", "basic", "pro")
SUPPORTED_DURATIONS = ("monthly", "yearly", "lifetime")

# Companies get their first gig through the first-gig-free path, so the free
# plan itself grants no additional gig slots.
PLAN_LIMITS: Dict[str, Dict[str, Dict[str, Any]]] = {
    ROLE_COMPANY: {
        "free": {"gig_slots": 0, "priority": False},
        "basic": {"gig_slots": None, "priority": False},
        "pro": {"gig_slots": None, "priority": False},
    },
    ROLE_FREELANCER: {
        "free": {"application_slots": 3, "priority": False},
        "basic": {"application_slots": 20, "priority": True},
        "pro": {"application_slots": None, "priority": True},
    },
}


def get_plan_limits(role: str, plan_type: Optional[str]) -> Dict[str, Any]:
    """
    Get the grant table for a plan.

    Args:
        role: company or freelancer
        plan_type: free, basic or pro (unknown values fall back to free)

    Returns:
        Dict with the slot grant (None for unlimited) and the priority flag
    """
    plan_type = plan_type.lower() if plan_type else "free"
    role_limits = PLAN_LIMITS.get(role, PLAN_LIMITS[ROLE_FREELANCER])
    return role_limits.get(plan_type, role_limits["free"])


def slot_grant(role: str, plan_type: Optional[str]) -> Optional[int]:
    """Slots granted per billing period; None means unlimited."""
    limits = get_plan_limits(role, plan_type)
    key = "gig_slots" if role == ROLE_COMPANY else "application_slots"
    return limits.get(key)


def is_priority_plan(role: str, plan_type: Optional[str]) -> bool:
    return bool(get_plan_limits(role, plan_type).get("priority"))
