from typing import Dict, Optional

FREE = 'free'
PRO = 'pro'

# Checkout sells a single price, so a paid subscription always means PRO
CARD_LIMITS: Dict[str, int] = {
    FREE: 1,
    PRO: 5,
}

PAID_STATUSES = frozenset({'active', 'trialing'})


def plan_for_status(status: Optional[str]) -> str:
    """Map a mirrored Stripe subscription status onto a plan name."""
    if status in PAID_STATUSES:
        return PRO
    return FREE


def card_limit(plan: str) -> int:
    return CARD_LIMITS.get(plan, CARD_LIMITS[FREE])
