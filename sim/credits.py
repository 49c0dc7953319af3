"""Monthly message credits per profile plan."""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from sim import db_storage
from sim.config import get_config

logger = logging.getLogger(__name__)


class CreditsExhausted(Exception):
    """Raised when a profile has no message credits left in the current window."""

    def __init__(self, remaining: int, limit: int, reset_at: Optional[str] = None):
        super().__init__(f"Message limit reached ({limit} per period)")
        self.remaining = remaining
        self.limit = limit
        self.reset_at = reset_at


def plan_limit(plan: Optional[str], cfg: Mapping[str, Any]) -> int:
    limits = cfg["PLAN_LIMITS"]
    return limits.get(plan or "free", limits["free"])


def _profile_limit(profile_id: str, cfg: Mapping[str, Any]) -> int:
    profile = db_storage.get_profile(profile_id)
    return plan_limit(profile["plan"] if profile else None, cfg)


def get_credit_status(profile_id: str, cfg: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    cfg = cfg or get_config()
    return db_storage.get_credits(profile_id, _profile_limit(profile_id, cfg), cfg["CREDIT_RESET_DAYS"])


def consume_credit(
    profile_id: str,
    conversation_id: Optional[str] = None,
    cfg: Optional[Mapping[str, Any]] = None,
) -> Tuple[bool, int, int]:
    """
    Spend one message credit.

    The counter is created on first use with the plan's limit and refilled
    once ``CREDIT_RESET_DAYS`` have passed since the last reset.

    Returns:
        ``(success, remaining, limit)``
    """
    cfg = cfg or get_config()
    result = db_storage.consume_credit(
        profile_id,
        _profile_limit(profile_id, cfg),
        cfg["CREDIT_RESET_DAYS"],
        conversation_id=conversation_id,
    )
    if not result["success"]:
        logger.info(f"Profile {profile_id} exhausted message credits ({result['limit']})")
    return result["success"], result["remaining"], result["limit"]


def charge_message(profile_id: str, conversation_id: str, cfg: Mapping[str, Any]) -> int:
    """
    Spend a credit for a chat message.

    Returns:
        Credits remaining

    Raises:
        CreditsExhausted: If the profile is out of credits
    """
    success, remaining, limit = consume_credit(profile_id, conversation_id, cfg)
    if not success:
        status = get_credit_status(profile_id, cfg)
        raise CreditsExhausted(remaining, limit, status["reset_at"])
    return remaining


def reset_expired_credits(cfg: Optional[Mapping[str, Any]] = None) -> int:
    """Refill every counter whose reset window has elapsed."""
    cfg = cfg or get_config()
    count = db_storage.reset_expired_credits(cfg["CREDIT_RESET_DAYS"])
    logger.info(f"Reset message credits for {count} profiles")
    return count
