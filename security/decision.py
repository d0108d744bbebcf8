from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DenyReason(str, Enum):
    RATE_LIMITED = "rate_limited"
    BANNED = "banned"


@dataclass(frozen=True)
class GuardDecision:
    """
    Outcome of a guard check.

    retry_after is in whole seconds; None on a ban means the remaining
    duration is unknown. escalated marks a ban issued by this very check.
    """
    allowed: bool
    reason: Optional[DenyReason] = None
    retry_after: Optional[int] = None
    escalated: bool = False

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(allowed=True)

    @classmethod
    def rate_limited(cls, retry_after: int) -> "GuardDecision":
        return cls(allowed=False, reason=DenyReason.RATE_LIMITED, retry_after=retry_after)

    @classmethod
    def banned(cls, retry_after: Optional[int] = None, escalated: bool = False) -> "GuardDecision":
        return cls(allowed=False, reason=DenyReason.BANNED, retry_after=retry_after, escalated=escalated)

    @property
    def is_banned(self) -> bool:
        return self.reason is DenyReason.BANNED
