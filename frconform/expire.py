"""Key expiry evaluation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

_I64_MAX = 2**63 - 1


@dataclass(frozen=True)
class ExpiryDecision:
    """Whether a key should be evicted and its TTL in the PTTL convention.

    ``remaining_ms`` is -1 for a key with no expiry and -2 for an expired key.
    """

    should_evict: bool
    remaining_ms: int


def evaluate_expiry(now_ms: int, expires_at_ms: Optional[int]) -> ExpiryDecision:
    """Decide whether a key with deadline ``expires_at_ms`` has expired at ``now_ms``."""
    if expires_at_ms is None:
        return ExpiryDecision(should_evict=False, remaining_ms=-1)
    if expires_at_ms <= now_ms:
        return ExpiryDecision(should_evict=True, remaining_ms=-2)
    return ExpiryDecision(
        should_evict=False, remaining_ms=min(expires_at_ms - now_ms, _I64_MAX)
    )