"""Per-user multi-turn input state.

Some actions take their arguments from the user's *next* free-text message
(a token contract address, or ``"<address> <amount>"`` for a transfer).
Each user has at most one pending step; it is consumed by the next input
and expires back to idle after a timeout.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum


class ConversationStep(str, Enum):
    IDLE = "idle"
    AWAITING_TOKEN_ADDRESS = "awaiting_token_address"
    AWAITING_SEND_DETAILS = "awaiting_send_details"


@dataclass(frozen=True)
class PendingStep:
    step: ConversationStep
    chain_id: int       # chain the prompt was issued for
    expires_at: float   # time.monotonic() deadline

    def expired(self, now: float | None = None) -> bool:
        return (time.monotonic() if now is None else now) >= self.expires_at


class ConversationTracker:
    """Holds the pending step for each user."""

    def __init__(self, timeout: float = 300.0) -> None:
        self.timeout = timeout
        self._pending: dict[str, PendingStep] = {}

    def begin(self, user_id: str, step: ConversationStep, chain_id: int) -> PendingStep:
        """Start waiting for *step*, replacing whatever was pending."""
        pending = PendingStep(
            step=step, chain_id=chain_id, expires_at=time.monotonic() + self.timeout
        )
        self._pending[user_id] = pending
        return pending

    def consume(self, user_id: str) -> PendingStep | None:
        """Remove and return the pending step, or ``None`` if idle or expired."""
        pending = self._pending.pop(user_id, None)
        if pending is None or pending.expired():
            return None
        return pending

    def current(self, user_id: str) -> ConversationStep:
        pending = self._pending.get(user_id)
        if pending is None:
            return ConversationStep.IDLE
        if pending.expired():
            del self._pending[user_id]
            return ConversationStep.IDLE
        return pending.step

    def cancel(self, user_id: str) -> None:
        self._pending.pop(user_id, None)
