from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import BackoffConfig


@dataclass
class OriginState:
    backoff_seconds: int = 0
    failed_attempts: int = 0
    last_success_notified_at: Optional[float] = None
    # Background (timer / observed-portal) attempt currently running.
    in_flight: bool = False
    # User-forced attempts currently running; they never touch `in_flight`.
    forced_in_flight: int = 0

    @property
    def busy(self) -> bool:
        return self.in_flight or self.forced_in_flight > 0


class OriginRegistry:
    """
    Per-origin mutable state, created lazily on first use and never destroyed (reset on success).
    """

    def __init__(self) -> None:
        self._states: dict[str, OriginState] = {}

    def get(self, origin: str) -> OriginState:
        state = self._states.get(origin)
        if state is None:
            state = OriginState()
            self._states[origin] = state
        return state

    def peek(self, origin: str) -> Optional[OriginState]:
        return self._states.get(origin)

    def origins(self) -> list[str]:
        return list(self._states)


class BackoffPolicy:
    """
    Friendly retry policy for one origin:

    - 0 -> 2s on the first failure, then doubling up to 16s
    - from the 16s ceiling, keep doubling up to 60s while failures are still few
    - after 6 consecutive failures, settle on a steady 5s poll (the problem is not transient)
    - a keepalive page forces 5s without counting as a failure
    - success resets everything
    """

    def __init__(self, cfg: Optional[BackoffConfig] = None) -> None:
        self.cfg = cfg or BackoffConfig()

    def next_backoff(self, current: int, failed_attempts: int) -> int:
        c = self.cfg
        if failed_attempts >= c.steady_after_failures:
            return c.steady_seconds
        if current <= 0:
            return c.initial_seconds
        if current < c.ceiling_seconds:
            return min(current * 2, c.ceiling_seconds)
        return min(current * 2, c.extended_ceiling_seconds)

    def escalate(self, state: OriginState) -> int:
        state.backoff_seconds = self.next_backoff(state.backoff_seconds, state.failed_attempts)
        return state.backoff_seconds

    def record_failure(self, state: OriginState) -> int:
        state.failed_attempts += 1
        return self.escalate(state)

    def record_keepalive(self, state: OriginState) -> int:
        state.backoff_seconds = self.cfg.keepalive_seconds
        return state.backoff_seconds

    def record_success(self, state: OriginState) -> None:
        state.backoff_seconds = 0
        state.failed_attempts = 0
