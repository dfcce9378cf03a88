from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .backoff import BackoffPolicy, OriginRegistry, OriginState
from .config import EngineConfig, PortalConfig
from .models import InjectionResult, Outcome, RemediationResult
from .notifier import MESSAGES, LoggingNotifier, Notification, Notifier
from .portal.keepalive import KeepaliveClassifier
from .portal.orchestrator import SessionOrchestrator
from .probe import ConnectivityProbe


logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class RemediationScheduler:
    """
    Top-level control loop for one remediation cycle.

    Entered from the periodic timer, a user-forced request, or an observed portal page. Per origin,
    at most one background attempt runs at a time; a background trigger that finds the origin busy
    is dropped (the next tick retries). Forced attempts skip the backoff wait and the busy check and
    are tracked separately, so they can never release a background attempt's guard.
    """

    def __init__(
        self,
        *,
        probe: ConnectivityProbe,
        orchestrator: SessionOrchestrator,
        classifier: KeepaliveClassifier,
        notifier: Optional[Notifier] = None,
        policy: Optional[BackoffPolicy] = None,
        origins: Optional[OriginRegistry] = None,
        cfg: Optional[EngineConfig] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.probe = probe
        self.orchestrator = orchestrator
        self.classifier = classifier
        self.notifier = notifier or LoggingNotifier()
        self.policy = policy or BackoffPolicy()
        self.origins = origins if origins is not None else OriginRegistry()
        self.cfg = cfg or EngineConfig()
        self._sleep = sleep
        self._clock = clock

        self._config: Optional[PortalConfig] = None
        self._locked_notified = False

    # --- cached configuration ---

    @property
    def config(self) -> Optional[PortalConfig]:
        return self._config

    def set_config(self, config: Optional[PortalConfig]) -> None:
        self._config = config
        self._locked_notified = False
        if config is not None:
            logger.info("Cached portal config (origin=%s user_field=%r)", config.origin, config.user_field)

    def clear_config(self) -> None:
        self._config = None
        self._locked_notified = False
        logger.info("Cleared cached portal config")

    # --- remediation ---

    async def check_and_login(self, *, force: bool = False) -> RemediationResult:
        try:
            return await self._check_and_login(force)
        except Exception:
            logger.exception("Remediation cycle failed unexpectedly (force=%s)", force)
            return RemediationResult(outcome=Outcome.INTERNAL_ERROR)

    async def _check_and_login(self, force: bool) -> RemediationResult:
        config = self._config
        if config is None:
            # Nothing to submit; stay off the network entirely.
            self._notify_locked(force)
            return RemediationResult(outcome=Outcome.LOCKED)

        origin = config.origin
        if not force and await self.probe.is_internet_up():
            logger.debug("Internet already up; nothing to do.")
            return RemediationResult(outcome=Outcome.ALREADY_UP, origin=origin)

        state = self.origins.get(origin)
        if not force and state.busy:
            logger.debug("Attempt already in flight for %s; dropping trigger.", origin)
            return RemediationResult(outcome=Outcome.IN_FLIGHT, origin=origin)

        if force:
            state.forced_in_flight += 1
        else:
            state.in_flight = True
        try:
            return await self._attempt(config, origin, state, force=force)
        finally:
            if force:
                state.forced_in_flight = max(0, state.forced_in_flight - 1)
            else:
                state.in_flight = False

    async def _attempt(self, config: PortalConfig, origin: str, state: OriginState, *, force: bool) -> RemediationResult:
        if not force and state.backoff_seconds > 0:
            logger.info("Backoff active for %s; waiting %ds", origin, state.backoff_seconds)
            await self._sleep(state.backoff_seconds)

        # Forced attempts check here too: a login page is never opened while the internet is up.
        if await self.probe.is_internet_up():
            logger.info("Internet is up for %s; nothing to remediate.", origin)
            return RemediationResult(outcome=Outcome.ALREADY_UP, origin=origin)

        if await self._portal_is_keepalive(origin):
            backoff = self.policy.record_keepalive(state)
            logger.info("Keepalive page open for %s; polling every %ds without escalating.", origin, backoff)
            return RemediationResult(outcome=Outcome.KEEPALIVE_SUPPRESSED, origin=origin)

        logger.info("Attempting portal login for %s (force=%s)", origin, force)
        injection = await self.orchestrator.open_and_submit(config)

        if injection.error is Outcome.ALREADY_UP:
            logger.info("Internet came back for %s before a login page was needed.", origin)
            self.policy.record_success(state)
            return RemediationResult(outcome=Outcome.ALREADY_UP, origin=origin, injection=injection)

        if injection.ok:
            await self._sleep(self.cfg.settle_delay_ms / 1000)
            if await self.probe.is_internet_up():
                return await self._on_success(origin, state, injection)
            backoff = self.policy.escalate(state)
            logger.warning("Credentials submitted but %s is still intercepting; backoff now %ds", origin, backoff)
            return RemediationResult(outcome=Outcome.CONNECTIVITY_NOT_RESTORED, origin=origin, injection=injection)

        backoff = self.policy.record_failure(state)
        logger.warning(
            "Portal login attempt failed for %s (error=%s detail=%s attempts=%d backoff=%ds)",
            origin,
            injection.error.value if injection.error else None,
            injection.detail,
            state.failed_attempts,
            backoff,
        )

        # Connectivity may have come back on its own while we were busy.
        if await self.probe.is_internet_up():
            return await self._on_success(origin, state, injection)

        return RemediationResult(outcome=injection.error or Outcome.INJECTION_FAILED, origin=origin, injection=injection)

    async def _portal_is_keepalive(self, origin: str) -> bool:
        try:
            existing = await self.orchestrator.find_session_at_origin(origin)
            return existing is not None and await self.classifier.is_keepalive(existing)
        except Exception:
            logger.debug("Keepalive detection failed (continuing)", exc_info=True)
            return False

    async def _on_success(self, origin: str, state: OriginState, injection: InjectionResult) -> RemediationResult:
        self.policy.record_success(state)

        now = self._clock()
        last = state.last_success_notified_at
        if last is None or now - last > self.cfg.notify_success_cooldown_seconds:
            self.notifier.notify(Notification.LOGIN_SUCCEEDED, MESSAGES[Notification.LOGIN_SUCCEEDED])
            state.last_success_notified_at = now
        else:
            logger.debug("Suppressing repeated success notification for %s", origin)

        # Includes leftovers from earlier failed cycles, not just the session used now.
        closed = await self.orchestrator.release_all()
        if closed:
            logger.debug("Closed %d created session(s) for %s", closed, origin)
        logger.info("Portal login succeeded for %s", origin)
        return RemediationResult(outcome=Outcome.LOGGED_IN, origin=origin, injection=injection)

    def _notify_locked(self, force: bool) -> None:
        # Background ticks announce the locked state once; explicit requests always do.
        if self._locked_notified and not force:
            return
        self.notifier.notify(Notification.LOCKED, MESSAGES[Notification.LOCKED])
        self._locked_notified = True
