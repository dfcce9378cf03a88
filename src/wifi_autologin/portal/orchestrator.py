from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterator, Optional

from ..config import EngineConfig, PortalConfig
from ..models import DetectionResult, InjectionResult, Outcome
from ..probe import ConnectivityProbe
from ..util.urls import same_origin
from .detector import FieldDetector
from .heuristics import FieldHeuristics
from .injector import CredentialInjector
from .port import BrowsingSessionPort, SessionInfo


logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

# A probe session showing one of these has been replaced by a browser-internal page.
INTERNAL_URL_PREFIXES = ("chrome://", "chrome-error://", "edge://", "about:")


class CreatedSessionRegistry:
    """
    Sessions the engine opened itself. Only members may ever be closed by the engine;
    sessions that already existed (e.g. a portal tab the user opened) are reused but never closed.
    """

    def __init__(self) -> None:
        self._ids: set[int] = set()

    def add(self, session_id: int) -> None:
        self._ids.add(session_id)

    def discard(self, session_id: int) -> None:
        self._ids.discard(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._ids

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._ids))

    def __len__(self) -> int:
        return len(self._ids)


class _ShortCircuit(Exception):
    def __init__(self, result: InjectionResult) -> None:
        super().__init__(result.error)
        self.result = result


class SessionOrchestrator:
    """
    Get a browsing session onto the portal origin (reuse, probe, navigate, or create), then detect
    the login fields and submit the credentials.
    """

    def __init__(
        self,
        port: BrowsingSessionPort,
        probe: ConnectivityProbe,
        *,
        cfg: Optional[EngineConfig] = None,
        heuristics: Optional[FieldHeuristics] = None,
        detector: Optional[FieldDetector] = None,
        injector: Optional[CredentialInjector] = None,
        registry: Optional[CreatedSessionRegistry] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.port = port
        self.probe = probe
        self.cfg = cfg or EngineConfig()
        heuristics = heuristics or FieldHeuristics()
        self.detector = detector or FieldDetector(port, heuristics)
        self.injector = injector or CredentialInjector(port, heuristics)
        self.registry = registry if registry is not None else CreatedSessionRegistry()
        self._sleep = sleep
        self._clock = clock

        self.probe_session_id: Optional[int] = None
        self._last_probe_created_at: Optional[float] = None

    async def find_session_at_origin(self, origin: str) -> Optional[SessionInfo]:
        for session in await self.port.list_sessions():
            if same_origin(session.url, origin):
                return session
        return None

    async def open_and_submit(self, config: PortalConfig) -> InjectionResult:
        origin = config.origin
        logger.debug("open_and_submit starting (origin=%s)", origin)

        # Opening sessions is pointless churn if the network already recovered.
        if await self._internet_up():
            return InjectionResult.failure(Outcome.ALREADY_UP)

        try:
            portal = await self._acquire_portal_session(config)
        except _ShortCircuit as sc:
            return sc.result
        if portal is None:
            logger.warning("No portal session available for origin=%s", origin)
            return InjectionResult.failure(Outcome.NO_PORTAL_SESSION)

        used_session_id = portal.id if portal.id in self.registry else None

        detection = await self._detect_with_retries(portal)
        if not detection.found:
            logger.warning(
                "Login fields not found after %d checks (session=%s). Frames: %s",
                self.cfg.max_field_check_tries,
                portal.id,
                [f.model_dump() for f in detection.frames],
            )
            await self._capture(portal, "fields_not_found")
            return InjectionResult.failure(
                Outcome.FIELDS_NOT_FOUND,
                frames=list(detection.frames),
                used_session_id=used_session_id,
            )

        try:
            result = await self.injector.inject(portal, config)
        except Exception as e:
            logger.warning("Credential injection failed (session=%s)", portal.id, exc_info=True)
            return InjectionResult.failure(Outcome.INJECTION_FAILED, detail=str(e), used_session_id=used_session_id)

        if not result.ok:
            logger.warning(
                "No frame accepted the credentials (session=%s). Frame results: %s",
                portal.id,
                [f.model_dump() if hasattr(f, "model_dump") else f for f in result.frames],
            )
        return result.model_copy(update={"used_session_id": used_session_id})

    async def release(self, session_id: Optional[int]) -> bool:
        """
        Close a session if, and only if, the engine created it.
        """
        if session_id is None or session_id not in self.registry:
            logger.debug("Not closing session=%s (not created by us)", session_id)
            return False
        try:
            await self.port.close_session(session_id)
        except Exception:
            logger.warning("Failed to close created session=%s", session_id, exc_info=True)
        self.registry.discard(session_id)
        if self.probe_session_id == session_id:
            self.probe_session_id = None
        logger.debug("Closed created session=%s", session_id)
        return True

    async def release_all(self, *, keep: Optional[int] = None) -> int:
        """
        Close every engine-created session except `keep`. Returns how many were closed.
        """
        closed = 0
        for session_id in list(self.registry):
            if session_id != keep and await self.release(session_id):
                closed += 1
        return closed

    # --- session acquisition ---

    async def _acquire_portal_session(self, config: PortalConfig) -> Optional[SessionInfo]:
        origin = config.origin

        existing = await self.find_session_at_origin(origin)
        if existing is not None:
            logger.info("Reusing existing portal session=%s (%s)", existing.id, existing.url)
            try:
                await self.port.deactivate(existing.id)
            except Exception:
                logger.debug("Failed to deactivate session=%s", existing.id, exc_info=True)
            return existing

        await self._ensure_probe_session()

        # The portal usually intercepts the probe page and redirects it to the login origin.
        portal = await self.find_session_at_origin(origin)
        if portal is not None:
            logger.info("Probe landed on portal origin (session=%s)", portal.id)
            return portal

        probe_id = self.probe_session_id
        if probe_id is not None:
            if await self._internet_up():
                logger.debug("Probe navigation skipped: internet already up.")
                raise _ShortCircuit(InjectionResult.failure(Outcome.ALREADY_UP))
            try:
                logger.info("Navigating probe session=%s to %s", probe_id, config.login_url)
                await self.port.navigate(probe_id, config.login_url)
                await self.port.wait_for_load(probe_id, self.cfg.load_timeout_ms)
                portal = await self.port.get_session(probe_id)
            except Exception as e:
                logger.warning("Could not navigate probe session=%s to portal: %s", probe_id, e)
                portal = None
            if portal is not None and not same_origin(portal.url, origin):
                logger.info("Probe session is at %s rather than %s; using it anyway", portal.url, origin)

        if portal is None:
            # Last resort: a dedicated background session at the login URL. Earlier ones never
            # reached the portal origin (or they would have been reused above).
            stale = await self.release_all(keep=self.probe_session_id)
            if stale:
                logger.info("Closed %d stale created session(s) before opening a new one", stale)
            try:
                created = await self.port.open_session(config.login_url)
            except Exception as e:
                logger.warning("Could not create a portal session for %s: %s", origin, e)
                raise _ShortCircuit(InjectionResult.failure(Outcome.SESSION_CREATE_FAILED, detail=str(e)))
            self.registry.add(created.id)
            logger.info("Created background portal session=%s (%s)", created.id, config.login_url)
            await self.port.wait_for_load(created.id, self.cfg.load_timeout_ms)
            portal = await self.port.get_session(created.id) or created

        return portal

    async def _ensure_probe_session(self) -> None:
        if self.probe_session_id is not None:
            info = None
            try:
                info = await self.port.get_session(self.probe_session_id)
            except Exception:
                logger.debug("Probe session lookup failed", exc_info=True)
            if info is None:
                self.registry.discard(self.probe_session_id)
                self.probe_session_id = None
            elif info.url.startswith(INTERNAL_URL_PREFIXES):
                logger.info("Probe session=%s is on %s; closing it", info.id, info.url)
                await self.release(self.probe_session_id)

        if self.probe_session_id is not None:
            return

        now = self._clock()
        last = self._last_probe_created_at
        if last is not None and now - last < self.cfg.probe_cooldown_seconds:
            logger.debug("Probe session creation in cooldown (%.1fs left)", self.cfg.probe_cooldown_seconds - (now - last))
            return

        try:
            created = await self.port.open_session(self.cfg.probe_session_url)
        except Exception as e:
            logger.warning("Probe session create failed: %s", e)
            return
        self.probe_session_id = created.id
        self.registry.add(created.id)
        self._last_probe_created_at = self._clock()
        logger.info("Created probe session=%s (%s)", created.id, self.cfg.probe_session_url)
        await self.port.wait_for_load(created.id, self.cfg.load_timeout_ms)

    # --- detection ---

    async def _detect_with_retries(self, portal: SessionInfo) -> DetectionResult:
        tries = max(1, int(self.cfg.max_field_check_tries))
        detection = await self.detector.detect_fields(portal)
        attempt = 1
        while not detection.found and attempt < tries:
            logger.info("No login fields yet (check %d/%d, session=%s)", attempt, tries, portal.id)
            if self.cfg.reload_on_first_fail and attempt == 1:
                # Give client-side portal scripts a chance to render the form.
                try:
                    await self.port.reload(portal.id)
                    await self.port.wait_for_load(portal.id, self.cfg.reload_timeout_ms)
                except Exception as e:
                    logger.warning("Reload of session=%s failed: %s", portal.id, e)
            else:
                await self._sleep(self.cfg.field_check_interval_ms / 1000)
            detection = await self.detector.detect_fields(portal)
            attempt += 1
        return detection

    # --- helpers ---

    async def _internet_up(self) -> bool:
        try:
            return await self.probe.is_internet_up()
        except Exception:
            logger.warning("Connectivity check failed (continuing)", exc_info=True)
            return False

    async def _capture(self, session: SessionInfo, name_prefix: str) -> None:
        try:
            await self.port.capture_debug(session.id, name_prefix)
        except Exception:
            logger.debug("Failed to capture debug artifacts.", exc_info=True)
