from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any, Coroutine, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .config import PortalConfig
from .models import Outcome, RemediationResult
from .scheduler import RemediationScheduler
from .state import ConfigStore
from .util.urls import origin_of


logger = logging.getLogger(__name__)


class SetConfigRequest(BaseModel):
    type: Literal["set_config"] = "set_config"
    config: PortalConfig
    # Also persist through the store (read back at next startup).
    remember: bool = False
    # Clear the cached config automatically after this many minutes.
    unlock_minutes: Optional[float] = Field(default=None, gt=0)


class TriggerLoginNowRequest(BaseModel):
    type: Literal["trigger_login_now"] = "trigger_login_now"


class ClearConfigRequest(BaseModel):
    type: Literal["clear_config"] = "clear_config"


class ReportPortalObservedRequest(BaseModel):
    type: Literal["report_portal_observed"] = "report_portal_observed"
    origin: str


Request = Annotated[
    Union[SetConfigRequest, TriggerLoginNowRequest, ClearConfigRequest, ReportPortalObservedRequest],
    Field(discriminator="type"),
]
_REQUEST_ADAPTER: TypeAdapter = TypeAdapter(Request)
_REQUEST_TYPES = frozenset({"set_config", "trigger_login_now", "clear_config", "report_portal_observed"})


class Response(BaseModel):
    ok: bool
    error: Optional[str] = None
    outcome: Optional[Outcome] = None

    @classmethod
    def from_result(cls, result: RemediationResult) -> "Response":
        return cls(ok=result.ok, outcome=result.outcome)


class AutoLoginService:
    """
    Request/response surface of the engine plus the periodic trigger.

    Callers (a UI, a page-load watcher, the CLI) talk to the engine only through `handle()` or the
    typed methods below.
    """

    def __init__(
        self,
        scheduler: RemediationScheduler,
        *,
        store: Optional[ConfigStore] = None,
        check_interval_seconds: float = 60.0,
    ) -> None:
        self.scheduler = scheduler
        self.store = store
        self.check_interval_seconds = check_interval_seconds

        self._clear_handle: Optional[asyncio.TimerHandle] = None
        self._stopping = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    # --- startup ---

    def load_persisted(self, fallback: Optional[PortalConfig] = None) -> Optional[PortalConfig]:
        """
        Seed the cache from the store (or from `fallback` when nothing is stored). Startup only.
        """
        cfg = self.store.load() if self.store is not None else None
        if cfg is None and fallback is not None:
            logger.info("No stored portal config; using portal settings from configuration.")
            cfg = fallback
        if cfg is None:
            logger.info("No portal config available; auto-login stays locked until configured.")
            return None
        self.scheduler.set_config(cfg)
        return cfg

    # --- dispatch ---

    async def handle(self, request: Union[dict, BaseModel]) -> Response:
        if isinstance(request, dict):
            if request.get("type") not in _REQUEST_TYPES:
                return Response(ok=False, error="unknown message")
            try:
                request = _REQUEST_ADAPTER.validate_python(request)
            except ValidationError as e:
                logger.warning("Rejected malformed %s request: %s", request.get("type"), e.errors(include_input=False))
                return Response(ok=False, error="invalid request")

        if isinstance(request, SetConfigRequest):
            return self.set_config(request.config, remember=request.remember, unlock_minutes=request.unlock_minutes)
        if isinstance(request, TriggerLoginNowRequest):
            return await self.trigger_login_now()
        if isinstance(request, ClearConfigRequest):
            return self.clear_config()
        if isinstance(request, ReportPortalObservedRequest):
            return await self.report_portal_observed(request.origin)
        return Response(ok=False, error="unknown message")

    def set_config(
        self,
        config: PortalConfig,
        *,
        remember: bool = False,
        unlock_minutes: Optional[float] = None,
    ) -> Response:
        self._cancel_scheduled_clear()
        self.scheduler.set_config(config)
        if remember and self.store is not None:
            self.store.save(config)
        if unlock_minutes:
            loop = asyncio.get_running_loop()
            self._clear_handle = loop.call_later(unlock_minutes * 60, self._expire_config)
            logger.info("Cached portal config will be cleared in %.1f minutes", unlock_minutes)
        return Response(ok=True)

    async def trigger_login_now(self) -> Response:
        result = await self.scheduler.check_and_login(force=True)
        return Response.from_result(result)

    def clear_config(self) -> Response:
        self._cancel_scheduled_clear()
        self.scheduler.clear_config()
        if self.store is not None:
            self.store.clear()
        return Response(ok=True)

    async def report_portal_observed(self, origin: str) -> Response:
        cfg = self.scheduler.config
        if cfg is None or origin_of(origin) != cfg.origin:
            return Response(ok=False, error="no_cached_match")
        logger.debug("Observed page at portal origin %s; running remediation.", cfg.origin)
        result = await self.scheduler.check_and_login(force=False)
        return Response.from_result(result)

    # --- periodic trigger ---

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str = "") -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_forever(self) -> None:
        """
        Fire a background check every `check_interval_seconds` until `stop()` is called. Ticks run as
        independent tasks; one that overlaps a running attempt is dropped by the in-flight guard.
        """
        logger.info("Auto-login running (check every %.0fs)", self.check_interval_seconds)
        while not self._stopping.is_set():
            self.spawn(self.scheduler.check_and_login(force=False), name="periodic-check")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.check_interval_seconds)
            except asyncio.TimeoutError:
                continue
        await self.drain()

    def stop(self) -> None:
        self._stopping.set()
        self._cancel_scheduled_clear()

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- helpers ---

    def _expire_config(self) -> None:
        self._clear_handle = None
        logger.info("Unlock window elapsed; clearing cached portal config.")
        self.scheduler.clear_config()

    def _cancel_scheduled_clear(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None
