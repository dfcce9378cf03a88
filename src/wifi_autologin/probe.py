from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import requests

from .config import ProbeConfig


logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class ConnectivityProbe:
    """
    Authoritative "is the real internet reachable" check.

    A generate-204 endpoint answers with an empty 204 when the network is not intercepted. A captive
    portal answers with a redirect or its own page instead, so any other status (or any error)
    counts as "down". Raw socket reachability cannot tell those two apart.
    """

    def __init__(
        self,
        cfg: Optional[ProbeConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.cfg = cfg or ProbeConfig()
        self._session = session or requests.Session()
        self._sleep = sleep

    async def is_internet_up(self, timeout_ms: Optional[int] = None) -> bool:
        timeout_ms = int(timeout_ms or self.cfg.timeout_ms)
        if await self._probe_once(timeout_ms):
            return True
        # One retry to absorb transient failures (DHCP renewals, a dropped packet, ...).
        await self._sleep(self.cfg.retry_delay_ms / 1000)
        return await self._probe_once(timeout_ms)

    async def _probe_once(self, timeout_ms: int) -> bool:
        timeout_s = timeout_ms / 1000
        try:
            status = await asyncio.wait_for(asyncio.to_thread(self._get_status, timeout_s), timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.debug("Connectivity probe timed out after %dms", timeout_ms)
            return False
        except requests.RequestException as e:
            logger.debug("Connectivity probe failed: %s", e)
            return False
        if status != 204:
            logger.debug("Connectivity probe got status=%s (intercepted)", status)
        return status == 204

    def _get_status(self, timeout_s: float) -> int:
        resp = self._session.get(
            self.cfg.url,
            timeout=timeout_s,
            allow_redirects=True,
            headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
        )
        try:
            return int(resp.status_code)
        finally:
            resp.close()
