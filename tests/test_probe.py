from __future__ import annotations

import asyncio
import time
from typing import Any

import requests

from wifi_autologin.config import ProbeConfig
from wifi_autologin.probe import ConnectivityProbe


class _Resp:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        self.closed = False

    def close(self) -> None:
        self.closed = True


class _Session:
    """Stand-in for requests.Session returning scripted statuses (or raising)."""

    def __init__(self, *outcomes: Any, delay_s: float = 0.0) -> None:
        self.outcomes = list(outcomes)
        self.delay_s = delay_s
        self.requests: list[dict] = []

    def get(self, url: str, **kwargs: Any) -> _Resp:
        self.requests.append({"url": url, **kwargs})
        if self.delay_s:
            time.sleep(self.delay_s)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return _Resp(outcome)


async def _no_sleep(_: float) -> None:
    return None


def test_204_means_up() -> None:
    session = _Session(204)
    probe = ConnectivityProbe(ProbeConfig(url="http://probe.test/generate_204"), session=session, sleep=_no_sleep)
    assert asyncio.run(probe.is_internet_up()) is True
    assert len(session.requests) == 1
    req = session.requests[0]
    assert req["url"] == "http://probe.test/generate_204"
    assert req["headers"]["Cache-Control"] == "no-cache"


def test_intercepted_response_means_down_after_one_retry() -> None:
    # A portal answers the probe with its own 200 login page.
    session = _Session(200)
    sleeps: list[float] = []

    async def sleep(s: float) -> None:
        sleeps.append(s)

    probe = ConnectivityProbe(ProbeConfig(retry_delay_ms=300), session=session, sleep=sleep)
    assert asyncio.run(probe.is_internet_up()) is False
    assert len(session.requests) == 2
    assert sleeps == [0.3]


def test_transient_error_then_success() -> None:
    session = _Session(requests.ConnectionError("reset"), 204)
    probe = ConnectivityProbe(ProbeConfig(), session=session, sleep=_no_sleep)
    assert asyncio.run(probe.is_internet_up()) is True
    assert len(session.requests) == 2


def test_request_exception_means_down() -> None:
    session = _Session(requests.Timeout("slow"))
    probe = ConnectivityProbe(ProbeConfig(), session=session, sleep=_no_sleep)
    assert asyncio.run(probe.is_internet_up()) is False


def test_hung_request_is_bounded_by_timeout() -> None:
    session = _Session(204, delay_s=0.5)
    probe = ConnectivityProbe(ProbeConfig(timeout_ms=50, retry_delay_ms=0), session=session, sleep=_no_sleep)

    async def timed() -> tuple[bool, float]:
        t0 = time.monotonic()
        up = await probe.is_internet_up()
        return up, time.monotonic() - t0

    up, elapsed = asyncio.run(timed())
    assert up is False
    assert elapsed < 0.45
