from __future__ import annotations

import asyncio
from typing import Optional

from fakes import FakeClock, FakeFrame, FakePort, FakeProbe, RecordingNotifier, login_form

from wifi_autologin.config import PortalConfig
from wifi_autologin.models import Outcome
from wifi_autologin.notifier import Notification
from wifi_autologin.portal.keepalive import KeepaliveClassifier
from wifi_autologin.portal.orchestrator import SessionOrchestrator
from wifi_autologin.scheduler import RemediationScheduler


LOGIN_URL = "http://172.16.2.1:1000"
ORIGIN = "http://172.16.2.1:1000"
PORTAL_PAGE = "http://172.16.2.1:1000/fgtauth?0123456789abcdef"
PROBE_PAGE = "http://neverssl.com/"

CONFIG = PortalConfig(login_url=LOGIN_URL, user_field="username", pass_field="password", username="u", password="p")


class Engine:
    def __init__(
        self,
        port: FakePort,
        probe: FakeProbe,
        *,
        config: Optional[PortalConfig] = CONFIG,
        clock: Optional[FakeClock] = None,
        sleep=None,
    ) -> None:
        self.port = port
        self.probe = probe
        self.clock = clock or FakeClock()
        self.notifier = RecordingNotifier()
        self.orchestrator = SessionOrchestrator(port, probe, sleep=self.clock.sleep, clock=self.clock)
        self.scheduler = RemediationScheduler(
            probe=probe,
            orchestrator=self.orchestrator,
            classifier=KeepaliveClassifier(port),
            notifier=self.notifier,
            sleep=sleep or self.clock.sleep,
            clock=self.clock,
        )
        if config is not None:
            self.scheduler.set_config(config)

    @property
    def state(self):
        return self.scheduler.origins.get(ORIGIN)

    def run(self, *, force: bool = False):
        return asyncio.run(self.scheduler.check_and_login(force=force))


def _up_after_submit(port: FakePort, probe: FakeProbe) -> None:
    def flip() -> None:
        probe.up = True

    port.on_submit = flip


def test_already_up_forced_does_not_touch_sessions() -> None:
    port = FakePort()
    eng = Engine(port, FakeProbe(up=True))

    res = eng.run(force=True)

    assert res.outcome is Outcome.ALREADY_UP
    assert res.ok is True
    assert port.calls == []
    assert eng.notifier.sent == []


def test_locked_without_config_stays_off_the_network() -> None:
    port = FakePort()
    probe = FakeProbe(up=False)
    eng = Engine(port, probe, config=None)

    assert eng.run().outcome is Outcome.LOCKED
    assert eng.run().outcome is Outcome.LOCKED
    assert eng.run(force=True).outcome is Outcome.LOCKED

    assert probe.calls == 0
    assert port.calls == []
    # background ticks announce once, the explicit request again
    assert eng.notifier.kinds() == [Notification.LOCKED, Notification.LOCKED]


def test_login_success_resets_backoff_and_closes_created_session() -> None:
    port = FakePort()
    probe = FakeProbe(up=False)
    port.redirects[PROBE_PAGE] = PORTAL_PAGE
    port.serve(PORTAL_PAGE, [FakeFrame(PORTAL_PAGE, login_form())])
    _up_after_submit(port, probe)
    eng = Engine(port, probe)
    eng.state.backoff_seconds = 4
    eng.state.failed_attempts = 2

    res = eng.run()

    assert res.outcome is Outcome.LOGGED_IN
    assert (eng.state.backoff_seconds, eng.state.failed_attempts) == (0, 0)
    assert eng.notifier.kinds() == [Notification.LOGIN_SUCCEEDED]
    assert port.called("close_session") == [res.injection.used_session_id]
    assert port.sessions == {}
    # backoff wait, then settle delay after submitting
    assert eng.clock.sleeps == [4, 2.0]
    assert eng.state.in_flight is False


def test_fields_not_found_counts_failure_and_escalates() -> None:
    port = FakePort()
    port.add_session(PORTAL_PAGE, [FakeFrame(PORTAL_PAGE, [])])
    eng = Engine(port, FakeProbe(up=False))

    res = eng.run()

    assert res.outcome is Outcome.FIELDS_NOT_FOUND
    assert res.outcome.value == "fields_not_found_in_all_frames"
    assert eng.state.failed_attempts == 1
    assert eng.state.backoff_seconds == 2
    assert port.called("close_session") == []


def test_keepalive_page_suppresses_attempt() -> None:
    port = FakePort()
    port.add_session("http://172.16.2.1:1000/keepalive?0a0b0c0d", [FakeFrame(PORTAL_PAGE, login_form())])
    eng = Engine(port, FakeProbe(up=False))
    eng.state.backoff_seconds = 16
    eng.state.failed_attempts = 2

    res = eng.run(force=True)

    assert res.outcome is Outcome.KEEPALIVE_SUPPRESSED
    assert res.ok is False
    assert eng.state.backoff_seconds == 5
    assert eng.state.failed_attempts == 2
    assert port.submissions == []


def test_six_failures_collapse_backoff_to_steady() -> None:
    port = FakePort()
    port.add_session(PORTAL_PAGE, [FakeFrame(PORTAL_PAGE, [])])
    eng = Engine(port, FakeProbe(up=False))

    seen = []
    for _ in range(6):
        assert eng.run().outcome is Outcome.FIELDS_NOT_FOUND
        seen.append(eng.state.backoff_seconds)

    assert seen == [2, 4, 8, 16, 32, 5]
    assert eng.state.failed_attempts == 6


def test_submitted_but_still_intercepted_escalates_without_counting() -> None:
    port = FakePort()
    port.add_session(PORTAL_PAGE, [FakeFrame(PORTAL_PAGE, login_form())])
    eng = Engine(port, FakeProbe(up=False))

    res = eng.run()

    assert res.outcome is Outcome.CONNECTIVITY_NOT_RESTORED
    assert res.injection is not None and res.injection.ok is True
    assert eng.state.failed_attempts == 0
    assert eng.state.backoff_seconds == 2
    assert eng.notifier.sent == []


def test_connectivity_back_after_failed_attempt_counts_as_success() -> None:
    port = FakePort()
    port.add_session(PORTAL_PAGE, [FakeFrame(PORTAL_PAGE, [])])
    # pre-check, attempt check, orchestrator check: down; re-check after failure: up
    eng = Engine(port, FakeProbe(up=True, results=[False, False, False]))

    res = eng.run()

    assert res.outcome is Outcome.LOGGED_IN
    assert (eng.state.backoff_seconds, eng.state.failed_attempts) == (0, 0)
    assert eng.notifier.kinds() == [Notification.LOGIN_SUCCEEDED]


def test_success_after_unreachable_portal_closes_every_created_session() -> None:
    port = FakePort()
    probe = FakeProbe(up=False)
    # portal host unreachable: everything lands on the browser's error page
    port.redirects[PROBE_PAGE] = "chrome-error://chromewebdata/"
    port.redirects[LOGIN_URL] = "chrome-error://chromewebdata/"
    eng = Engine(port, probe)

    for _ in range(10):
        assert eng.run().outcome is Outcome.FIELDS_NOT_FOUND
        eng.clock.now += 60

    assert len(port.sessions) <= 2

    port.redirects.clear()
    port.serve(LOGIN_URL, [FakeFrame(LOGIN_URL, login_form())])
    _up_after_submit(port, probe)

    res = eng.run(force=True)

    assert res.outcome is Outcome.LOGGED_IN
    assert port.sessions == {}
    assert len(eng.orchestrator.registry) == 0
    assert eng.orchestrator.probe_session_id is None


def test_success_notification_is_rate_limited() -> None:
    port = FakePort()
    probe = FakeProbe(up=False)
    port.add_session(PORTAL_PAGE, [FakeFrame(PORTAL_PAGE, login_form())])
    _up_after_submit(port, probe)
    eng = Engine(port, probe)

    for advance in (0, 10, 200):
        eng.clock.now += advance
        probe.up = False
        assert eng.run().outcome is Outcome.LOGGED_IN

    assert eng.notifier.kinds() == [Notification.LOGIN_SUCCEEDED, Notification.LOGIN_SUCCEEDED]


def test_forced_attempt_skips_backoff_and_keeps_background_guard() -> None:
    port = FakePort()
    probe = FakeProbe(up=False)
    eng = Engine(port, probe)
    eng.state.backoff_seconds = 60
    eng.state.in_flight = True

    # the background trigger is dropped
    assert eng.run().outcome is Outcome.IN_FLIGHT

    probe.up = True
    res = eng.run(force=True)
    assert res.outcome is Outcome.ALREADY_UP
    assert 60 not in eng.clock.sleeps
    # a forced attempt never releases the background guard
    assert eng.state.in_flight is True
    assert eng.state.forced_in_flight == 0


def test_overlapping_background_trigger_is_dropped() -> None:
    port = FakePort()
    port.add_session(PORTAL_PAGE, [FakeFrame(PORTAL_PAGE, [])])

    async def scenario():
        gate = asyncio.Event()

        async def gated_sleep(_: float) -> None:
            await gate.wait()

        eng = Engine(port, FakeProbe(up=False), sleep=gated_sleep)
        eng.state.backoff_seconds = 2

        first = asyncio.create_task(eng.scheduler.check_and_login())
        await asyncio.sleep(0)
        assert eng.state.in_flight is True

        second = await eng.scheduler.check_and_login()
        gate.set()
        return eng, second, await first

    eng, second, first = asyncio.run(scenario())
    assert second.outcome is Outcome.IN_FLIGHT
    assert first.outcome is Outcome.FIELDS_NOT_FOUND
    assert eng.state.in_flight is False
    assert eng.state.failed_attempts == 1


def test_unexpected_error_is_contained_and_releases_guard() -> None:
    port = FakePort()
    eng = Engine(port, FakeProbe(up=False))

    async def boom(_config):
        raise RuntimeError("kaboom")

    eng.orchestrator.open_and_submit = boom  # type: ignore[method-assign]

    res = eng.run()

    assert res.outcome is Outcome.INTERNAL_ERROR
    assert eng.state.in_flight is False
    # the next tick is not blocked
    assert eng.run().outcome is Outcome.INTERNAL_ERROR
