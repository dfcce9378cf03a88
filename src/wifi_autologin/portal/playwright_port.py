from __future__ import annotations

import itertools
import logging
import re
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import BrowserConfig
from ..util.urls import origin_of
from .port import ContextResult, PortalSessionError, SessionInfo


logger = logging.getLogger(__name__)


class PlaywrightSessionPort:
    """
    `BrowsingSessionPort` backed by a Playwright Chromium context: sessions are pages, content
    regions are frames. Pages opened by anything in the context (popups, portal redirects into new
    windows) are tracked too.
    """

    def __init__(self, cfg: Optional[BrowserConfig] = None, *, navigation_timeout_ms: int = 15_000) -> None:
        self.cfg = cfg or BrowserConfig()
        self.navigation_timeout_ms = navigation_timeout_ms

        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._pages: dict[int, Page] = {}
        self._ids = itertools.count(1)
        self._load_callbacks: list[Callable[[str], None]] = []

    async def __aenter__(self) -> "PlaywrightSessionPort":
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def start(self) -> None:
        self._pw = await async_playwright().start()
        self._browser = await self._launch(self._pw)
        self._context = await self._browser.new_context()
        self._context.set_default_navigation_timeout(self.navigation_timeout_ms)
        self._context.on("page", self._on_new_page)

    async def stop(self) -> None:
        try:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._pw is not None:
                await self._pw.stop()
            self._context = None
            self._browser = None
            self._pw = None
            self._pages.clear()

    async def _launch(self, pw: Playwright) -> Browser:
        slow_mo = int(self.cfg.slow_mo_ms or 0)
        headless = bool(self.cfg.headless)
        if self.cfg.channel:
            return await pw.chromium.launch(headless=headless, slow_mo=slow_mo, channel=self.cfg.channel)
        # Prefer Playwright's bundled Chromium, but fall back to a system-installed browser when the
        # Playwright browser cache is missing.
        try:
            return await pw.chromium.launch(headless=headless, slow_mo=slow_mo)
        except PlaywrightError as e:
            msg = str(e)
            if "Executable doesn't exist" not in msg:
                raise
            logger.warning("Playwright Chromium executable missing; falling back to system browser channel. (%s)", msg)
        try:
            return await pw.chromium.launch(headless=headless, slow_mo=slow_mo, channel="chrome")
        except PlaywrightError:
            return await pw.chromium.launch(headless=headless, slow_mo=slow_mo, channel="msedge")

    # --- page bookkeeping ---

    def _register(self, page: Page) -> int:
        for session_id, known in self._pages.items():
            if known is page:
                return session_id
        session_id = next(self._ids)
        self._pages[session_id] = page
        page.on("close", lambda _p: self._pages.pop(session_id, None))
        page.on("load", self._on_load)
        return session_id

    def _page(self, session_id: int) -> Page:
        page = self._pages.get(session_id)
        if page is None or page.is_closed():
            raise PortalSessionError(f"session {session_id} is closed")
        return page

    def _require_context(self) -> BrowserContext:
        if self._context is None:
            raise PortalSessionError("browser is not started")
        return self._context

    def _on_new_page(self, page: Page) -> None:
        self._register(page)

    def _on_load(self, page: Page) -> None:
        origin = origin_of(page.url)
        for callback in list(self._load_callbacks):
            try:
                callback(origin)
            except Exception:
                logger.debug("Page-load callback failed", exc_info=True)

    def watch_page_loads(self, callback: Callable[[str], None]) -> None:
        """
        Call `callback(origin)` whenever any page in this port's own context finishes loading.

        Pages in other browsers (the user's own) are invisible here, so in practice this sees the
        engine's navigations and reloads plus popups the portal opens; triggers raised while an
        attempt is running are dropped as in-flight.
        """
        self._load_callbacks.append(callback)

    # --- BrowsingSessionPort ---

    async def list_sessions(self) -> list[SessionInfo]:
        ctx = self._require_context()
        return [SessionInfo(id=self._register(p), url=p.url) for p in ctx.pages if not p.is_closed()]

    async def get_session(self, session_id: int) -> Optional[SessionInfo]:
        page = self._pages.get(session_id)
        if page is None or page.is_closed():
            return None
        return SessionInfo(id=session_id, url=page.url)

    async def open_session(self, url: str) -> SessionInfo:
        ctx = self._require_context()
        try:
            page = await ctx.new_page()
        except PlaywrightError as e:
            raise PortalSessionError(f"new page failed: {e}") from e
        session_id = self._register(page)
        try:
            await page.goto(url, wait_until="commit")
        except PlaywrightError as e:
            # The page stays open (typically on an error page); callers inspect it and decide.
            logger.info("Navigation of new session=%s to %s failed: %s", session_id, url, e)
        return SessionInfo(id=session_id, url=page.url)

    async def navigate(self, session_id: int, url: str) -> None:
        page = self._page(session_id)
        try:
            await page.goto(url, wait_until="commit")
        except PlaywrightError as e:
            raise PortalSessionError(f"navigation to {url} failed: {e}") from e

    async def reload(self, session_id: int) -> None:
        page = self._page(session_id)
        try:
            await page.reload(wait_until="commit")
        except PlaywrightError as e:
            raise PortalSessionError(f"reload failed: {e}") from e

    async def deactivate(self, session_id: int) -> None:
        # Pages in a headless context have no focus to give up; only check the session still exists.
        self._page(session_id)

    async def wait_for_load(self, session_id: int, timeout_ms: int) -> bool:
        page = self._pages.get(session_id)
        if page is None or page.is_closed():
            return False
        try:
            await page.wait_for_load_state("load", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.debug("session=%s did not finish loading within %dms", session_id, timeout_ms)
            return False
        except PlaywrightError:
            return False

    async def close_session(self, session_id: int) -> None:
        page = self._pages.pop(session_id, None)
        if page is None or page.is_closed():
            return
        try:
            await page.close()
        except PlaywrightError as e:
            raise PortalSessionError(f"close failed: {e}") from e

    async def run_in_context(
        self, session_id: int, script: str, arg: Any = None, *, all_frames: bool = True
    ) -> list[ContextResult]:
        page = self._page(session_id)
        frames = page.frames if all_frames else [page.main_frame]
        results: list[ContextResult] = []
        for idx, frame in enumerate(frames):
            try:
                value = await frame.evaluate(script, arg)
                results.append(ContextResult(frame_index=idx, doc_url=frame.url, value=value))
            except PlaywrightError as e:
                results.append(ContextResult(frame_index=idx, doc_url=frame.url, error=str(e)))
        return results

    async def run_in_frame(self, session_id: int, frame_index: int, script: str, arg: Any = None) -> ContextResult:
        page = self._page(session_id)
        frames = page.frames
        if frame_index < 0 or frame_index >= len(frames):
            return ContextResult(frame_index=frame_index, error="frame_gone")
        frame = frames[frame_index]
        try:
            value = await frame.evaluate(script, arg)
            return ContextResult(frame_index=frame_index, doc_url=frame.url, value=value)
        except PlaywrightError as e:
            return ContextResult(frame_index=frame_index, doc_url=frame.url, error=str(e))

    async def capture_debug(self, session_id: int, name_prefix: str) -> None:
        page = self._pages.get(session_id)
        if page is None or page.is_closed():
            return
        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", name_prefix).strip("_")[:60] or "capture"
        try:
            out_dir = Path(self.cfg.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(out_dir / f"{safe}.png"), full_page=True)
            (out_dir / f"{safe}.html").write_text(await page.content(), encoding="utf-8")
            # Rendered text too, so the page can be inspected without DOM tooling.
            try:
                (out_dir / f"{safe}.txt").write_text(await page.inner_text("body"), encoding="utf-8")
            except PlaywrightError:
                pass
        except (OSError, PlaywrightError):
            logger.debug("Failed to save debug artifacts.", exc_info=True)
