"""
Session registry: one browser and one page per live application session.

The registry is the only owner of browser handles. Operations on the same
session id are serialized through a per-session lock, so a repeat "go" or a
second autofill cannot interleave with one already running on that page.
"""

import asyncio
import base64
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

from playwright.async_api import async_playwright, Browser, Page, Playwright

from autofill.env import (
    HEADLESS,
    SCREENSHOT_INTERVAL_SECONDS,
    VIEWPORT_HEIGHT,
    VIEWPORT_WIDTH,
)
from autofill.errors import NoLivePage
from autofill.logging import get_logger

get_logger()
logger = logging.getLogger(__name__)

FrameSender = Callable[[dict], Awaitable[None]]


@dataclass
class LiveSession:
    session_id: str
    browser: Browser
    page: Page
    streams: Dict[str, asyncio.Task] = field(default_factory=dict)


async def focus_first_field(page: Page):
    try:
        locator = page.locator("input, textarea, select").first
        await locator.scroll_into_view_if_needed(timeout=4000)
    except Exception as e:
        logger.debug(f"No field to focus: {e}")


class SessionRegistry:
    """Creates, reuses, streams and tears down live browser sessions."""

    def __init__(
        self,
        launcher: Optional[Callable[[], Awaitable[Browser]]] = None,
        headless: bool = HEADLESS,
        viewport: Optional[dict] = None,
        screenshot_interval: float = SCREENSHOT_INTERVAL_SECONDS,
    ):
        """
        Args:
            launcher: Coroutine factory returning a new Browser. Defaults to
                launching Chromium through Playwright.
            headless: Run launched browsers headless
            viewport: Page viewport, defaults to VIEWPORT_WIDTH x VIEWPORT_HEIGHT
            screenshot_interval: Seconds between frames pushed to viewers
        """
        self.launcher = launcher
        self.headless = headless
        self.viewport = viewport or {"width": VIEWPORT_WIDTH, "height": VIEWPORT_HEIGHT}
        self.screenshot_interval = screenshot_interval
        self.playwright: Optional[Playwright] = None
        self.sessions: Dict[str, LiveSession] = {}
        self.locks: Dict[str, asyncio.Lock] = {}
        self.startup_lock = asyncio.Lock()

    def session_lock(self, session_id: str) -> asyncio.Lock:
        # Locks live until shutdown(); a stopped session may still have waiters.
        lock = self.locks.get(session_id)
        if lock is None:
            lock = self.locks[session_id] = asyncio.Lock()
        return lock

    async def _launch_browser(self) -> Browser:
        if self.launcher:
            return await self.launcher()
        async with self.startup_lock:
            if not self.playwright:
                self.playwright = await async_playwright().start()
                logger.info("Playwright started")
        return await self.playwright.chromium.launch(
            headless=self.headless,
            args=[
                "--no-sandbox",
                "--disable-dev-shm-usage",
                "--disable-blink-features=AutomationControlled",
            ],
        )

    async def start_session(self, session_id: str, url: str) -> Page:
        """
        Open `url` for a session. An existing live page is reused and only
        re-navigated; otherwise a browser and page are launched.

        Args:
            session_id: Application session identifier
            url: Page to load

        Returns:
            The session's Page
        """
        async with self.session_lock(session_id):
            live = self.sessions.get(session_id)
            if live:
                logger.info(f"Reusing live page for session {session_id}")
                page = live.page
            else:
                browser = await self._launch_browser()
                try:
                    page = await browser.new_page(viewport=self.viewport)
                except Exception:
                    with contextlib.suppress(Exception):
                        await browser.close()
                    raise
                self.sessions[session_id] = LiveSession(session_id, browser, page)
                logger.info(f"Launched browser for session {session_id}")

            await page.goto(url, wait_until="domcontentloaded")
            await focus_first_field(page)
            return page

    def get_page(self, session_id: str) -> Optional[Page]:
        live = self.sessions.get(session_id)
        return live.page if live else None

    def require_page(self, session_id: str) -> Page:
        page = self.get_page(session_id)
        if page is None:
            raise NoLivePage(session_id)
        return page

    async def attach_viewer(self, session_id: str, send: FrameSender) -> str:
        """
        Start pushing screenshots of the session's page to one viewer.

        Args:
            session_id: Session to watch
            send: Coroutine receiving {"type": "frame" | "error", ...} events

        Returns:
            Stream id used to detach this viewer
        """
        live = self.sessions.get(session_id)
        if not live:
            raise NoLivePage(session_id)

        stream_id = str(uuid.uuid4())
        live.streams[stream_id] = asyncio.create_task(
            self._stream_frames(live, stream_id, send)
        )
        logger.info(f"Viewer {stream_id} attached to session {session_id}")
        return stream_id

    async def _stream_frames(self, live: LiveSession, stream_id: str, send: FrameSender):
        while True:
            try:
                buf = await live.page.screenshot(full_page=True)
                event = {"type": "frame", "data": {"image": base64.b64encode(buf).decode("utf-8")}}
            except Exception as e:
                logger.warning(f"Could not capture frame for session {live.session_id}: {e}")
                event = {"type": "error", "data": {"message": "Could not capture frame"}}
            try:
                await send(event)
            except Exception as e:
                logger.warning(f"Viewer {stream_id} send failed, stopping stream: {e}")
                live.streams.pop(stream_id, None)
                return
            await asyncio.sleep(self.screenshot_interval)

    async def detach_viewer(self, session_id: str, stream_id: str):
        """Cancel one viewer's screenshot stream; the page stays open."""
        live = self.sessions.get(session_id)
        if not live:
            return
        task = live.streams.pop(stream_id, None)
        if task:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
            logger.info(f"Viewer {stream_id} detached from session {session_id}")

    async def stop_session(self, session_id: str):
        """
        Tear down a live session: viewer streams first, then page, then
        browser. Close errors are logged and swallowed.
        """
        async with self.session_lock(session_id):
            live = self.sessions.pop(session_id, None)
            if not live:
                return

            for task in live.streams.values():
                task.cancel()
            for task in live.streams.values():
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
            live.streams.clear()

            try:
                await live.page.close()
            except Exception as e:
                logger.warning(f"Error closing page for session {session_id}: {e}")
            try:
                await live.browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser for session {session_id}: {e}")
            logger.info(f"Stopped live session {session_id}")

    async def shutdown(self):
        """
        Stop every live session and Playwright itself.
        Called during application shutdown.
        """
        for session_id in list(self.sessions.keys()):
            await self.stop_session(session_id)
        self.locks.clear()

        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
            logger.info("Playwright stopped")

    def get_active_sessions(self) -> list[str]:
        """
        Get list of session IDs with a live page.

        Returns:
            List of session IDs
        """
        return list(self.sessions.keys())
