"""Shared browser process and per-session tabs.

One persistent Chromium context (profile under the data directory) is shared
by every session; each session gets its own tab (``Page``). The context is
kept behind ``BrowserProvider._context`` so it can be rebuilt after a crash
without invalidating the ``Tab`` handles sessions hold. A stale handle simply
reports ``closed`` and its session reacquires a tab.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .config import Config
from .errors import BrowserCrashed, NotebookLMBrowserError, ResourceExhausted

logger = logging.getLogger("notebooklm_browser.browser")

_BROWSER_DEAD_PATTERNS = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "context has been closed",
    "connection closed",
    "browser disconnected",
)


def is_browser_dead_error(exc: BaseException) -> bool:
    """Detect browser crash/disconnect errors."""
    msg = str(exc).lower()
    return any(p in msg for p in _BROWSER_DEAD_PATTERNS)


def chromium_launch_args(config: Config) -> list[str]:
    return [
        "--disable-blink-features=AutomationControlled",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-dev-shm-usage",
        "--disable-infobars",
        f"--window-size={config.viewport_width},{config.viewport_height}",
    ]


def is_profile_locked(profile_dir: Path) -> bool:
    """Chrome creates a "SingletonLock" file while a profile is in use."""
    return (profile_dir / "SingletonLock").exists()


@dataclass(eq=False)
class Tab:
    """Handle to one tab; ``generation`` names the root context it came from."""

    page: Any
    generation: int
    id: str = field(default_factory=lambda: secrets.token_hex(4))

    @property
    def closed(self) -> bool:
        return self.page.is_closed()


class BrowserProvider:
    """Owns the Playwright driver, the persistent context and the tab ceiling."""

    def __init__(self, config: Config, auth_store=None, playwright_factory=async_playwright):
        self.config = config
        self.auth_store = auth_store
        self._playwright_factory = playwright_factory
        self._playwright = None
        self._context = None
        self._generation = 0
        self._dead = False
        self._closing = False
        self._tabs: dict[str, Tab] = {}
        self._reserved = 0
        self._start_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._context is not None and not self._dead

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def tab_count(self) -> int:
        return len(self._tabs)

    async def acquire_tab(self) -> Tab:
        """Open a new tab, starting or restarting the browser as needed.

        Raises:
            ResourceExhausted: ``max_sessions`` tabs are already open
            BrowserCrashed: the browser died again right after one rebuild
        """
        if len(self._tabs) + self._reserved >= self.config.max_sessions:
            raise ResourceExhausted(
                f"Maximum of {self.config.max_sessions} concurrent sessions reached",
                hint="Close a session or raise NOTEBOOKLM_MAX_SESSIONS.",
                max_sessions=self.config.max_sessions,
            )
        self._reserved += 1
        try:
            for attempt in (1, 2):
                await self._ensure_context()
                generation = self._generation
                try:
                    page = await self._context.new_page()
                except PlaywrightError as e:
                    if not is_browser_dead_error(e):
                        raise
                    if attempt == 2:
                        raise BrowserCrashed(f"Browser crashed again after restart: {e}") from e
                    logger.warning("Browser context is dead (%s), restarting once", e)
                    await self.recover(generation)
                    continue
                page.set_default_timeout(self.config.element_timeout * 1000)
                tab = Tab(page=page, generation=generation)
                self._tabs[tab.id] = tab
                logger.debug("Opened tab %s (generation %d, %d open)", tab.id, generation, len(self._tabs))
                return tab
        finally:
            self._reserved -= 1
        raise BrowserCrashed("Browser could not be restarted")

    async def release_tab(self, tab: Tab) -> None:
        """Close a tab and free its slot. Safe on tabs whose browser is gone."""
        self._tabs.pop(tab.id, None)
        if tab.closed:
            return
        try:
            await tab.page.close()
        except PlaywrightError as e:
            logger.debug("Ignoring error while closing tab %s: %s", tab.id, e)

    async def recycle_tab(self, tab: Tab) -> Tab:
        """Replace one tab, leaving every other tab untouched."""
        await self.release_tab(tab)
        return await self.acquire_tab()

    async def recover(self, stale_generation: int | None = None) -> bool:
        """Rebuild the root context if it is actually gone; return whether it was rebuilt.

        With ``stale_generation``, nothing happens if another caller already
        rebuilt the context since that generation was current. A context that
        can still open a page is left alone: only the caller's own tab died.
        """
        async with self._start_lock:
            if stale_generation is not None and stale_generation != self._generation and not self._dead:
                return False
            if await self._context_alive():
                logger.info("Browser context (generation %d) is still alive, not rebuilding", self._generation)
                return False
            await self._close_context()
            await self._start_context()
            return True

    async def capture_cookies(self) -> list[dict]:
        await self._ensure_context()
        return await self._context.cookies()

    async def shutdown(self) -> None:
        """Close every tab, the context and the driver. Idempotent."""
        self._closing = True
        try:
            for tab in list(self._tabs.values()):
                await self.release_tab(tab)
            await self._close_context()
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.debug("Ignoring error while stopping Playwright: %s", e)
                self._playwright = None
        finally:
            self._closing = False
        logger.info("Browser shut down")

    async def _ensure_context(self) -> None:
        if self._context is not None and not self._dead:
            return
        async with self._start_lock:
            if self._context is not None and not self._dead:
                return
            if self._dead:
                logger.warning("Restarting browser context after crash")
                await self._close_context()
            await self._start_context()

    async def _start_context(self) -> None:
        if self._playwright is None:
            self._playwright = await self._playwright_factory().start()

        profile_dir = self.config.profile_dir
        profile_dir.mkdir(parents=True, exist_ok=True)
        try:
            context = await self._playwright.chromium.launch_persistent_context(
                user_data_dir=str(profile_dir),
                headless=self.config.headless,
                user_agent=self.config.user_agent,
                viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
                locale="en-US",
                args=chromium_launch_args(self.config),
                ignore_default_args=["--enable-automation"],
            )
        except PlaywrightError as e:
            message = str(e)
            if "executable doesn't exist" in message.lower():
                raise NotebookLMBrowserError(
                    "Chromium is not installed",
                    hint="Run: playwright install chromium",
                ) from e
            if is_profile_locked(profile_dir):
                raise NotebookLMBrowserError(
                    f"Browser profile {profile_dir} is in use by another browser",
                    hint="Close the other NotebookLM browser window and try again.",
                ) from e
            raise

        self._generation += 1
        generation = self._generation
        context.on("close", lambda _ctx: self._on_context_close(generation))

        if self.auth_store is not None:
            cookies = self.auth_store.playwright_cookies()
            if cookies:
                await context.add_cookies(cookies)

        self._context = context
        self._dead = False
        logger.info(
            "Browser context started (generation %d, headless=%s, profile=%s)",
            generation,
            self.config.headless,
            profile_dir,
        )

    async def _context_alive(self) -> bool:
        if self._context is None or self._dead:
            return False
        try:
            page = await self._context.new_page()
        except PlaywrightError as e:
            if is_browser_dead_error(e):
                return False
            raise
        try:
            await page.close()
        except PlaywrightError as e:
            logger.debug("Ignoring error while closing liveness page: %s", e)
        return True

    async def _close_context(self) -> None:
        context, self._context = self._context, None
        stale = [t for t in self._tabs.values() if t.generation == self._generation]
        for tab in stale:
            self._tabs.pop(tab.id, None)
        if context is None:
            return
        try:
            await context.close()
        except PlaywrightError as e:
            logger.debug("Ignoring error while closing context: %s", e)

    def _on_context_close(self, generation: int) -> None:
        if self._closing or generation != self._generation:
            return
        logger.warning("Browser context (generation %d) closed unexpectedly", generation)
        self._dead = True
