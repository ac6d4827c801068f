"""One logical NotebookLM conversation bound to one tab."""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .auth import is_login_page
from .browser import BrowserProvider, Tab, is_browser_dead_error
from .errors import AnswerTimeout, AuthExpired, BrowserCrashed, NotebookLMBrowserError, SessionClosed

logger = logging.getLogger("notebooklm_browser.session")


class SessionState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    CLOSING = "closing"
    CLOSED = "closed"


class Session:
    """A conversation with one notebook.

    ``lock`` is the per-session exclusion: ``ask``, ``reset``, ``close`` and
    the idle sweep all run while holding it. The session never shares its tab.
    """

    def __init__(
        self,
        session_id: str,
        notebook_url: str,
        provider: BrowserProvider,
        notebook_id: str | None = None,
        clock: Callable[[], float] = time.time,
        navigation_timeout: float = 30.0,
    ):
        self.id = session_id
        self.notebook_url = notebook_url
        self.notebook_id = notebook_id
        self.provider = provider
        self.lock = asyncio.Lock()
        self.tab: Tab | None = None
        self.state = SessionState.ACTIVE
        self.message_count = 0
        self._clock = clock
        self.created_at = clock()
        self.last_active = self.created_at
        self._navigation_timeout = navigation_timeout

    @property
    def is_open(self) -> bool:
        return self.state in (SessionState.ACTIVE, SessionState.IDLE)

    def idle_seconds(self, now: float | None = None) -> float:
        now = self._clock() if now is None else now
        return max(0.0, now - self.last_active)

    def refresh_state(self, idle_after: float, now: float | None = None) -> SessionState:
        """Flip between ACTIVE and IDLE based on inactivity."""
        if self.is_open:
            idle = self.idle_seconds(now) > idle_after
            self.state = SessionState.IDLE if idle else SessionState.ACTIVE
        return self.state

    async def open(self) -> None:
        """Acquire a tab and load the notebook."""
        self.tab = await self.provider.acquire_tab()
        try:
            await self._navigate()
        except BaseException:
            await self.provider.release_tab(self.tab)
            self.tab = None
            raise
        logger.info("Session %s opened on %s", self.id, self.notebook_url)

    async def ask(self, extractor, question: str, timeout: float | None = None) -> str:
        """Ask one question. The caller must hold ``lock``.

        A browser crash is recovered once (rebuild the root context only if it
        is gone, reopen the notebook in a fresh tab, ask again); a second crash
        propagates as ``BrowserCrashed``.
        """
        self._check_open()
        if self.tab is None or self.tab.closed:
            await self._reopen_tab()

        try:
            answer = await self._ask_once(extractor, question, timeout)
        except BrowserCrashed as e:
            logger.warning("Session %s: browser crashed during ask (%s), recovering once", self.id, e)
            rebuilt = await self.provider.recover(self.tab.generation if self.tab else None)
            if not rebuilt:
                logger.info("Session %s: browser is still up, replacing only this tab", self.id)
            self._check_open()
            await self._reopen_tab()
            answer = await self._ask_once(extractor, question, timeout)

        self.message_count += 1
        self.last_active = max(self.last_active, self._clock())
        if self.is_open:
            self.state = SessionState.ACTIVE
        return answer

    async def reset(self) -> None:
        """Start a fresh conversation in a new tab, keeping the same ID. Caller holds ``lock``."""
        self._check_open()
        if self.tab is not None:
            await self.provider.release_tab(self.tab)
            self.tab = None
        await self.open()
        self.message_count = 0
        self.last_active = max(self.last_active, self._clock())
        if self.is_open:
            self.state = SessionState.ACTIVE
        logger.info("Session %s reset", self.id)

    def begin_close(self) -> None:
        """Mark the session CLOSING so new asks fail fast."""
        if self.state is not SessionState.CLOSED:
            self.state = SessionState.CLOSING

    async def close(self) -> None:
        """Release the tab. Caller holds ``lock``. Idempotent."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSING
        if self.tab is not None:
            await self.provider.release_tab(self.tab)
            self.tab = None
        self.state = SessionState.CLOSED
        logger.info("Session %s closed after %d messages", self.id, self.message_count)

    def info(self, now: float | None = None) -> dict[str, Any]:
        now = self._clock() if now is None else now
        return {
            "id": self.id,
            "notebook_id": self.notebook_id,
            "notebook_url": self.notebook_url,
            "state": self.state.value,
            "message_count": self.message_count,
            "age_seconds": int(now - self.created_at),
            "idle_seconds": int(self.idle_seconds(now)),
            "busy": self.lock.locked(),
        }

    def _check_open(self) -> None:
        if not self.is_open:
            raise SessionClosed(f"Session {self.id} is {self.state.value}", session_id=self.id)

    async def _ask_once(self, extractor, question: str, timeout: float | None) -> str:
        try:
            return await extractor.ask(self.tab.page, question, timeout=timeout)
        except (asyncio.CancelledError, AnswerTimeout):
            # The tab may still be streaming; give the next ask a clean one
            await self._recycle_quietly()
            raise

    async def _recycle_quietly(self) -> None:
        if self.tab is None:
            return
        try:
            self.tab = await asyncio.shield(self.provider.recycle_tab(self.tab))
            await self._navigate()
        except (NotebookLMBrowserError, PlaywrightError) as e:
            logger.warning("Session %s: could not recycle tab: %s", self.id, e)
            self.tab = None

    async def _reopen_tab(self) -> None:
        if self.tab is not None:
            await self.provider.release_tab(self.tab)
        self.tab = None
        await self.open()

    async def _navigate(self) -> None:
        try:
            await self.tab.page.goto(
                self.notebook_url,
                wait_until="domcontentloaded",
                timeout=self._navigation_timeout * 1000,
            )
        except PlaywrightTimeoutError as e:
            raise NotebookLMBrowserError(f"Timed out loading {self.notebook_url}") from e
        except PlaywrightError as e:
            if is_browser_dead_error(e):
                raise BrowserCrashed(f"Browser closed while loading notebook: {e}") from e
            raise
        if is_login_page(self.tab.page.url):
            raise AuthExpired(f"NotebookLM redirected to the login page ({self.tab.page.url})")
