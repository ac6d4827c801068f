"""Session registry and request routing.

The orchestrator decides which session a request targets, creates sessions on
demand (gated by the auth store), rejects concurrent use of one session and
evicts idle sessions from a background sweep. Sticky selections are plain
fields here (session) or in the library (notebook), never module globals, so
independent orchestrators can coexist in one process.
"""

import asyncio
import logging
import secrets
import time
from typing import Any, Awaitable, Callable

from .auth import AuthStore
from .browser import BrowserProvider
from .config import Config
from .errors import AnswerTimeout, SessionBusy, SessionClosed, UnresolvedNotebook
from .extraction import AnswerExtractor
from .library import NotebookLibrary
from .selectors import load_selectors
from .session import Session
from .stealth import StealthTiming

logger = logging.getLogger("notebooklm_browser.session")


class Orchestrator:
    def __init__(
        self,
        config: Config,
        provider: BrowserProvider,
        auth_store: AuthStore,
        library: NotebookLibrary,
        extractor: AnswerExtractor,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.provider = provider
        self.auth_store = auth_store
        self.library = library
        self.extractor = extractor
        self.active_session_id: str | None = None
        self._sessions: dict[str, Session] = {}
        self._clock = clock
        self._sweep_task: asyncio.Task | None = None

    @classmethod
    def from_config(cls, config: Config) -> "Orchestrator":
        """Wire up the default collaborators for ``config``."""
        auth_store = AuthStore(config.auth_path, identity_cookie=config.identity_cookie)
        auth_store.load()
        library = NotebookLibrary(config.library_path)
        extractor = AnswerExtractor(config, load_selectors(config.selectors_file), StealthTiming(config))
        provider = BrowserProvider(config, auth_store=auth_store)
        return cls(config, provider, auth_store, library, extractor)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self,
        session_id: str | None = None,
        notebook: str | None = None,
        force_new: bool = False,
    ) -> Session:
        """Find or create the session a request targets.

        Session: explicit ID, then the sticky session (unless ``force_new``),
        then a new session. Notebook: explicit reference, then the active
        library notebook, else ``UnresolvedNotebook``.
        """
        if session_id:
            existing = self._live(session_id)
            if existing is not None:
                return existing
            notebook_id, url = self._resolve_notebook(notebook)
            return await self._create(session_id, notebook_id, url)

        if not force_new and self.active_session_id:
            sticky = self._live(self.active_session_id)
            if sticky is not None:
                if notebook is None:
                    return sticky
                _, url = self._resolve_notebook(notebook)
                if sticky.notebook_url == url:
                    return sticky

        notebook_id, url = self._resolve_notebook(notebook)
        return await self._create(self._new_session_id(), notebook_id, url)

    def _resolve_notebook(self, notebook: str | None) -> tuple[str | None, str]:
        if notebook:
            return self.library.resolve(notebook)
        active = self.library.get_active()
        if active is not None:
            return active.id, active.url
        raise UnresolvedNotebook()

    def _new_session_id(self) -> str:
        while True:
            session_id = secrets.token_hex(4)
            if session_id not in self._sessions:
                return session_id

    def _live(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        if session is not None and session.is_open:
            return session
        return None

    async def _create(self, session_id: str, notebook_id: str | None, url: str) -> Session:
        self.auth_store.require_valid()
        session = Session(
            session_id,
            url,
            self.provider,
            notebook_id=notebook_id,
            clock=self._clock,
            navigation_timeout=self.config.navigation_timeout,
        )
        self._sessions[session_id] = session
        try:
            async with session.lock:
                await session.open()
        except BaseException:
            session.begin_close()
            await session.close()
            self._forget(session)
            raise
        logger.debug("Registered session %s (%d live)", session_id, len(self._sessions))
        return session

    def _forget(self, session: Session) -> None:
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]
        if self.active_session_id == session.id:
            self.active_session_id = None

    # ------------------------------------------------------------------
    # Asking
    # ------------------------------------------------------------------

    async def ask(
        self,
        question: str,
        session_id: str | None = None,
        notebook: str | None = None,
        force_new: bool = False,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Ask ``question`` and make the answering session sticky."""
        if not question or not question.strip():
            raise ValueError("Question must not be empty")

        session = await self.resolve(session_id, notebook, force_new)
        try:
            answer = await self._ask_session(session, question, timeout)
        except SessionClosed:
            if session_id:
                raise
            logger.info("Session %s closed underneath the request, opening a replacement", session.id)
            session = await self.resolve(notebook=notebook or session.notebook_url, force_new=True)
            answer = await self._ask_session(session, question, timeout)

        self.active_session_id = session.id
        if session.notebook_id:
            self.library.record_use(session.notebook_id)
        return {
            "answer": answer,
            "session_id": session.id,
            "notebook_id": session.notebook_id,
            "notebook_url": session.notebook_url,
            "message_count": session.message_count,
        }

    async def _ask_session(self, session: Session, question: str, timeout: float | None) -> str:
        if session.lock.locked():
            raise SessionBusy(
                f"Session {session.id} is already answering a question",
                hint="Wait for the current answer or use another session.",
                session_id=session.id,
            )
        timeout = timeout or self.config.timeout
        async with session.lock:
            try:
                return await asyncio.wait_for(
                    session.ask(self.extractor, question, timeout=timeout),
                    timeout=timeout + self.config.navigation_timeout,
                )
            except asyncio.TimeoutError:
                raise AnswerTimeout(
                    f"Ask on session {session.id} exceeded {timeout:.0f}s",
                    session_id=session.id,
                ) from None

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def list_sessions(self) -> list[dict[str, Any]]:
        now = self._clock()
        result = []
        for session in self._sessions.values():
            session.refresh_state(self.config.idle_after, now)
            info = session.info(now)
            info["is_active"] = session.id == self.active_session_id
            result.append(info)
        return result

    def get_session(self, session_id: str) -> Session:
        session = self._live(session_id)
        if session is None:
            raise SessionClosed(f"No open session '{session_id}'", session_id=session_id)
        return session

    def select_session(self, session_id: str) -> dict[str, Any]:
        session = self.get_session(session_id)
        self.active_session_id = session.id
        return session.info()

    async def close_session(self, session_id: str) -> dict[str, Any]:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionClosed(f"No session '{session_id}'", session_id=session_id)
        session.begin_close()
        async with session.lock:
            await session.close()
        self._forget(session)
        return session.info()

    async def reset_session(self, session_id: str) -> dict[str, Any]:
        session = self.get_session(session_id)
        async with session.lock:
            await session.reset()
        return session.info()

    async def cleanup_idle(self, now: float | None = None) -> list[str]:
        """Close sessions idle longer than ``session_timeout``; return their IDs."""
        now = self._clock() if now is None else now
        evicted = []
        for session in list(self._sessions.values()):
            if not session.is_open:
                self._forget(session)
                continue
            if session.idle_seconds(now) <= self.config.session_timeout:
                session.refresh_state(self.config.idle_after, now)
                continue
            if session.lock.locked():
                continue
            async with session.lock:
                if not session.is_open or session.idle_seconds(now) <= self.config.session_timeout:
                    continue
                await session.close()
            self._forget(session)
            evicted.append(session.id)
        if evicted:
            logger.info("Idle sweep closed %d session(s): %s", len(evicted), ", ".join(evicted))
        return evicted

    async def close_all(self) -> int:
        sessions = list(self._sessions.values())
        for session in sessions:
            session.begin_close()
        for session in sessions:
            async with session.lock:
                await session.close()
            self._forget(session)
        self.active_session_id = None
        return len(sessions)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the idle sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            try:
                await self.cleanup_idle()
            except Exception:
                logger.exception("Idle sweep failed")

    async def stop(self) -> None:
        """Cancel the idle sweep."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    async def shutdown(self) -> None:
        await self.stop()
        await self.close_all()
        await self.provider.shutdown()

    # ------------------------------------------------------------------
    # Auth and health
    # ------------------------------------------------------------------

    def auth_status(self) -> dict[str, Any]:
        return self.auth_store.status()

    async def reauth(self, login: Callable[[], Awaitable[Any]]) -> dict[str, Any]:
        """Drop every session, free the browser profile and run ``login``."""
        closed = await self.close_all()
        await self.provider.shutdown()
        await login()
        self.auth_store.load()
        status = self.auth_store.status()
        status["closed_sessions"] = closed
        return status

    def health(self) -> dict[str, Any]:
        active = self.library.get_active()
        return {
            "authenticated": self.auth_store.is_valid(),
            "browser_running": self.provider.running,
            "open_tabs": self.provider.tab_count,
            "session_count": len(self._sessions),
            "max_sessions": self.config.max_sessions,
            "active_session_id": self.active_session_id,
            "active_notebook_id": active.id if active else None,
            "selector_version": self.extractor.selectors.version,
            "headless": self.config.headless,
            "timeout": self.config.timeout,
            "session_timeout": self.config.session_timeout,
        }
