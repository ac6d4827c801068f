"""Ask a question in a NotebookLM tab and read back the settled answer.

NotebookLM streams answers token by token into the DOM, so a single read
would capture a partial answer. The newest answer element is polled at a
fixed interval and hashed; the answer is settled once ``stable_reads``
consecutive non-empty reads hash identically.
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError

from .browser import is_browser_dead_error
from .config import Config
from .errors import AnswerTimeout, BrowserCrashed, ElementNotFound
from .selectors import SelectorTable
from .stealth import StealthTiming

logger = logging.getLogger("notebooklm_browser.extract")


class ExtractionState(str, Enum):
    STREAMING = "streaming"  # nothing readable yet
    STABILIZING = "stabilizing"  # text present, waiting for identical reads
    SETTLED = "settled"


@dataclass
class PendingAnswer:
    """Debounce state for one ``ask`` call; never persisted."""

    stable_reads: int = 2
    text: str = ""
    last_hash: str | None = None
    stable_count: int = 0
    polls: int = 0
    state: ExtractionState = ExtractionState.STREAMING

    def observe(self, text: str) -> ExtractionState:
        """Feed one poll result and return the new state."""
        self.polls += 1
        text = (text or "").strip()
        if not text:
            self.last_hash = None
            self.stable_count = 0
            self.state = ExtractionState.STREAMING
            return self.state

        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        if digest == self.last_hash:
            self.stable_count += 1
        else:
            self.last_hash = digest
            self.stable_count = 1
            self.text = text

        if self.stable_count >= self.stable_reads:
            self.state = ExtractionState.SETTLED
        else:
            self.state = ExtractionState.STABILIZING
        return self.state


async def poll_until_stable(
    read: Callable[[], Awaitable[str]],
    pending: PendingAnswer,
    deadline: float,
    interval: float = 0.5,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> str:
    """Poll ``read`` until ``pending`` settles or ``deadline`` passes."""
    while True:
        text = await read()
        if pending.observe(text) is ExtractionState.SETTLED:
            logger.debug("Answer settled after %d polls (%d chars)", pending.polls, len(pending.text))
            return pending.text
        if clock() >= deadline:
            raise AnswerTimeout(
                f"Answer did not stabilize before the deadline ({pending.polls} polls)",
                partial_text=pending.text,
            )
        await sleep(interval)


class AnswerExtractor:
    """Drives the chat input of one tab and returns the settled answer text."""

    def __init__(
        self,
        config: Config,
        selectors: SelectorTable,
        stealth: StealthTiming,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.selectors = selectors
        self.stealth = stealth
        self._clock = clock
        self._sleep = sleep

    async def ask(self, page, question: str, timeout: float | None = None) -> str:
        """Submit ``question`` in ``page`` and return the settled answer.

        Raises:
            ElementNotFound: the query input never appeared
            AnswerTimeout: no settled answer before the deadline (carries partial text)
            BrowserCrashed: the page or browser died mid-operation
        """
        deadline = self._clock() + (timeout if timeout is not None else self.config.timeout)
        try:
            return await self._ask(page, question, deadline)
        except PlaywrightError as e:
            if is_browser_dead_error(e):
                raise BrowserCrashed(f"Browser closed during ask: {e}") from e
            raise

    async def _ask(self, page, question: str, deadline: float) -> str:
        input_deadline = min(deadline, self._clock() + self.config.element_timeout)
        field, selector = await self._find_first(page, self.selectors.query_input, input_deadline)
        if field is None:
            raise ElementNotFound(
                f"Query input not found within {self.config.element_timeout:.0f}s",
                hint="The NotebookLM UI may have changed; update the selector table.",
                selectors=list(self.selectors.query_input),
                selector_version=self.selectors.version,
            )
        logger.debug("Using query input %s", selector)

        previous_count = len(await self._answer_elements(page))

        await field.click()
        await self.stealth.pause()
        await self.stealth.type_text(page.keyboard, question)
        await self.stealth.pause()
        await page.keyboard.press("Enter")
        logger.debug("Submitted question (%d chars), %d earlier answers", len(question), previous_count)

        await self._wait_thinking_done(page, deadline)

        async def read_latest() -> str:
            if await self._is_thinking(page):
                return ""
            elements = await self._answer_elements(page)
            if len(elements) <= previous_count:
                return ""
            return await elements[-1].inner_text()

        pending = PendingAnswer(stable_reads=self.config.stable_reads)
        return await poll_until_stable(
            read_latest,
            pending,
            deadline,
            interval=self.config.poll_interval,
            clock=self._clock,
            sleep=self._sleep,
        )

    async def _find_first(self, page, candidates: tuple[str, ...], deadline: float):
        while True:
            for selector in candidates:
                element = await page.query_selector(selector)
                if element is not None and await element.is_visible():
                    return element, selector
            if self._clock() >= deadline:
                return None, None
            await self._sleep(self.config.poll_interval)

    async def _answer_elements(self, page) -> list:
        for selector in self.selectors.answer_region:
            elements = await page.query_selector_all(selector)
            if elements:
                return elements
        return []

    async def _is_thinking(self, page) -> bool:
        for selector in self.selectors.thinking_indicator:
            element = await page.query_selector(selector)
            if element is not None and await element.is_visible():
                return True
        return False

    async def _wait_thinking_done(self, page, deadline: float) -> None:
        while await self._is_thinking(page):
            if self._clock() >= deadline:
                raise AnswerTimeout("NotebookLM was still thinking when the deadline passed")
            await self._sleep(self.config.poll_interval)
