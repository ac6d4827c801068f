"""Human-plausible timing for typing and clicks.

Only timing is simulated: keystrokes are sent one at a time with a delay
derived from a words-per-minute range, and actions are separated by a short
random pause.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable

from .config import Config

CHARS_PER_WORD = 5


class StealthTiming:
    """Randomized delays drawn from the configured bounds."""

    def __init__(
        self,
        config: Config,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if config.typing_wpm_min <= 0 or config.typing_wpm_max < config.typing_wpm_min:
            raise ValueError(
                f"Invalid typing speed range {config.typing_wpm_min}-{config.typing_wpm_max} WPM"
            )
        if config.delay_min_ms < 0 or config.delay_max_ms < config.delay_min_ms:
            raise ValueError(f"Invalid delay range {config.delay_min_ms}-{config.delay_max_ms} ms")
        self.enabled = config.stealth
        self.wpm_min = config.typing_wpm_min
        self.wpm_max = config.typing_wpm_max
        self.delay_min = config.delay_min_ms / 1000.0
        self.delay_max = config.delay_max_ms / 1000.0
        self._rng = rng or random.Random()
        self._sleep = sleep

    def keystroke_delay(self) -> float:
        """Seconds to wait after one keystroke."""
        if not self.enabled:
            return 0.0
        wpm = self._rng.uniform(self.wpm_min, self.wpm_max)
        base = 60.0 / (wpm * CHARS_PER_WORD)
        # +/-20% jitter, clamped to the range the WPM bounds allow
        jittered = base * self._rng.uniform(0.8, 1.2)
        fastest = 60.0 / (self.wpm_max * CHARS_PER_WORD)
        slowest = 60.0 / (self.wpm_min * CHARS_PER_WORD)
        return min(max(jittered, fastest), slowest)

    def action_delay(self) -> float:
        """Seconds to wait between two UI actions."""
        if not self.enabled:
            return 0.0
        return self._rng.uniform(self.delay_min, self.delay_max)

    async def pause(self) -> None:
        delay = self.action_delay()
        if delay:
            await self._sleep(delay)

    async def type_text(self, keyboard, text: str) -> None:
        """Send ``text`` one keystroke at a time through a Playwright keyboard."""
        for char in text:
            if char == "\n":
                # Enter would submit the query early
                await keyboard.press("Shift+Enter")
            else:
                await keyboard.type(char)
            delay = self.keystroke_delay()
            if delay:
                await self._sleep(delay)
