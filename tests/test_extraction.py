import pytest
from playwright.async_api import Error as PlaywrightError

from notebooklm_browser.errors import AnswerTimeout, BrowserCrashed, ElementNotFound
from notebooklm_browser.extraction import (
    AnswerExtractor,
    ExtractionState,
    PendingAnswer,
    poll_until_stable,
)
from notebooklm_browser.selectors import DEFAULT_SELECTORS
from notebooklm_browser.stealth import StealthTiming

from conftest import FakeClock, FakeKeyboard


class FakeElement:
    def __init__(self, texts=("",), visible=True):
        self._texts = list(texts)
        self.visible = visible
        self.clicked = False

    async def is_visible(self):
        return self.visible

    async def inner_text(self):
        # Streams through the texts, then sticks on the last one
        if len(self._texts) > 1:
            return self._texts.pop(0)
        return self._texts[0]

    async def click(self):
        self.clicked = True


class SubmitKeyboard(FakeKeyboard):
    def __init__(self, page):
        super().__init__()
        self._page = page

    async def press(self, key):
        await super().press(key)
        if key == "Enter":
            self._page.submit()


class ChatPage:
    """Fake NotebookLM chat tab: one input box, a thinking phase, a streamed answer."""

    def __init__(self, stream, existing_answers=0, has_input=True, thinking_checks=0):
        self.keyboard = SubmitKeyboard(self)
        self.input = FakeElement() if has_input else None
        self.answers = [FakeElement(["old answer"]) for _ in range(existing_answers)]
        self.stream = stream
        self.thinking_checks = thinking_checks
        self.submitted = False

    def submit(self):
        self.submitted = True
        self.answers.append(FakeElement(self.stream))

    async def query_selector(self, selector):
        if selector == DEFAULT_SELECTORS.query_input[0]:
            return self.input
        if selector == DEFAULT_SELECTORS.thinking_indicator[0] and self.submitted and self.thinking_checks:
            self.thinking_checks -= 1
            return FakeElement()
        return None

    async def query_selector_all(self, selector):
        if selector == DEFAULT_SELECTORS.answer_region[0]:
            return list(self.answers)
        return []


def make_sleep(clock):
    async def sleep(seconds):
        clock.advance(seconds)
    return sleep


@pytest.fixture
def fake_clock():
    return FakeClock(0.0)


@pytest.fixture
def extractor(config, fake_clock):
    return AnswerExtractor(
        config,
        DEFAULT_SELECTORS,
        StealthTiming(config),
        clock=fake_clock,
        sleep=make_sleep(fake_clock),
    )


class TestPendingAnswer:
    def test_states(self):
        pending = PendingAnswer(stable_reads=2)
        assert pending.observe("") is ExtractionState.STREAMING
        assert pending.observe("A") is ExtractionState.STABILIZING
        assert pending.observe("AB") is ExtractionState.STABILIZING
        assert pending.observe("AB") is ExtractionState.SETTLED
        assert pending.text == "AB"

    def test_empty_read_resets_stability(self):
        pending = PendingAnswer(stable_reads=2)
        pending.observe("A")
        pending.observe("")
        assert pending.observe("A") is ExtractionState.STABILIZING

    def test_whitespace_only_counts_as_empty(self):
        pending = PendingAnswer()
        assert pending.observe("   \n") is ExtractionState.STREAMING


class TestPollUntilStable:
    @pytest.mark.asyncio
    async def test_settles_on_first_repeated_read(self, fake_clock):
        """Streaming A, AB, ABC, ABC settles on the fourth poll with ABC."""
        reads = iter(["A", "AB", "ABC", "ABC", "ABCD"])

        async def read():
            return next(reads)

        pending = PendingAnswer(stable_reads=2)
        text = await poll_until_stable(
            read, pending, deadline=100.0, interval=0.5, clock=fake_clock, sleep=make_sleep(fake_clock)
        )
        assert text == "ABC"
        assert pending.polls == 4

    @pytest.mark.asyncio
    async def test_timeout_carries_partial_text(self, fake_clock):
        counter = iter(range(1000))

        async def read():
            return "x" * (next(counter) + 1)

        with pytest.raises(AnswerTimeout) as excinfo:
            await poll_until_stable(
                read, PendingAnswer(), deadline=2.0, interval=0.5, clock=fake_clock, sleep=make_sleep(fake_clock)
            )
        assert excinfo.value.kind == "answer_timeout"
        assert excinfo.value.partial_text.startswith("xxxx")
        assert excinfo.value.to_dict()["partial_text"] == excinfo.value.partial_text


class TestAnswerExtractor:
    @pytest.mark.asyncio
    async def test_ask_returns_settled_answer(self, extractor):
        page = ChatPage(["Hel", "Hello", "Hello world", "Hello world"], thinking_checks=2)
        answer = await extractor.ask(page, "Hi?")

        assert answer == "Hello world"
        assert page.input.clicked
        assert page.keyboard.typed == ["H", "i", "?"]
        assert page.keyboard.pressed == ["Enter"]

    @pytest.mark.asyncio
    async def test_ignores_earlier_answers(self, extractor):
        page = ChatPage(["new answer"], existing_answers=2)
        assert await extractor.ask(page, "Follow up") == "new answer"

    @pytest.mark.asyncio
    async def test_missing_input_raises_element_not_found(self, extractor):
        page = ChatPage(["unused"], has_input=False)
        with pytest.raises(ElementNotFound) as excinfo:
            await extractor.ask(page, "Hi?")
        data = excinfo.value.to_dict()
        assert data["error_kind"] == "element_not_found"
        assert data["selector_version"] == DEFAULT_SELECTORS.version
        assert data["selectors"] == list(DEFAULT_SELECTORS.query_input)

    @pytest.mark.asyncio
    async def test_never_stable_answer_times_out(self, extractor):
        page = ChatPage([f"chunk {i}" for i in range(10000)])
        with pytest.raises(AnswerTimeout) as excinfo:
            await extractor.ask(page, "Hi?", timeout=1.0)
        assert excinfo.value.partial_text.startswith("chunk")

    @pytest.mark.asyncio
    async def test_endless_thinking_times_out(self, extractor):
        page = ChatPage(["never"], thinking_checks=10**6)
        with pytest.raises(AnswerTimeout):
            await extractor.ask(page, "Hi?", timeout=1.0)

    @pytest.mark.asyncio
    async def test_closed_browser_becomes_browser_crashed(self, extractor):
        page = ChatPage(["unused"])

        async def dead(selector):
            raise PlaywrightError("Target page, context or browser has been closed")

        page.query_selector = dead
        with pytest.raises(BrowserCrashed):
            await extractor.ask(page, "Hi?")
