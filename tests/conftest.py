import asyncio

import pytest

from notebooklm_browser.auth import AuthStore, AuthToken
from notebooklm_browser.browser import Tab
from notebooklm_browser.config import Config
from notebooklm_browser.errors import ResourceExhausted
from notebooklm_browser.library import NotebookLibrary
from notebooklm_browser.orchestrator import Orchestrator
from notebooklm_browser.selectors import DEFAULT_SELECTORS

NOTEBOOK_A = "https://notebooklm.google.com/notebook/aaaa-1111"
NOTEBOOK_B = "https://notebooklm.google.com/notebook/bbbb-2222"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeKeyboard:
    def __init__(self):
        self.typed = []
        self.pressed = []

    async def type(self, text):
        self.typed.append(text)

    async def press(self, key):
        self.pressed.append(key)


class FakePage:
    """Just enough of a Playwright Page for session and provider code."""

    def __init__(self):
        self.url = "about:blank"
        self.keyboard = FakeKeyboard()
        self.visits = []
        self._closed = False
        self.redirect_to = None

    def set_default_timeout(self, ms):
        self.default_timeout = ms

    async def goto(self, url, wait_until=None, timeout=None):
        self.visits.append(url)
        self.url = self.redirect_to or url

    def is_closed(self):
        return self._closed

    async def close(self):
        self._closed = True


class FakeProvider:
    """In-memory stand-in for BrowserProvider."""

    def __init__(self, max_tabs: int = 10):
        self.max_tabs = max_tabs
        self.generation = 1
        self.tabs = {}
        self.acquired = 0
        self.recovered = []
        self.running = True
        self.shut_down = False

    @property
    def tab_count(self):
        return len(self.tabs)

    async def acquire_tab(self):
        if len(self.tabs) >= self.max_tabs:
            raise ResourceExhausted("too many tabs", max_sessions=self.max_tabs)
        tab = Tab(page=FakePage(), generation=self.generation)
        self.tabs[tab.id] = tab
        self.acquired += 1
        return tab

    async def release_tab(self, tab):
        self.tabs.pop(tab.id, None)
        if not tab.closed:
            await tab.page.close()

    async def recycle_tab(self, tab):
        await self.release_tab(tab)
        return await self.acquire_tab()

    async def recover(self, stale_generation=None):
        self.recovered.append(stale_generation)
        self.generation += 1
        return True

    async def shutdown(self):
        for tab in list(self.tabs.values()):
            await self.release_tab(tab)
        self.shut_down = True
        self.running = False


class FakeExtractor:
    """Answers ``answer N`` for the Nth question, optionally blocking on ``gate``."""

    def __init__(self):
        self.selectors = DEFAULT_SELECTORS
        self.questions = []
        self.gate: asyncio.Event | None = None
        self.errors = []

    async def ask(self, page, question, timeout=None):
        self.questions.append((page, question))
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        return f"answer {len(self.questions)}"


def save_valid_auth(store: AuthStore, expires: float = -1) -> None:
    store.save([
        AuthToken(name="SID", value="sid-value", expires=expires),
        AuthToken(name="HSID", value="hsid-value", expires=expires),
    ])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return Config(
        data_dir=tmp_path,
        stealth=False,
        poll_interval=0.01,
        element_timeout=0.05,
        timeout=5.0,
        navigation_timeout=5.0,
    )


@pytest.fixture
def auth_store(config, clock):
    store = AuthStore(config.auth_path, clock=clock)
    save_valid_auth(store)
    return store


@pytest.fixture
def library(config, clock):
    lib = NotebookLibrary(config.library_path, clock=clock)
    lib.add(NOTEBOOK_A, "Research Notes")
    lib.add(NOTEBOOK_B, "Product Docs")
    return lib


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def orchestrator(config, provider, auth_store, library, extractor, clock):
    return Orchestrator(config, provider, auth_store, library, extractor, clock=clock)
