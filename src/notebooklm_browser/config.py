"""Runtime configuration.

All settings come from ``NOTEBOOKLM_*`` environment variables with sensible
defaults; the CLI and the server override individual fields from their flags.
The core only ever reads a ``Config``, it never mutates one.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def default_data_dir() -> Path:
    return Path(os.environ.get("NOTEBOOKLM_DATA_DIR", str(Path.home() / ".notebooklm-browser"))).expanduser()


@dataclass(frozen=True)
class Config:
    """Settings consumed by the browser, extraction and session layers."""

    data_dir: Path = field(default_factory=default_data_dir)
    headless: bool = True
    timeout: float = 120.0  # overall deadline for one ask, seconds
    max_sessions: int = 10
    session_timeout: float = 900.0  # idle seconds before eviction
    idle_after: float = 60.0  # idle seconds before a session is reported as idle
    sweep_interval: float = 60.0

    stealth: bool = True
    typing_wpm_min: int = 160
    typing_wpm_max: int = 240
    delay_min_ms: int = 100
    delay_max_ms: int = 400

    poll_interval: float = 0.5
    stable_reads: int = 2
    element_timeout: float = 10.0
    navigation_timeout: float = 30.0

    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1280
    viewport_height: int = 900
    identity_cookie: str = "SID"
    selectors_file: Path | None = None
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        selectors_file = os.environ.get("NOTEBOOKLM_SELECTORS_FILE")
        return cls(
            data_dir=default_data_dir(),
            headless=_env_bool("NOTEBOOKLM_HEADLESS", True),
            timeout=_env_float("NOTEBOOKLM_QUERY_TIMEOUT", 120.0),
            max_sessions=_env_int("NOTEBOOKLM_MAX_SESSIONS", 10),
            session_timeout=_env_float("NOTEBOOKLM_SESSION_TIMEOUT", 900.0),
            idle_after=_env_float("NOTEBOOKLM_IDLE_AFTER", 60.0),
            sweep_interval=_env_float("NOTEBOOKLM_SWEEP_INTERVAL", 60.0),
            stealth=_env_bool("NOTEBOOKLM_STEALTH", True),
            typing_wpm_min=_env_int("NOTEBOOKLM_TYPING_WPM_MIN", 160),
            typing_wpm_max=_env_int("NOTEBOOKLM_TYPING_WPM_MAX", 240),
            delay_min_ms=_env_int("NOTEBOOKLM_DELAY_MIN_MS", 100),
            delay_max_ms=_env_int("NOTEBOOKLM_DELAY_MAX_MS", 400),
            poll_interval=_env_float("NOTEBOOKLM_POLL_INTERVAL", 0.5),
            stable_reads=_env_int("NOTEBOOKLM_STABLE_READS", 2),
            element_timeout=_env_float("NOTEBOOKLM_ELEMENT_TIMEOUT", 10.0),
            navigation_timeout=_env_float("NOTEBOOKLM_NAVIGATION_TIMEOUT", 30.0),
            user_agent=os.environ.get("NOTEBOOKLM_USER_AGENT", DEFAULT_USER_AGENT),
            viewport_width=_env_int("NOTEBOOKLM_VIEWPORT_WIDTH", 1280),
            viewport_height=_env_int("NOTEBOOKLM_VIEWPORT_HEIGHT", 900),
            identity_cookie=os.environ.get("NOTEBOOKLM_IDENTITY_COOKIE", "SID"),
            selectors_file=Path(selectors_file).expanduser() if selectors_file else None,
            debug=_env_bool("NOTEBOOKLM_DEBUG", False),
        )

    def with_overrides(self, **overrides) -> "Config":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def auth_path(self) -> Path:
        return self.data_dir / "auth.json"

    @property
    def library_path(self) -> Path:
        return self.data_dir / "library.json"

    @property
    def profile_dir(self) -> Path:
        return self.data_dir / "chrome-profile"


LOGGER_NAMES = (
    "notebooklm_browser.mcp",
    "notebooklm_browser.browser",
    "notebooklm_browser.session",
    "notebooklm_browser.extract",
    "notebooklm_browser.auth",
    "notebooklm_browser.library",
)


def configure_logging(debug: bool = False) -> None:
    """Send package logs to stderr; DEBUG for every package logger when ``debug``."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if not debug:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    for name in LOGGER_NAMES:
        pkg_logger = logging.getLogger(name)
        pkg_logger.setLevel(logging.DEBUG)
        pkg_logger.addHandler(handler)
        pkg_logger.propagate = False
