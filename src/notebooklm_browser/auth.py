"""Authentication state for NotebookLM.

Credentials are the Google cookies of a logged-in browser profile. They are
captured once (interactive login or cookie-file import), persisted to
``auth.json`` as a JSON array of tokens, and injected into the automated
browser on start.

The store never logs in by itself. ``is_valid`` is a pure check over the
loaded tokens and the clock and must be consulted before every new session.
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx

from .errors import AuthExpired, AuthInvalid
from .storage import read_json, write_json_atomic

logger = logging.getLogger("notebooklm_browser.auth")

NOTEBOOKLM_URL = "https://notebooklm.google.com/"
GOOGLE_COOKIE_DOMAIN = ".google.com"

# Tokens that need to be present for auth to work
REQUIRED_COOKIES = ["SID", "HSID", "SSID", "APISID", "SAPISID"]


@dataclass
class AuthToken:
    """One persisted credential cookie."""

    name: str
    value: str
    expires: float = -1  # epoch seconds, <= 0 for browser-session cookies
    domain: str = GOOGLE_COOKIE_DOMAIN
    path: str = "/"
    secure: bool = True
    http_only: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "value": self.value,
            "expires": self.expires,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuthToken":
        return cls(
            name=data["name"],
            value=data["value"],
            expires=float(data.get("expires", -1)),
            domain=data.get("domain", GOOGLE_COOKIE_DOMAIN),
            path=data.get("path", "/"),
            secure=bool(data.get("secure", True)),
            http_only=bool(data.get("httpOnly", False)),
        )

    def to_playwright(self) -> dict:
        """Render as a cookie dict accepted by ``BrowserContext.add_cookies``."""
        cookie = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
        }
        if self.expires > 0:
            cookie["expires"] = self.expires
        return cookie


class AuthStore:
    """Loads, validates and atomically persists the auth token set."""

    def __init__(
        self,
        path: Path,
        identity_cookie: str = "SID",
        clock: Callable[[], float] = time.time,
    ):
        self.path = path
        self.identity_cookie = identity_cookie
        self._clock = clock
        self._tokens: dict[str, AuthToken] = {}
        self._saved_at: float | None = None
        self._write_lock = threading.Lock()

    @property
    def tokens(self) -> dict[str, AuthToken]:
        return dict(self._tokens)

    def load(self) -> None:
        """Read persisted tokens. A missing file means "no credentials yet"."""
        try:
            data = read_json(self.path)
        except ValueError as e:
            raise AuthInvalid(f"Auth file {self.path} is corrupt: {e}") from e
        if data is None:
            self._tokens = {}
            self._saved_at = None
            return
        if not isinstance(data, list):
            raise AuthInvalid(f"Auth file {self.path} must contain a JSON array of tokens")
        try:
            tokens = [AuthToken.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise AuthInvalid(f"Auth file {self.path} has a malformed token: {e}") from e
        self._tokens = {t.name: t for t in tokens}
        self._saved_at = self.path.stat().st_mtime
        logger.debug("Loaded %d auth tokens from %s", len(self._tokens), self.path)

    def save(self, tokens: list[AuthToken]) -> None:
        """Replace the token set and persist it with owner-only permissions."""
        with self._write_lock:
            write_json_atomic(self.path, [t.to_dict() for t in tokens], mode=0o600)
            self._tokens = {t.name: t for t in tokens}
            self._saved_at = self._clock()
        logger.info("Saved %d auth tokens to %s", len(tokens), self.path)

    def capture(self, cookies: list[dict]) -> int:
        """Persist cookies captured from an authenticated browser context.

        Returns the number of tokens saved.
        """
        tokens = [
            AuthToken(
                name=c["name"],
                value=c.get("value", ""),
                expires=float(c.get("expires", -1)),
                domain=c.get("domain", GOOGLE_COOKIE_DOMAIN),
                path=c.get("path", "/"),
                secure=bool(c.get("secure", True)),
                http_only=bool(c.get("httpOnly", False)),
            )
            for c in cookies
            if c.get("name") and "google.com" in c.get("domain", GOOGLE_COOKIE_DOMAIN)
        ]
        self.save(tokens)
        return len(tokens)

    def clear(self) -> bool:
        """Forget all tokens and delete the auth file. Returns True if a file was removed."""
        with self._write_lock:
            self._tokens = {}
            self._saved_at = None
            if self.path.exists():
                self.path.unlink()
                return True
        return False

    def is_valid(self, now: float | None = None) -> bool:
        """True iff the identity token exists and has not expired."""
        token = self._tokens.get(self.identity_cookie)
        if token is None:
            return False
        if token.expires <= 0:
            return True
        now = self._clock() if now is None else now
        return token.expires > now

    def require_valid(self, now: float | None = None) -> None:
        """Raise ``AuthInvalid``/``AuthExpired`` unless ``is_valid``."""
        if self.is_valid(now):
            return
        if self.identity_cookie not in self._tokens:
            raise AuthInvalid(f"Not authenticated: no '{self.identity_cookie}' cookie stored at {self.path}.")
        raise AuthExpired(f"Authentication expired: '{self.identity_cookie}' cookie is past its expiry.")

    def playwright_cookies(self) -> list[dict]:
        return [t.to_playwright() for t in self._tokens.values()]

    def status(self, now: float | None = None) -> dict[str, Any]:
        now = self._clock() if now is None else now
        identity = self._tokens.get(self.identity_cookie)
        expires_in = None
        if identity is not None and identity.expires > 0:
            expires_in = int(identity.expires - now)
        return {
            "authenticated": self.is_valid(now),
            "auth_file": str(self.path),
            "token_count": len(self._tokens),
            "identity_cookie": self.identity_cookie,
            "identity_present": identity is not None,
            "expires_in_seconds": expires_in,
            "saved_at": self._saved_at,
            "missing_cookies": [c for c in REQUIRED_COOKIES if c not in self._tokens],
        }


def parse_cookie_header(cookie_string: str) -> dict[str, str]:
    """Parse ``key=value; key=value`` cookie header text."""
    cookies = {}
    for cookie in cookie_string.split(";"):
        cookie = cookie.strip()
        if "=" in cookie:
            key, value = cookie.split("=", 1)
            cookies[key.strip()] = value.strip()
    return cookies


def tokens_from_header(cookie_string: str, max_age: float = 14 * 24 * 3600, now: float | None = None) -> list[AuthToken]:
    """Build tokens from an exported cookie header.

    Header exports carry no expiry, so each token is given ``max_age`` seconds.
    """
    now = time.time() if now is None else now
    return [
        AuthToken(name=name, value=value, expires=now + max_age)
        for name, value in parse_cookie_header(cookie_string).items()
    ]


def validate_cookies(cookies: dict[str, str]) -> bool:
    """Check if required cookies are present."""
    for required in REQUIRED_COOKIES:
        if required not in cookies:
            return False
    return True


def is_login_page(url: str) -> bool:
    return "accounts.google.com" in url


def check_if_logged_in_by_url(url: str) -> bool:
    """Check login status by URL.

    If NotebookLM redirects to accounts.google.com, user is not logged in.
    If URL stays on notebooklm.google.com, user is authenticated.
    """
    if is_login_page(url):
        return False
    if "notebooklm.google.com" in url:
        return True
    return False


def probe_session(store: AuthStore, user_agent: str, timeout: float = 15.0) -> bool:
    """Fetch the NotebookLM homepage with the stored cookies.

    Returns True when the request stays on NotebookLM, False when it is
    redirected to the Google login page.
    """
    cookie_header = "; ".join(f"{t.name}={t.value}" for t in store.tokens.values())
    headers = {"Cookie": cookie_header, "User-Agent": user_agent}
    with httpx.Client(headers=headers, follow_redirects=True, timeout=timeout) as client:
        response = client.get(NOTEBOOKLM_URL)
        logger.debug("Auth probe landed on %s (HTTP %s)", response.url, response.status_code)
        return check_if_logged_in_by_url(str(response.url))
