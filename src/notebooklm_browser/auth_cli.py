#!/usr/bin/env python3
"""Authentication commands for NotebookLM Browser MCP.

Two ways to produce credentials:

1. BROWSER MODE (``auth setup``): opens a visible Chromium window on the
   persistent profile, waits for you to log in to Google, then captures the
   cookies. The profile keeps the login, so later headless runs reuse it.

2. FILE MODE (``auth import``): reads a ``cookie:`` header value copied from
   Chrome DevTools into a text file.

Credentials are stored in ``~/.notebooklm-browser/auth.json`` (owner-only).
"""

import asyncio
import json
import logging
import shutil
import sys
import time
from pathlib import Path

from playwright.async_api import async_playwright

from .auth import (
    NOTEBOOKLM_URL,
    REQUIRED_COOKIES,
    AuthStore,
    check_if_logged_in_by_url,
    parse_cookie_header,
    probe_session,
    tokens_from_header,
    validate_cookies,
)
from .browser import chromium_launch_args, is_profile_locked
from .config import Config
from .errors import AuthInvalid, NotebookLMBrowserError

logger = logging.getLogger("notebooklm_browser.auth")

LOGIN_POLL_INTERVAL = 2.0


async def run_browser_login(
    config: Config,
    store: AuthStore,
    timeout: float = 300.0,
    playwright_factory=async_playwright,
) -> int:
    """Open a visible browser, wait for login and save the cookies.

    Returns the number of tokens saved.
    """
    profile_dir = config.profile_dir
    profile_dir.mkdir(parents=True, exist_ok=True)
    if is_profile_locked(profile_dir):
        raise NotebookLMBrowserError(
            f"Browser profile {profile_dir} is already in use",
            hint="Close the other NotebookLM browser window (or stop the MCP server) and try again.",
        )

    async with playwright_factory() as playwright:
        context = await playwright.chromium.launch_persistent_context(
            user_data_dir=str(profile_dir),
            headless=False,
            user_agent=config.user_agent,
            viewport={"width": config.viewport_width, "height": config.viewport_height},
            args=chromium_launch_args(config),
            ignore_default_args=["--enable-automation"],
        )
        try:
            page = context.pages[0] if context.pages else await context.new_page()
            await page.goto(NOTEBOOKLM_URL, wait_until="domcontentloaded")

            deadline = time.monotonic() + timeout
            while True:
                cookies = await context.cookies()
                names = {c["name"]: c.get("value", "") for c in cookies}
                if check_if_logged_in_by_url(page.url) and validate_cookies(names):
                    break
                if time.monotonic() >= deadline:
                    raise AuthInvalid(
                        f"Login not completed within {timeout:.0f}s",
                        hint="Run `notebooklm-browser auth setup` again and finish the Google login.",
                    )
                await asyncio.sleep(LOGIN_POLL_INTERVAL)

            return store.capture(cookies)
        finally:
            await context.close()


def run_file_cookie_entry(store: AuthStore, cookie_file: str | None = None) -> int:
    """Read a cookie header from a file and save it. Returns the token count."""
    if not cookie_file:
        print("Follow these steps to extract and save your cookies:")
        print()
        print("  1. Open Chrome and go to: https://notebooklm.google.com")
        print("  2. Make sure you're logged in")
        print("  3. Press F12 (or Cmd+Option+I on Mac) to open DevTools")
        print("  4. Click the 'Network' tab and reload the page")
        print("  5. Click the first request to notebooklm.google.com")
        print("  6. Under 'Request Headers', right-click the 'cookie' value and copy it")
        print("  7. Paste it into a text file and save")
        print()
        try:
            cookie_file = input("Enter the path to your cookie file: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nCancelled.")
            return 0
        if not cookie_file:
            raise AuthInvalid("No cookie file path provided.", hint=None)

    path = Path(cookie_file).expanduser()
    try:
        raw = path.read_text()
    except FileNotFoundError:
        raise AuthInvalid(f"File not found: {path}", hint=None) from None

    # Strip comment lines (lines starting with #)
    lines = [line.strip() for line in raw.splitlines()]
    cookie_string = " ".join(line for line in lines if line and not line.startswith("#"))
    if cookie_string.lower().startswith("cookie:"):
        cookie_string = cookie_string[len("cookie:"):].strip()

    cookies = parse_cookie_header(cookie_string)
    if not cookies:
        raise AuthInvalid(
            "Could not parse any cookies from the file.",
            hint="Expected format: SID=xxx; HSID=xxx; SSID=xxx; ...",
        )
    if not validate_cookies(cookies):
        print("WARNING: Some required cookies are missing!")
        print(f"Required: {REQUIRED_COOKIES}")
        print(f"Found: {list(cookies.keys())}")
        print("Continuing anyway...")

    tokens = tokens_from_header(cookie_string)
    store.save(tokens)
    return len(tokens)


def print_status(store: AuthStore, config: Config, check: bool = False) -> int:
    status = store.status()
    if check and status["identity_present"]:
        try:
            status["live_check"] = "ok" if probe_session(store, config.user_agent) else "redirected_to_login"
        except Exception as e:
            status["live_check"] = f"failed: {e}"
    print(json.dumps(status, indent=2))
    return 0 if status["authenticated"] else 1


def logout(store: AuthStore, config: Config, purge_profile: bool = False) -> int:
    removed = store.clear()
    print("Removed saved credentials." if removed else "No saved credentials found.")
    if purge_profile and config.profile_dir.exists():
        if is_profile_locked(config.profile_dir):
            print("Browser profile is in use; close the browser before purging it.")
            return 1
        shutil.rmtree(config.profile_dir)
        print(f"Deleted browser profile {config.profile_dir}")
    return 0


async def setup(store: AuthStore, config: Config, timeout: float = 300.0) -> int:
    print("NotebookLM Browser Authentication")
    print("=" * 40)
    print()
    print("A browser window will open. Log in to your Google account there.")
    print(f"Waiting up to {timeout:.0f}s for the login to complete...")
    print("(Press Ctrl+C to cancel)")
    print()
    count = await run_browser_login(config, store, timeout=timeout)
    print()
    print("=" * 40)
    print("SUCCESS!")
    print("=" * 40)
    print(f"Cookies saved: {count}")
    print(f"Cache location: {store.path}")
    print()
    print("NEXT STEPS:")
    print("  notebooklm-browser notebook add <notebook-url> --name <name>")
    print("  notebooklm-browser ask \"What is this notebook about?\"")
    return 0


def main() -> int:
    """Entry point for ``notebooklm-browser-auth``: the ``auth`` command group."""
    from .cli import main as cli_main

    return cli_main(["auth", *sys.argv[1:]])


if __name__ == "__main__":
    sys.exit(main())
