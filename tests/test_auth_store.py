import json
import os
import stat
from unittest.mock import MagicMock, patch

import pytest

from notebooklm_browser.auth import (
    AuthStore,
    AuthToken,
    check_if_logged_in_by_url,
    parse_cookie_header,
    probe_session,
    tokens_from_header,
    validate_cookies,
)
from notebooklm_browser.errors import AuthExpired, AuthInvalid

from conftest import FakeClock, save_valid_auth


@pytest.fixture
def store(tmp_path):
    return AuthStore(tmp_path / "auth.json", clock=FakeClock(1000.0))


class TestAuthStoreValidity:
    def test_missing_file_is_unauthenticated(self, store):
        """No auth file yet: empty state, not an error."""
        store.load()
        assert store.tokens == {}
        assert store.is_valid() is False

    def test_expiry_boundary(self, store):
        """Valid one second before expiry, invalid one second after."""
        save_valid_auth(store, expires=5000.0)
        assert store.is_valid(now=4999.0) is True
        assert store.is_valid(now=5001.0) is False

    def test_session_cookie_never_expires(self, store):
        save_valid_auth(store, expires=-1)
        assert store.is_valid(now=10**12) is True

    def test_missing_identity_cookie(self, store):
        store.save([AuthToken(name="HSID", value="x")])
        assert store.is_valid() is False

    def test_require_valid_error_kinds(self, store):
        with pytest.raises(AuthInvalid) as excinfo:
            store.require_valid()
        assert excinfo.value.kind == "auth_invalid"
        assert excinfo.value.hint

        save_valid_auth(store, expires=500.0)
        with pytest.raises(AuthExpired) as excinfo:
            store.require_valid()
        assert excinfo.value.kind == "auth_expired"


class TestAuthStorePersistence:
    def test_save_writes_owner_only_json_array(self, store):
        save_valid_auth(store)
        mode = stat.S_IMODE(os.stat(store.path).st_mode)
        assert mode == 0o600

        data = json.loads(store.path.read_text())
        assert isinstance(data, list)
        assert {item["name"] for item in data} == {"SID", "HSID"}
        assert data[0]["httpOnly"] is False

    def test_load_round_trip(self, store, tmp_path):
        save_valid_auth(store, expires=2000.0)
        reloaded = AuthStore(tmp_path / "auth.json")
        reloaded.load()
        assert reloaded.tokens["SID"].value == "sid-value"
        assert reloaded.tokens["SID"].expires == 2000.0

    def test_no_temp_files_left_behind(self, store, tmp_path):
        save_valid_auth(store)
        save_valid_auth(store)
        assert [p.name for p in tmp_path.iterdir()] == ["auth.json"]

    def test_corrupt_file_raises_auth_invalid(self, store):
        store.path.write_text("{not json")
        with pytest.raises(AuthInvalid):
            store.load()

    def test_non_array_file_raises_auth_invalid(self, store):
        store.path.write_text(json.dumps({"SID": "x"}))
        with pytest.raises(AuthInvalid):
            store.load()

    def test_clear(self, store):
        save_valid_auth(store)
        assert store.clear() is True
        assert not store.path.exists()
        assert store.is_valid() is False
        assert store.clear() is False

    def test_capture_keeps_google_cookies_only(self, store):
        count = store.capture([
            {"name": "SID", "value": "a", "domain": ".google.com", "expires": 3000.0},
            {"name": "OSID", "value": "b", "domain": "notebooklm.google.com"},
            {"name": "tracker", "value": "c", "domain": ".example.com"},
        ])
        assert count == 2
        assert set(store.tokens) == {"SID", "OSID"}
        assert store.is_valid()

    def test_playwright_cookies_omit_session_expiry(self, store):
        store.save([
            AuthToken(name="SID", value="a", expires=-1),
            AuthToken(name="HSID", value="b", expires=3000.0),
        ])
        cookies = {c["name"]: c for c in store.playwright_cookies()}
        assert "expires" not in cookies["SID"]
        assert cookies["HSID"]["expires"] == 3000.0

    def test_status(self, store):
        save_valid_auth(store, expires=1600.0)
        status = store.status()
        assert status["authenticated"] is True
        assert status["identity_present"] is True
        assert status["expires_in_seconds"] == 600
        assert "SSID" in status["missing_cookies"]


class TestCookieHelpers:
    def test_parse_cookie_header(self):
        cookies = parse_cookie_header("SID=abc; HSID=def=ghi;  junk ; SSID=")
        assert cookies == {"SID": "abc", "HSID": "def=ghi", "SSID": ""}

    def test_tokens_from_header_get_max_age(self):
        tokens = tokens_from_header("SID=a; HSID=b", max_age=100, now=1000.0)
        assert [(t.name, t.expires) for t in tokens] == [("SID", 1100.0), ("HSID", 1100.0)]

    def test_validate_cookies(self):
        full = {name: "x" for name in ("SID", "HSID", "SSID", "APISID", "SAPISID")}
        assert validate_cookies(full) is True
        del full["SAPISID"]
        assert validate_cookies(full) is False

    def test_check_if_logged_in_by_url(self):
        assert check_if_logged_in_by_url("https://notebooklm.google.com/") is True
        assert check_if_logged_in_by_url("https://accounts.google.com/signin?continue=x") is False
        assert check_if_logged_in_by_url("about:blank") is False

    def test_probe_session_detects_login_redirect(self, store):
        save_valid_auth(store)
        with patch("notebooklm_browser.auth.httpx.Client") as mock_client_cls:
            mock_http = mock_client_cls.return_value.__enter__.return_value
            mock_http.get.return_value = MagicMock(
                url="https://accounts.google.com/ServiceLogin", status_code=200
            )
            assert probe_session(store, "agent") is False

            mock_http.get.return_value = MagicMock(url="https://notebooklm.google.com/", status_code=200)
            assert probe_session(store, "agent") is True

        headers = mock_client_cls.call_args.kwargs["headers"]
        assert "SID=sid-value" in headers["Cookie"]
