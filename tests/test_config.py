from pathlib import Path

from notebooklm_browser.config import Config


class TestConfigFromEnv:
    def test_browser_and_extraction_settings(self, monkeypatch, tmp_path):
        monkeypatch.setenv("NOTEBOOKLM_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("NOTEBOOKLM_NAVIGATION_TIMEOUT", "45")
        monkeypatch.setenv("NOTEBOOKLM_STABLE_READS", "3")
        monkeypatch.setenv("NOTEBOOKLM_VIEWPORT_WIDTH", "1440")
        monkeypatch.setenv("NOTEBOOKLM_VIEWPORT_HEIGHT", "1000")
        monkeypatch.setenv("NOTEBOOKLM_HEADLESS", "false")

        config = Config.from_env()

        assert config.data_dir == Path(tmp_path)
        assert config.navigation_timeout == 45.0
        assert config.stable_reads == 3
        assert (config.viewport_width, config.viewport_height) == (1440, 1000)
        assert config.headless is False
        assert config.auth_path == Path(tmp_path) / "auth.json"

    def test_defaults(self, monkeypatch):
        for name in (
            "NOTEBOOKLM_NAVIGATION_TIMEOUT",
            "NOTEBOOKLM_STABLE_READS",
            "NOTEBOOKLM_VIEWPORT_WIDTH",
            "NOTEBOOKLM_VIEWPORT_HEIGHT",
        ):
            monkeypatch.delenv(name, raising=False)

        config = Config.from_env()

        assert config.navigation_timeout == 30.0
        assert config.stable_reads == 2
        assert (config.viewport_width, config.viewport_height) == (1280, 900)

    def test_overrides_skip_none(self):
        config = Config().with_overrides(timeout=5.0, max_sessions=None)
        assert config.timeout == 5.0
        assert config.max_sessions == 10
