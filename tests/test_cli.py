import json
from unittest.mock import patch

import pytest

from notebooklm_browser import cli

from conftest import NOTEBOOK_A, NOTEBOOK_B


@pytest.fixture
def run(tmp_path, capsys):
    def _run(*argv):
        code = cli.main(["--data-dir", str(tmp_path), *argv])
        out, err = capsys.readouterr()
        return code, out, err
    return _run


class TestNotebookCommands:
    def test_add_list_select(self, run):
        code, out, _ = run("notebook", "add", NOTEBOOK_A, "--name", "Research Notes", "--topics", "ml, papers")
        assert code == 0
        assert "research-notes" in out
        assert "active notebook" in out

        run("notebook", "add", NOTEBOOK_B, "--name", "Product Docs")
        code, out, _ = run("notebook", "list", "--json")
        data = json.loads(out)
        assert data["active_notebook_id"] == "research-notes"
        assert data["notebooks"][0]["topics"] == ["ml", "papers"]

        code, out, _ = run("notebook", "select", "product-docs")
        assert code == 0
        code, out, _ = run("notebook", "active")
        assert "product-docs" in out

    def test_remove_needs_yes(self, run):
        run("notebook", "add", NOTEBOOK_A, "--name", "Notes")
        code, out, _ = run("notebook", "remove", "notes")
        assert code == 1
        assert "--yes" in out

        code, _, _ = run("notebook", "remove", "notes", "--yes")
        assert code == 0
        code, out, _ = run("notebook", "list")
        assert "empty" in out

    def test_errors_print_hint(self, run):
        code, _, err = run("notebook", "show", "missing")
        assert code == 1
        assert "ERROR:" in err
        assert "notebook list" in err

    def test_invalid_url(self, run):
        code, _, err = run("notebook", "add", "https://example.com", "--name", "x")
        assert code == 1
        assert "Not a NotebookLM notebook URL" in err


class TestAuthCommands:
    def test_import_status_logout(self, run, tmp_path):
        cookie_file = tmp_path / "cookies.txt"
        cookie_file.write_text("# exported\ncookie: SID=a; HSID=b; SSID=c; APISID=d; SAPISID=e\n")

        code, out, _ = run("auth", "import", str(cookie_file))
        assert code == 0
        assert "Saved 5 cookies" in out

        code, out, _ = run("auth", "status")
        assert code == 0
        status = json.loads(out)
        assert status["authenticated"] is True
        assert status["missing_cookies"] == []

        code, out, _ = run("auth", "logout")
        assert code == 0
        assert "Removed" in out

        code, out, _ = run("auth", "status")
        assert code == 1

    def test_import_missing_file(self, run, tmp_path):
        code, _, err = run("auth", "import", str(tmp_path / "nope.txt"))
        assert code == 1
        assert "File not found" in err


class TestAskCommand:
    def test_ask_prints_answer_and_session(self, run, orchestrator):
        with patch.object(cli.Orchestrator, "from_config", return_value=orchestrator):
            code, out, _ = run("ask", "What is this?")
        assert code == 0
        assert out.startswith("answer 1")
        assert "notebook research-notes" in out
        assert orchestrator.provider.shut_down

    def test_ask_json(self, run, orchestrator):
        with patch.object(cli.Orchestrator, "from_config", return_value=orchestrator):
            code, out, _ = run("ask", "Q", "--json", "--notebook", "product-docs")
        assert code == 0
        assert json.loads(out)["notebook_url"] == NOTEBOOK_B

    def test_ask_without_auth(self, run, orchestrator, auth_store):
        auth_store.clear()
        with patch.object(cli.Orchestrator, "from_config", return_value=orchestrator):
            code, _, err = run("ask", "Q")
        assert code == 1
        assert "auth setup" in err


class TestShell:
    def test_shell_keeps_sessions_between_commands(self, run, orchestrator):
        lines = iter(["What is this?", "And more?", "session list", "exit"])
        with patch.object(cli.Orchestrator, "from_config", return_value=orchestrator), \
             patch("builtins.input", side_effect=lambda prompt="": next(lines)):
            code, out, _ = run("shell")

        assert code == 0
        assert "answer 1" in out
        assert "answer 2" in out
        assert "messages=2" in out


def test_serve_delegates_to_server():
    with patch("notebooklm_browser.server.main", return_value=0) as mock_main:
        assert cli.main(["serve", "--transport", "http", "--port", "9000"]) == 0
    mock_main.assert_called_once_with(["--transport", "http", "--port", "9000"])
