"""Error taxonomy for the NotebookLM browser core.

Every failure that crosses the core boundary is a ``NotebookLMBrowserError``
with a stable ``kind`` string, so the CLI and the MCP server can render it
without inspecting exception types.
"""

from typing import Any


REAUTH_HINT = "Run `notebooklm-browser auth setup` (or the re_auth tool) to log in again."


class NotebookLMBrowserError(Exception):
    """Base class for all core errors."""

    kind = "internal"

    def __init__(self, message: str, hint: str | None = None, **details: Any):
        super().__init__(message)
        self.hint = hint
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": "error",
            "error_kind": self.kind,
            "error": str(self),
        }
        if self.hint:
            result["hint"] = self.hint
        result.update(self.details)
        return result


class ResourceExhausted(NotebookLMBrowserError):
    """Raised when the tab ceiling (max concurrent sessions) is reached."""

    kind = "resource_exhausted"


class AuthInvalid(NotebookLMBrowserError):
    """Raised when no usable credentials are loaded."""

    kind = "auth_invalid"

    def __init__(self, message: str, hint: str | None = REAUTH_HINT, **details: Any):
        super().__init__(message, hint=hint, **details)


class AuthExpired(AuthInvalid):
    """Raised when the identity cookie exists but has expired."""

    kind = "auth_expired"


class ElementNotFound(NotebookLMBrowserError):
    """Raised when a selector from the selector table matches nothing in time."""

    kind = "element_not_found"


class AnswerTimeout(NotebookLMBrowserError):
    """Raised when an answer did not settle before the deadline.

    ``partial_text`` holds whatever was observed last, possibly empty.
    """

    kind = "answer_timeout"

    def __init__(self, message: str, partial_text: str = "", **details: Any):
        super().__init__(message, partial_text=partial_text, **details)
        self.partial_text = partial_text


class SessionBusy(NotebookLMBrowserError):
    """Raised when a session is already processing a question."""

    kind = "session_busy"


class SessionClosed(NotebookLMBrowserError):
    """Raised when a session is closing, closed or no longer registered."""

    kind = "session_closed"


class BrowserCrashed(NotebookLMBrowserError):
    """Raised when the browser died and the single recovery attempt failed."""

    kind = "browser_crashed"


class UnresolvedNotebook(NotebookLMBrowserError):
    """Raised when no notebook was given and none is selected."""

    kind = "unresolved_notebook"

    def __init__(
        self,
        message: str = "No notebook specified and no active notebook selected.",
        hint: str | None = "Pass a notebook ID/URL or select one with `notebook select <id>`.",
        **details: Any,
    ):
        super().__init__(message, hint=hint, **details)


class NotebookNotFound(NotebookLMBrowserError):
    """Raised when a library ID does not exist."""

    kind = "notebook_not_found"


def error_response(exc: BaseException) -> dict[str, Any]:
    """Render any exception as a structured error dict."""
    if isinstance(exc, NotebookLMBrowserError):
        return exc.to_dict()
    if isinstance(exc, ValueError):
        return {"status": "error", "error_kind": "invalid_argument", "error": str(exc)}
    return {"status": "error", "error_kind": "internal", "error": str(exc) or type(exc).__name__}
