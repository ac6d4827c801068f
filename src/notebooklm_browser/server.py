"""NotebookLM Browser MCP Server."""

import argparse
import asyncio
import functools
import json
import logging
import os
import secrets
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastmcp import FastMCP
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from . import __version__
from .auth import probe_session
from .auth_cli import run_browser_login
from .config import Config, configure_logging
from .errors import error_response
from .orchestrator import Orchestrator

# MCP request/response logger
mcp_logger = logging.getLogger("notebooklm_browser.mcp")

# Global state
_config: Config | None = None
_orchestrator: Orchestrator | None = None
_api_key: str | None = os.environ.get("NOTEBOOKLM_API_KEY")


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def get_orchestrator() -> Orchestrator:
    """Get or create the orchestrator for this process."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator.from_config(get_config())
    return _orchestrator


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Run the idle sweep while serving; close every tab and the browser on exit."""
    orchestrator = get_orchestrator()
    orchestrator.start()
    try:
        yield {}
    finally:
        await orchestrator.shutdown()


# Initialize MCP server
mcp = FastMCP(
    name="notebooklm-browser",
    instructions="""NotebookLM Browser MCP - ask questions to NotebookLM notebooks through a real browser.

**Auth:** If a tool returns error_kind auth_invalid/auth_expired, run `notebooklm-browser auth setup` in a terminal (or call re_auth) and retry.
**Notebooks:** Add notebooks with add_notebook and pick one with select_notebook; ask_question uses the selected notebook unless notebook_id/notebook_url is given.
**Sessions:** Follow-up questions reuse the last session automatically. Pass new_session=True to start a fresh conversation. A session_busy error means that session is still answering.""",
    lifespan=lifespan,
)


# Health check endpoint for load balancers and monitoring
@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint for load balancers and monitoring."""
    return JSONResponse({
        "status": "healthy",
        "service": "notebooklm-browser",
        "version": __version__,
    })


def validate_api_key(request: Request) -> JSONResponse | None:
    """Validate API key from Authorization header.

    Returns None if auth passes, JSONResponse with error if auth fails.
    """
    if not _api_key:
        return None

    # Allow health check without auth (for load balancers)
    if request.url.path == "/health":
        return None

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return JSONResponse(
            {"error": "Missing or invalid Authorization header. Use 'Bearer <api_key>'"},
            status_code=401
        )

    provided_key = auth_header[7:]
    if not secrets.compare_digest(provided_key, _api_key):
        return JSONResponse({"error": "Invalid API key"}, status_code=401)

    return None


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce API key authentication for HTTP transport."""

    async def dispatch(self, request: Request, call_next):
        auth_error = validate_api_key(request)
        if auth_error:
            return auth_error
        return await call_next(request)


def logged_tool():
    """Decorator that combines @mcp.tool() with request/response logging and error mapping.

    Any exception escaping a tool becomes a structured error response so the
    server loop keeps running.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            tool_name = func.__name__
            if mcp_logger.isEnabledFor(logging.DEBUG):
                params = {k: v for k, v in kwargs.items() if v is not None}
                mcp_logger.debug(f"MCP Request: {tool_name}({json.dumps(params, default=str)})")

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                mcp_logger.warning("Tool %s failed: %s", tool_name, e)
                result = error_response(e)

            if mcp_logger.isEnabledFor(logging.DEBUG):
                result_str = json.dumps(result, default=str)
                if len(result_str) > 1000:
                    result_str = result_str[:1000] + "..."
                mcp_logger.debug(f"MCP Response: {tool_name} -> {result_str}")

            return result

        mcp.tool()(wrapper)
        return wrapper
    return decorator


# =============================================================================
# Questions and sessions
# =============================================================================

@logged_tool()
async def ask_question(
    question: str,
    notebook_id: str | None = None,
    notebook_url: str | None = None,
    session_id: str | None = None,
    new_session: bool = False,
) -> dict[str, Any]:
    """Ask NotebookLM a question and wait for the complete answer.

    Args:
        question: The question to ask
        notebook_id: Library notebook ID (default: selected notebook)
        notebook_url: Notebook URL, used instead of notebook_id
        session_id: Continue this session (created if unknown)
        new_session: Start a fresh conversation instead of the last session
    """
    result = await get_orchestrator().ask(
        question,
        session_id=session_id,
        notebook=notebook_id or notebook_url,
        force_new=new_session,
    )
    return {"status": "success", **result}


@logged_tool()
async def list_sessions() -> dict[str, Any]:
    """List open browser sessions with message counts and idle times."""
    orchestrator = get_orchestrator()
    sessions = orchestrator.list_sessions()
    return {
        "status": "success",
        "count": len(sessions),
        "max_sessions": orchestrator.config.max_sessions,
        "active_session_id": orchestrator.active_session_id,
        "sessions": sessions,
    }


@logged_tool()
async def select_session(session_id: str) -> dict[str, Any]:
    """Make a session the default for follow-up questions.

    Args:
        session_id: Session ID from list_sessions
    """
    return {"status": "success", "session": get_orchestrator().select_session(session_id)}


@logged_tool()
async def close_session(session_id: str) -> dict[str, Any]:
    """Close a session and its browser tab.

    Args:
        session_id: Session ID from list_sessions
    """
    return {"status": "success", "session": await get_orchestrator().close_session(session_id)}


@logged_tool()
async def reset_session(session_id: str) -> dict[str, Any]:
    """Start a fresh conversation in a session, keeping its ID.

    Args:
        session_id: Session ID from list_sessions
    """
    return {"status": "success", "session": await get_orchestrator().reset_session(session_id)}


@logged_tool()
async def cleanup_sessions() -> dict[str, Any]:
    """Close every session idle longer than the session timeout."""
    closed = await get_orchestrator().cleanup_idle()
    return {"status": "success", "closed_count": len(closed), "closed_sessions": closed}


@logged_tool()
async def get_health() -> dict[str, Any]:
    """Report authentication, browser and session status."""
    return {"status": "success", **get_orchestrator().health()}


# =============================================================================
# Authentication
# =============================================================================

@logged_tool()
async def auth_status(check_live: bool = False) -> dict[str, Any]:
    """Show whether saved credentials are present and unexpired.

    Args:
        check_live: Also fetch NotebookLM with the cookies to detect server-side logout
    """
    orchestrator = get_orchestrator()
    status = orchestrator.auth_status()
    if check_live and status["identity_present"]:
        logged_in = await asyncio.to_thread(probe_session, orchestrator.auth_store, orchestrator.config.user_agent)
        status["live_check"] = "ok" if logged_in else "redirected_to_login"
    return {"status": "success", **status}


@logged_tool()
async def re_auth(timeout: float = 300.0, confirm: bool = False) -> dict[str, Any]:
    """Close all sessions and open a visible browser for Google login.

    Requires a desktop session. Requires confirm=True after user approval.

    Args:
        timeout: Seconds to wait for the login to complete
        confirm: Must be True after user approval
    """
    if not confirm:
        return {
            "status": "pending_confirmation",
            "message": "Re-authentication closes all sessions and opens a browser window for login.",
            "note": "Set confirm=True after user approves.",
        }
    orchestrator = get_orchestrator()
    status = await orchestrator.reauth(
        lambda: run_browser_login(orchestrator.config, orchestrator.auth_store, timeout=timeout)
    )
    return {"status": "success", **status}


# =============================================================================
# Notebook library
# =============================================================================

@logged_tool()
async def add_notebook(
    url: str,
    name: str,
    description: str = "",
    topics: list[str] | None = None,
    tags: list[str] | None = None,
) -> dict[str, Any]:
    """Add a NotebookLM notebook to the local library.

    Args:
        url: https://notebooklm.google.com/notebook/<id>
        name: Display name (the library ID is derived from it)
        description: What the notebook contains
        topics: Topics covered, used by search_notebooks
        tags: Free-form tags
    """
    entry = get_orchestrator().library.add(url, name, description=description, topics=topics, tags=tags)
    return {"status": "success", "notebook": entry.to_dict()}


@logged_tool()
async def list_notebooks() -> dict[str, Any]:
    """List notebooks in the library."""
    library = get_orchestrator().library
    active = library.get_active()
    notebooks = library.list_notebooks()
    return {
        "status": "success",
        "count": len(notebooks),
        "active_notebook_id": active.id if active else None,
        "notebooks": [n.to_dict() for n in notebooks],
    }


@logged_tool()
async def get_notebook(notebook_id: str) -> dict[str, Any]:
    """Get one library notebook.

    Args:
        notebook_id: Library notebook ID
    """
    return {"status": "success", "notebook": get_orchestrator().library.get(notebook_id).to_dict()}


@logged_tool()
async def select_notebook(notebook_id: str) -> dict[str, Any]:
    """Make a notebook the default for ask_question.

    Args:
        notebook_id: Library notebook ID
    """
    return {"status": "success", "notebook": get_orchestrator().library.select(notebook_id).to_dict()}


@logged_tool()
async def update_notebook(
    notebook_id: str,
    name: str | None = None,
    url: str | None = None,
    description: str | None = None,
    topics: list[str] | None = None,
    tags: list[str] | None = None,
) -> dict[str, Any]:
    """Update notebook metadata. Only given fields change.

    Args:
        notebook_id: Library notebook ID
        name: New display name
        url: New notebook URL
        description: New description
        topics: Replacement topic list
        tags: Replacement tag list
    """
    entry = get_orchestrator().library.update(
        notebook_id, name=name, url=url, description=description, topics=topics, tags=tags
    )
    return {"status": "success", "notebook": entry.to_dict()}


@logged_tool()
async def remove_notebook(notebook_id: str, confirm: bool = False) -> dict[str, Any]:
    """Remove a notebook from the library (the notebook itself is untouched).

    Args:
        notebook_id: Library notebook ID
        confirm: Must be True after user approval
    """
    if not confirm:
        return {
            "status": "pending_confirmation",
            "message": f"Remove '{notebook_id}' from the library?",
            "note": "Set confirm=True after user approves.",
        }
    entry = get_orchestrator().library.remove(notebook_id)
    return {"status": "success", "removed": entry.id}


@logged_tool()
async def search_notebooks(query: str) -> dict[str, Any]:
    """Search library notebooks by name, description, topics and tags.

    Args:
        query: Case-insensitive substring
    """
    matches = get_orchestrator().library.search(query)
    return {"status": "success", "count": len(matches), "notebooks": [n.to_dict() for n in matches]}


@logged_tool()
async def get_library_stats() -> dict[str, Any]:
    """Summarize the notebook library."""
    return {"status": "success", **get_orchestrator().library.stats()}


def main(argv: list[str] | None = None):
    """Run the MCP server.

    Supports multiple transports:
    - stdio (default): For desktop apps like Claude Desktop
    - http: Streamable HTTP for network access
    - sse: Legacy SSE transport (backwards compatibility)

    Configuration via CLI args or environment variables.
    """
    parser = argparse.ArgumentParser(
        description="NotebookLM Browser MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  NOTEBOOKLM_MCP_TRANSPORT     Transport type (stdio, http, sse)
  NOTEBOOKLM_MCP_HOST          Host to bind (default: 127.0.0.1)
  NOTEBOOKLM_MCP_PORT          Port to listen on (default: 8000)
  NOTEBOOKLM_MCP_PATH          MCP endpoint path (default: /mcp)
  NOTEBOOKLM_DATA_DIR          Data directory (default: ~/.notebooklm-browser)
  NOTEBOOKLM_HEADLESS          Run the browser headless (default: true)
  NOTEBOOKLM_QUERY_TIMEOUT     Answer timeout in seconds (default: 120.0)
  NOTEBOOKLM_MAX_SESSIONS      Maximum concurrent sessions/tabs (default: 10)
  NOTEBOOKLM_SESSION_TIMEOUT   Idle seconds before a session is closed (default: 900)
  NOTEBOOKLM_SELECTORS_FILE    JSON file overriding the UI selector table
  NOTEBOOKLM_DEBUG             Enable debug logging (true/false)

Examples:
  notebooklm-browser-mcp                              # Default stdio transport
  notebooklm-browser-mcp --transport http             # HTTP on localhost:8000
  notebooklm-browser-mcp --show-browser               # Watch the browser work
  notebooklm-browser-mcp --debug                      # Log tool calls and browser activity
        """
    )
    parser.add_argument(
        "--transport", "-t",
        choices=["stdio", "http", "sse"],
        default=os.environ.get("NOTEBOOKLM_MCP_TRANSPORT", "stdio"),
        help="Transport protocol (default: stdio)"
    )
    parser.add_argument(
        "--host", "-H",
        default=os.environ.get("NOTEBOOKLM_MCP_HOST", "127.0.0.1"),
        help="Host to bind for HTTP/SSE (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=int(os.environ.get("NOTEBOOKLM_MCP_PORT", "8000")),
        help="Port for HTTP/SSE transport (default: 8000)"
    )
    parser.add_argument(
        "--path",
        default=os.environ.get("NOTEBOOKLM_MCP_PATH", "/mcp"),
        help="MCP endpoint path for HTTP (default: /mcp)"
    )
    parser.add_argument(
        "--stateless",
        action="store_true",
        default=os.environ.get("NOTEBOOKLM_MCP_STATELESS", "").lower() == "true",
        help="Enable stateless HTTP mode"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging (tool calls + browser activity)"
    )
    parser.add_argument(
        "--query-timeout",
        type=float,
        default=None,
        help="Answer timeout in seconds (default: 120.0)"
    )
    parser.add_argument(
        "--max-sessions",
        type=int,
        default=None,
        help="Maximum concurrent sessions (default: 10)"
    )
    parser.add_argument(
        "--show-browser",
        action="store_true",
        help="Run the browser with a visible window"
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Data directory for credentials, library and browser profile"
    )
    parser.add_argument(
        "--api-key",
        default=os.environ.get("NOTEBOOKLM_API_KEY"),
        help="API key for HTTP/SSE authentication (also via NOTEBOOKLM_API_KEY env var)"
    )
    args = parser.parse_args(argv)

    global _config, _api_key
    _config = Config.from_env().with_overrides(
        timeout=args.query_timeout,
        max_sessions=args.max_sessions,
        data_dir=args.data_dir,
        debug=args.debug,
        headless=False if args.show_browser else None,
    )
    _api_key = args.api_key

    configure_logging(_config.debug)

    if args.transport in ("http", "sse"):
        endpoint = args.path if args.transport == "http" else "/sse"
        print(f"Starting NotebookLM Browser MCP server ({args.transport.upper()}) on http://{args.host}:{args.port}{endpoint}")
        print(f"Health check: http://{args.host}:{args.port}/health")
        if _api_key:
            print("API key authentication: ENABLED")
        else:
            print("WARNING: No API key set. Server is publicly accessible!")
            print("         Use --api-key or NOTEBOOKLM_API_KEY to secure your server.")

        if _api_key:
            import uvicorn

            if args.transport == "http":
                base_app = mcp.http_app(path=args.path, stateless_http=args.stateless)
            else:
                base_app = mcp.http_app(transport="sse")
            uvicorn.run(APIKeyAuthMiddleware(base_app), host=args.host, port=args.port)
        elif args.transport == "http":
            mcp.run(
                transport="http",
                host=args.host,
                port=args.port,
                path=args.path,
                stateless_http=args.stateless,
            )
        else:
            mcp.run(transport="sse", host=args.host, port=args.port)
    else:
        # Default: stdio transport (no message - stdio should be silent)
        mcp.run()

    return 0


if __name__ == "__main__":
    exit(main())
