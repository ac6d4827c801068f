"""Command-line interface: ``notebooklm-browser``.

One-shot commands start a fresh orchestrator and shut it down afterwards, so
sessions only outlive a single command inside ``notebooklm-browser shell``.
"""

import argparse
import asyncio
import json
import shlex
import sys
from pathlib import Path

from . import __version__
from .auth import AuthStore
from .auth_cli import logout, print_status, run_browser_login, run_file_cookie_entry, setup
from .config import Config, configure_logging
from .errors import NotebookLMBrowserError
from .library import NotebookEntry, NotebookLibrary
from .orchestrator import Orchestrator


class CommandContext:
    """Lazily-built collaborators shared by the commands of one invocation."""

    def __init__(self, config: Config):
        self.config = config
        self._orchestrator: Orchestrator | None = None
        self._library: NotebookLibrary | None = None

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            self._orchestrator = Orchestrator.from_config(self.config)
            if self._library is not None:
                self._orchestrator.library = self._library
        return self._orchestrator

    @property
    def library(self) -> NotebookLibrary:
        if self._orchestrator is not None:
            return self._orchestrator.library
        if self._library is None:
            self._library = NotebookLibrary(self.config.library_path)
        return self._library

    def auth_store(self) -> AuthStore:
        if self._orchestrator is not None:
            return self._orchestrator.auth_store
        return AuthStore(self.config.auth_path, identity_cookie=self.config.identity_cookie)

    async def close(self) -> None:
        if self._orchestrator is not None:
            await self._orchestrator.shutdown()


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _print_notebook(entry: NotebookEntry, active: bool = False) -> None:
    marker = "*" if active else " "
    print(f"{marker} {entry.id}  {entry.name}")
    print(f"    {entry.url}")
    if entry.description:
        print(f"    {entry.description}")
    if entry.topics:
        print(f"    topics: {', '.join(entry.topics)}")
    if entry.tags:
        print(f"    tags: {', '.join(entry.tags)}")


def _split_list(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


# =============================================================================
# ask
# =============================================================================

async def cmd_ask(ctx: CommandContext, args) -> int:
    result = await ctx.orchestrator.ask(
        args.question,
        session_id=args.session,
        notebook=args.notebook,
        force_new=args.new,
        timeout=args.timeout,
    )
    if args.json:
        _print_json(result)
        return 0
    print(result["answer"])
    print()
    print(
        f"[session {result['session_id']} | notebook {result['notebook_id'] or result['notebook_url']}"
        f" | message {result['message_count']}]"
    )
    return 0


# =============================================================================
# notebook
# =============================================================================

async def cmd_notebook_add(ctx: CommandContext, args) -> int:
    entry = ctx.library.add(
        args.url,
        args.name,
        description=args.description,
        topics=_split_list(args.topics),
        tags=_split_list(args.tags),
        notebook_id=args.id,
    )
    print(f"Added notebook '{entry.id}'.")
    active = ctx.library.get_active()
    if active is not None and active.id == entry.id:
        print("It is now the active notebook.")
    return 0


async def cmd_notebook_list(ctx: CommandContext, args) -> int:
    library = ctx.library
    notebooks = library.list_notebooks()
    active = library.get_active()
    if args.json:
        _print_json({
            "active_notebook_id": active.id if active else None,
            "notebooks": [n.to_dict() for n in notebooks],
        })
        return 0
    if not notebooks:
        print("Library is empty. Add one with: notebooklm-browser notebook add <url> --name <name>")
        return 0
    for entry in notebooks:
        _print_notebook(entry, active is not None and entry.id == active.id)
    return 0


async def cmd_notebook_show(ctx: CommandContext, args) -> int:
    _print_json(ctx.library.get(args.id).to_dict())
    return 0


async def cmd_notebook_select(ctx: CommandContext, args) -> int:
    entry = ctx.library.select(args.id)
    print(f"Active notebook: {entry.id} ({entry.name})")
    return 0


async def cmd_notebook_update(ctx: CommandContext, args) -> int:
    entry = ctx.library.update(
        args.id,
        name=args.name,
        url=args.url,
        description=args.description,
        topics=_split_list(args.topics),
        tags=_split_list(args.tags),
    )
    _print_json(entry.to_dict())
    return 0


async def cmd_notebook_remove(ctx: CommandContext, args) -> int:
    if not args.yes:
        print(f"This removes '{args.id}' from the library. Re-run with --yes to confirm.")
        return 1
    entry = ctx.library.remove(args.id)
    print(f"Removed notebook '{entry.id}'.")
    return 0


async def cmd_notebook_search(ctx: CommandContext, args) -> int:
    matches = ctx.library.search(args.query)
    if not matches:
        print(f"No notebooks match '{args.query}'.")
        return 1
    active = ctx.library.get_active()
    for entry in matches:
        _print_notebook(entry, active is not None and entry.id == active.id)
    return 0


async def cmd_notebook_active(ctx: CommandContext, args) -> int:
    if args.clear:
        ctx.library.clear_active()
        print("Cleared the active notebook.")
        return 0
    active = ctx.library.get_active()
    if active is None:
        print("No active notebook.")
        return 1
    _print_notebook(active, True)
    return 0


async def cmd_notebook_stats(ctx: CommandContext, args) -> int:
    _print_json(ctx.library.stats())
    return 0


# =============================================================================
# session
# =============================================================================

async def cmd_session_list(ctx: CommandContext, args) -> int:
    sessions = ctx.orchestrator.list_sessions()
    if args.json:
        _print_json(sessions)
        return 0
    if not sessions:
        print("No open sessions.")
        return 0
    for info in sessions:
        marker = "*" if info["is_active"] else " "
        print(
            f"{marker} {info['id']}  {info['state']:<8} messages={info['message_count']}"
            f"  idle={info['idle_seconds']:.0f}s  {info['notebook_id'] or info['notebook_url']}"
        )
    return 0


async def cmd_session_select(ctx: CommandContext, args) -> int:
    ctx.orchestrator.select_session(args.id)
    print(f"Active session: {args.id}")
    return 0


async def cmd_session_close(ctx: CommandContext, args) -> int:
    await ctx.orchestrator.close_session(args.id)
    print(f"Closed session {args.id}.")
    return 0


async def cmd_session_reset(ctx: CommandContext, args) -> int:
    await ctx.orchestrator.reset_session(args.id)
    print(f"Reset session {args.id}.")
    return 0


async def cmd_session_cleanup(ctx: CommandContext, args) -> int:
    closed = await ctx.orchestrator.cleanup_idle()
    print(f"Closed {len(closed)} idle session(s).")
    return 0


async def cmd_health(ctx: CommandContext, args) -> int:
    _print_json(ctx.orchestrator.health())
    return 0


# =============================================================================
# auth
# =============================================================================

async def cmd_auth_setup(ctx: CommandContext, args) -> int:
    return await setup(ctx.auth_store(), ctx.config, timeout=args.login_timeout)


async def cmd_auth_import(ctx: CommandContext, args) -> int:
    count = run_file_cookie_entry(ctx.auth_store(), args.path)
    if not count:
        return 1
    print(f"Saved {count} cookies to {ctx.config.auth_path}")
    return 0


async def cmd_auth_status(ctx: CommandContext, args) -> int:
    store = ctx.auth_store()
    store.load()
    return await asyncio.to_thread(print_status, store, ctx.config, args.check)


async def cmd_auth_logout(ctx: CommandContext, args) -> int:
    return logout(ctx.auth_store(), ctx.config, purge_profile=args.purge_profile)


async def cmd_auth_reauth(ctx: CommandContext, args) -> int:
    orchestrator = ctx.orchestrator
    status = await orchestrator.reauth(
        lambda: run_browser_login(ctx.config, orchestrator.auth_store, timeout=args.login_timeout)
    )
    _print_json(status)
    return 0 if status["authenticated"] else 1


async def cmd_serve(ctx: CommandContext, args) -> int:
    raise ValueError("`serve` must come first: notebooklm-browser serve [server options]")


# =============================================================================
# shell
# =============================================================================

COMMANDS = ("ask", "notebook", "session", "health", "auth", "serve", "shell")
SHELL_UNAVAILABLE = ("shell", "serve")


async def cmd_shell(ctx: CommandContext, args) -> int:
    parser = build_parser()
    loop = asyncio.get_running_loop()

    print(f"NotebookLM Browser shell {__version__}")
    print("Type a question to ask the active session, a command (e.g. `session list`), or `exit`.")
    while True:
        try:
            line = await loop.run_in_executor(None, input, "notebooklm> ")
        except EOFError:
            print()
            break
        line = line.strip()
        if not line:
            continue
        if line in ("exit", "quit"):
            break
        try:
            argv = shlex.split(line)
        except ValueError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            continue
        if argv[0] not in COMMANDS:
            argv = ["ask", line]
        if argv[0] in SHELL_UNAVAILABLE:
            print(f"`{argv[0]}` is not available inside the shell.")
            continue
        try:
            sub_args = parser.parse_args(argv)
        except SystemExit:
            continue
        await execute(ctx, sub_args)
    return 0


# =============================================================================
# Parser and entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notebooklm-browser",
        description="Ask NotebookLM notebooks questions through a real browser.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--data-dir", type=Path, default=None, help="Data directory (default: ~/.notebooklm-browser)")
    parser.add_argument("--show-browser", action="store_true", help="Run the browser with a visible window")
    parser.add_argument("--timeout", type=float, default=None, help="Answer timeout in seconds (default: 120)")
    parser.add_argument("--max-sessions", type=int, default=None, help="Maximum concurrent sessions (default: 10)")
    parser.add_argument("--debug", action="store_true", default=None, help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    # ask
    p = sub.add_parser("ask", help="Ask a question")
    p.add_argument("question")
    p.add_argument("--notebook", "-n", help="Library notebook ID or notebook URL")
    p.add_argument("--session", "-s", help="Session ID to continue")
    p.add_argument("--new", action="store_true", help="Start a new session")
    p.add_argument("--json", action="store_true", help="Print the full result as JSON")
    p.set_defaults(handler=cmd_ask)

    # notebook
    nb = sub.add_parser("notebook", help="Manage the notebook library").add_subparsers(dest="action", required=True)
    p = nb.add_parser("add", help="Add a notebook")
    p.add_argument("url")
    p.add_argument("--name", required=True)
    p.add_argument("--id", help="Library ID (default: derived from the name)")
    p.add_argument("--description", default="")
    p.add_argument("--topics", help="Comma-separated topics")
    p.add_argument("--tags", help="Comma-separated tags")
    p.set_defaults(handler=cmd_notebook_add)

    p = nb.add_parser("list", help="List notebooks")
    p.add_argument("--json", action="store_true")
    p.set_defaults(handler=cmd_notebook_list)

    p = nb.add_parser("show", help="Show one notebook")
    p.add_argument("id")
    p.set_defaults(handler=cmd_notebook_show)

    p = nb.add_parser("select", help="Make a notebook the default")
    p.add_argument("id")
    p.set_defaults(handler=cmd_notebook_select)

    p = nb.add_parser("update", help="Update notebook metadata")
    p.add_argument("id")
    p.add_argument("--name")
    p.add_argument("--url")
    p.add_argument("--description")
    p.add_argument("--topics", help="Comma-separated topics (replaces existing)")
    p.add_argument("--tags", help="Comma-separated tags (replaces existing)")
    p.set_defaults(handler=cmd_notebook_update)

    p = nb.add_parser("remove", help="Remove a notebook from the library")
    p.add_argument("id")
    p.add_argument("--yes", "-y", action="store_true", help="Confirm removal")
    p.set_defaults(handler=cmd_notebook_remove)

    p = nb.add_parser("search", help="Search notebooks")
    p.add_argument("query")
    p.set_defaults(handler=cmd_notebook_search)

    p = nb.add_parser("active", help="Show (or clear) the active notebook")
    p.add_argument("--clear", action="store_true")
    p.set_defaults(handler=cmd_notebook_active)

    p = nb.add_parser("stats", help="Library statistics")
    p.set_defaults(handler=cmd_notebook_stats)

    # session
    ss = sub.add_parser(
        "session",
        help="Manage sessions (persist only inside `shell`)",
    ).add_subparsers(dest="action", required=True)
    p = ss.add_parser("list", help="List open sessions")
    p.add_argument("--json", action="store_true")
    p.set_defaults(handler=cmd_session_list)
    for name, handler, help_text in (
        ("select", cmd_session_select, "Make a session the default"),
        ("close", cmd_session_close, "Close a session"),
        ("reset", cmd_session_reset, "Start a fresh conversation in a session"),
    ):
        p = ss.add_parser(name, help=help_text)
        p.add_argument("id")
        p.set_defaults(handler=handler)
    p = ss.add_parser("cleanup", help="Close idle sessions")
    p.set_defaults(handler=cmd_session_cleanup)

    p = sub.add_parser("health", help="Show browser, auth and session status")
    p.set_defaults(handler=cmd_health)

    # auth
    au = sub.add_parser("auth", help="Manage Google credentials").add_subparsers(dest="action", required=True)
    p = au.add_parser("setup", help="Log in through a visible browser window")
    p.add_argument("--login-timeout", type=float, default=300.0)
    p.set_defaults(handler=cmd_auth_setup)

    p = au.add_parser("import", help="Import a cookie header saved from DevTools")
    p.add_argument("path", nargs="?")
    p.set_defaults(handler=cmd_auth_import)

    p = au.add_parser("status", help="Show credential status")
    p.add_argument("--check", action="store_true", help="Also verify the cookies against NotebookLM")
    p.set_defaults(handler=cmd_auth_status)

    p = au.add_parser("logout", help="Delete saved credentials")
    p.add_argument("--purge-profile", action="store_true", help="Also delete the browser profile")
    p.set_defaults(handler=cmd_auth_logout)

    p = au.add_parser("reauth", help="Close all sessions and log in again")
    p.add_argument("--login-timeout", type=float, default=300.0)
    p.set_defaults(handler=cmd_auth_reauth)

    # serve / shell
    p = sub.add_parser("serve", help="Run the MCP server (arguments go to notebooklm-browser-mcp)")
    p.add_argument("server_args", nargs=argparse.REMAINDER)
    p.set_defaults(handler=cmd_serve)

    p = sub.add_parser("shell", help="Interactive shell that keeps sessions open")
    p.set_defaults(handler=cmd_shell)

    return parser


async def execute(ctx: CommandContext, args) -> int:
    """Run one parsed command, reporting errors instead of raising them."""
    try:
        return await args.handler(ctx, args)
    except NotebookLMBrowserError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        if e.hint:
            print(f"  {e.hint}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


async def _run(ctx: CommandContext, args) -> int:
    try:
        return await execute(ctx, args)
    finally:
        await ctx.close()


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if argv and argv[0] == "serve":
        # Server flags are parsed by the server itself
        from .server import main as server_main

        return server_main(argv[1:])

    args = build_parser().parse_args(argv)

    config = Config.from_env().with_overrides(
        data_dir=args.data_dir,
        headless=False if args.show_browser else None,
        timeout=args.timeout,
        max_sessions=args.max_sessions,
        debug=args.debug,
    )
    configure_logging(config.debug)

    try:
        return asyncio.run(_run(CommandContext(config), args))
    except KeyboardInterrupt:
        print("\nCancelled.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
