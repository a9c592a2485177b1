"""
agentloop entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(interactive shell, one-shot run, tool/skill/MCP inspection, or the REST API).
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from agentloop.api.app import run_api
from agentloop.client.cli import (
    config_init_command,
    fetch_skills_command,
    mcp_command,
    report_failure,
    run_once,
    run_remote,
    run_repl,
    skills_command,
    tools_command,
)
from agentloop.client.install import (
    DEFAULT_SKILLS_DEST,
    DEFAULT_SKILLS_SOURCE,
    InstallError,
)
from agentloop.common import (
    AnsiColors,
    colored_print,
)
from agentloop.config import (
    SECRET_FIELDS,
    ConfigError,
    settings,
)
from agentloop.core.retry import BackendError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # Reduce HTTP client noise to WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the agentloop autonomous agent")
    parser.add_argument(
        "--workspace",
        "-w",
        type=Path,
        default=None,
        help="Workspace directory for file and shell tools (default from settings)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("repl", help="Interactive session (default)")

    run = sub.add_parser("run", help="Run a single task and print the final answer")
    run.add_argument("prompt", help="Task for the agent")

    tools = sub.add_parser("tools", help="Inspect or invoke tools")
    tools.add_argument("action", choices=["list", "describe", "call"])
    tools.add_argument("name", nargs="?", default=None)
    tools.add_argument("--args", dest="args_json", default="{}", help="JSON object of arguments")

    skills = sub.add_parser("skills", help="Inspect or fetch skills")
    skills.add_argument("action", choices=["list", "show", "fetch"], nargs="?", default="list")
    skills.add_argument("name", nargs="?", default=None, help="Skill name for 'show'")
    skills.add_argument(
        "--source", default=DEFAULT_SKILLS_SOURCE, help="Git URL for 'fetch' (%(default)s)"
    )
    skills.add_argument(
        "--dest", type=Path, default=DEFAULT_SKILLS_DEST, help="Install directory for 'fetch'"
    )
    skills.add_argument(
        "--force", action="store_true", help="Replace a destination that is not a checkout"
    )

    mcp = sub.add_parser("mcp", help="Inspect MCP servers")
    mcp.add_argument("action", choices=["list"], nargs="?", default="list")

    config_cmd = sub.add_parser("config", help="Manage the per-user configuration")
    config_cmd.add_argument("action", choices=["init"])
    config_cmd.add_argument("--force", action="store_true", help="Overwrite existing files")

    attach = sub.add_parser("attach", help="Chat through a running agentloop API server")
    attach.add_argument(
        "--url", default=f"http://localhost:{settings.API_PORT}", help="API base URL (%(default)s)"
    )

    serve = sub.add_parser("serve", help="Start the REST API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=settings.API_PORT)
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the agentloop application.

    This function sets up the command-line interface, initializes logging, and dispatches to the
    selected sub-command (``repl`` when none is given).
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "repl"

    # Override settings with command-line arguments
    settings.LOG_LEVEL = args.log_level
    if args.workspace is not None:
        settings.WORKSPACE_DIR = str(args.workspace)

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting agentloop [%s]", command)
    logger.debug("Settings: %s", settings.model_dump(exclude=set(SECRET_FIELDS)))

    if command == "serve":
        run_api(host=args.host, port=args.port, reload=settings.DEBUG)
        return
    if command == "attach":
        run_remote(args.url)
        return

    try:
        if command == "repl":
            asyncio.run(run_repl(settings))
            code = 0
        elif command == "run":
            colored_print(asyncio.run(run_once(settings, args.prompt)), AnsiColors.YELLOW)
            code = 0
        elif command == "tools":
            code = asyncio.run(tools_command(settings, args.action, args.name, args.args_json))
        elif command == "skills" and args.action == "fetch":
            code = fetch_skills_command(args.source, args.dest, force=args.force)
        elif command == "skills":
            code = skills_command(settings, args.action, args.name)
        elif command == "config":
            code = config_init_command(force=args.force)
        elif command == "mcp":
            code = asyncio.run(mcp_command(settings))
        else:
            parser.error(f"Unknown command: {command}")
    except (ConfigError, BackendError, InstallError, ValueError) as exc:
        logger.error("%s failed: %s", command, exc)
        code = report_failure(exc)
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
