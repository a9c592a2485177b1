"""Interactive and one-shot command line front-ends for agentloop."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    Optional,
    Tuple,
    cast,
)

import httpx

from agentloop.agent.agent_loop import Agent
from agentloop.agent.chat_backend import ChatBackend
from agentloop.agent.factory import (
    build_agent,
    build_tools,
    find_config_file,
)
from agentloop.common import (
    AnsiColors,
    colored_print,
    truncate_text,
)
from agentloop.client.install import (
    DEFAULT_SKILLS_DEST,
    DEFAULT_SKILLS_SOURCE,
    GitRunner,
    fetch_skills,
    init_user_config,
    run_git,
)
from agentloop.config import (
    USER_CONFIG_DIR,
    ConfigError,
    Settings,
)
from agentloop.core.retry import BackendError
from agentloop.tools.mcp import (
    McpConnectionPool,
    load_mcp_config,
    load_mcp_tools,
)

logger = logging.getLogger(__name__)

HELP_TEXT = """Available commands:
  /help     Show this help message
  /clear    Clear the session history (keep the system prompt)
  /history  Show the messages of the current session
  /stats    Show session statistics
  /tools    List the available tools
  /config   Show the active configuration
  /exit     Exit the program (also: exit, quit, Ctrl+C)"""

EXIT_WORDS = {"/exit", "/quit", "exit", "quit"}


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


# ---------------------------------------------------------------------------
# REPL built-in commands
# ---------------------------------------------------------------------------
def print_history(agent: Agent, limit: int = 200) -> None:
    for idx, msg in enumerate(agent.messages):
        text = msg.text()
        calls = [call.name for call in msg.tool_calls()]
        line = f"{idx:3d} [{msg.role.value}] {truncate_text(text, limit) if text else ''}"
        if calls:
            line += f" -> {', '.join(calls)}"
        colored_print(line, AnsiColors.DIM)


def print_stats(agent: Agent) -> None:
    stats = agent.stats()
    colored_print("Session statistics:", AnsiColors.CYAN)
    print(f"  Messages:         {stats['messages']}")
    for role in ("user", "assistant", "tool"):
        print(f"  {role.capitalize() + ' messages:':<18}{stats.get(role, 0)}")
    print(f"  Steps:            {agent.step_count}/{agent.max_steps}")
    print(f"  Estimated tokens: {agent.estimate_tokens()}/{agent.token_limit}")
    print(f"  Tools:            {stats['tools']}")


def print_tools(agent: Agent) -> None:
    colored_print(f"Available tools ({len(agent.registry)}):", AnsiColors.CYAN)
    for tool in agent.registry.descriptors():
        print(f"  {tool.name}: {truncate_text(tool.description, 80)}")


def print_config(config: Settings, agent: Agent) -> None:
    colored_print("Active configuration:", AnsiColors.CYAN)
    print(f"  Provider:   {config.PROVIDER}")
    print(f"  Model:      {config.MODEL}")
    print(f"  Base URL:   {config.BASE_URL or '(default)'}")
    print(f"  Workspace:  {agent.workspace}")
    print(f"  Max steps:  {agent.max_steps}")
    print(f"  Tokens:     {agent.token_limit} (reserve {agent.completion_reserve})")
    print(f"  Estimator:  {config.TOKEN_ESTIMATOR}")


def handle_command(command: str, agent: Agent, config: Settings) -> bool:
    """
    Execute a REPL built-in.

    Returns ``False`` when the REPL should stop.
    """
    cmd = command.strip().lower()
    if cmd in EXIT_WORDS:
        return False
    if cmd == "/help":
        colored_print(HELP_TEXT, AnsiColors.CYAN)
    elif cmd == "/clear":
        old = len(agent.messages)
        agent.reset()
        colored_print(f"Cleared {old - 1} messages, starting a new session.", AnsiColors.GREEN)
    elif cmd == "/history":
        print_history(agent)
    elif cmd == "/stats":
        print_stats(agent)
    elif cmd == "/tools":
        print_tools(agent)
    elif cmd == "/config":
        print_config(config, agent)
    else:
        colored_print(f"Unknown command: {command} (type /help)", AnsiColors.RED)
    return True


# ---------------------------------------------------------------------------
# Front-ends
# ---------------------------------------------------------------------------
async def run_repl(
    config: Settings, workspace: Optional[Path] = None, backend: Optional[ChatBackend] = None
) -> None:
    """Line-oriented interactive session; the MCP pool is closed on every exit path."""
    bundle = await build_agent(config, workspace=workspace, backend=backend)
    agent = bundle.agent
    try:
        colored_print(
            f"\nagentloop shell [{config.MODEL}] - type /help for commands, /exit to quit",
            AnsiColors.GREEN,
        )
        colored_print(f"Workspace: {agent.workspace}", AnsiColors.DIM)
        while True:
            colored_print("\nYou: ", AnsiColors.BLUE, end="")
            user_msg, ok = get_user_message()
            if not ok:
                break
            if not user_msg:
                continue
            if user_msg.startswith("/") or user_msg.lower() in EXIT_WORDS:
                if not handle_command(user_msg, agent, config):
                    break
                continue

            agent.add_user_message(user_msg)
            try:
                reply = await agent.run()
            except BackendError as exc:
                logger.error("Backend request failed: %s", exc)
                colored_print(f"Error: {exc}", AnsiColors.RED)
                continue
            except KeyboardInterrupt:
                colored_print("\nInterrupted.", AnsiColors.YELLOW)
                continue
            colored_print(reply, AnsiColors.YELLOW)
    finally:
        await bundle.aclose()
        colored_print("Goodbye!", AnsiColors.GREEN)


async def run_once(
    config: Settings,
    prompt: str,
    workspace: Optional[Path] = None,
    backend: Optional[ChatBackend] = None,
) -> str:
    """Run a single task to termination and return the final text."""
    bundle = await build_agent(config, workspace=workspace, backend=backend)
    try:
        bundle.agent.add_user_message(prompt)
        return await bundle.agent.run()
    finally:
        await bundle.aclose()


async def tools_command(
    config: Settings,
    action: str,
    name: Optional[str] = None,
    args_json: str = "{}",
    workspace: Optional[Path] = None,
    backend: Optional[ChatBackend] = None,
) -> int:
    """``tools list|describe|call``; returns a process exit code."""
    bundle = await build_agent(config, workspace=workspace, backend=backend)
    agent = bundle.agent
    try:
        if action == "list":
            print_tools(agent)
            return 0

        if not name:
            colored_print(f"'tools {action}' requires a tool name", AnsiColors.RED)
            return 2
        schema = agent.tool_schema(name)
        if schema is None:
            colored_print(f"Tool '{name}' not found", AnsiColors.RED)
            return 1

        if action == "describe":
            print(schema.model_dump_json(indent=2))
            return 0

        try:
            args = json.loads(args_json)
        except json.JSONDecodeError as exc:
            colored_print(f"Invalid JSON arguments: {exc}", AnsiColors.RED)
            return 2
        result = await agent.call_tool_direct(name, args)
        if result is None or not result.success:
            error = result.error if result is not None else "Tool execution failed"
            colored_print(f"Error: {error}", AnsiColors.RED)
            if result is not None and result.content:
                print(result.content)
            return 1
        print(result.content)
        return 0
    finally:
        await bundle.aclose()


def skills_command(
    config: Settings, action: str = "list", name: Optional[str] = None, workspace: Optional[Path] = None
) -> int:
    """``skills list|show``; returns a process exit code."""
    workspace = Path(workspace or config.WORKSPACE_DIR).expanduser()
    _, loader = build_tools(config, workspace)
    if loader is None:
        colored_print("Skills are disabled (ENABLE_SKILLS=false)", AnsiColors.YELLOW)
        return 0

    if action == "show":
        if not name:
            colored_print("'skills show' requires a skill name", AnsiColors.RED)
            return 2
        skill = loader.get(name)
        if skill is None:
            colored_print(f"Skill '{name}' not found", AnsiColors.RED)
            return 1
        print(skill.render())
        return 0

    names = loader.list()
    if not names:
        colored_print(f"No skills found in {loader.root}", AnsiColors.YELLOW)
        return 0
    colored_print(f"Skills in {loader.root}:", AnsiColors.CYAN)
    for skill_name in names:
        skill = loader.get(skill_name)
        print(f"  {skill_name}: {skill.description if skill else ''}")
    return 0


def fetch_skills_command(
    source: str = DEFAULT_SKILLS_SOURCE,
    dest: Optional[Path] = None,
    force: bool = False,
    git: GitRunner = run_git,
) -> int:
    """``skills fetch``: clone or update a skills repository."""
    dest = Path(dest or DEFAULT_SKILLS_DEST).expanduser()
    outcome = fetch_skills(source, dest, force=force, git=git)
    colored_print(f"Skills {outcome} at {dest}", AnsiColors.GREEN)
    return 0


def config_init_command(user_dir: Path = USER_CONFIG_DIR, force: bool = False) -> int:
    """``config init``: seed the per-user config directory."""
    written = init_user_config(user_dir, force=force)
    for path in written:
        print(f"Wrote {path}")
    if not written:
        colored_print(f"Nothing written; {user_dir} is already set up (use --force)", AnsiColors.YELLOW)
    return 0


async def mcp_command(config: Settings, workspace: Optional[Path] = None) -> int:
    """List the configured MCP servers and the tools each of them exposes."""
    workspace = Path(workspace or config.WORKSPACE_DIR).expanduser()
    mcp_path = find_config_file(config.MCP_CONFIG_PATH, workspace)
    if mcp_path is None:
        colored_print(f"No MCP config found ({config.MCP_CONFIG_PATH})", AnsiColors.YELLOW)
        return 0
    try:
        servers = load_mcp_config(mcp_path).servers
    except (OSError, ValueError) as exc:
        colored_print(f"Invalid MCP config {mcp_path}: {exc}", AnsiColors.RED)
        return 1
    for name, server in servers.items():
        state = "disabled" if server.disabled else "enabled"
        colored_print(f"{name} ({state}): {server.command} {' '.join(server.args)}", AnsiColors.CYAN)

    async with McpConnectionPool() as pool:
        for tool in await load_mcp_tools(mcp_path, pool):
            print(f"  {tool.name}: {truncate_text(tool.description, 80)}")
    return 0


def report_failure(exc: Exception) -> int:
    """Print a front-end failure and map it to an exit code."""
    if isinstance(exc, ConfigError):
        colored_print(f"Configuration error: {exc}", AnsiColors.RED)
        return 2
    colored_print(f"Error: {exc}", AnsiColors.RED)
    return 1


# ---------------------------------------------------------------------------
# Remote client (talks to a running ``agentloop serve``)
# ---------------------------------------------------------------------------
def call_api(
    base_url: str, endpoint: str, data: Dict[str, Any], max_retries: int = 5, timeout: float = 600.0
) -> Dict[str, Any]:
    """Make a POST request to the API and return the response with retries."""
    api_url = f"{base_url.rstrip('/')}{endpoint}"

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(api_url, json=data)
        except httpx.ConnectError as e:
            # On connection refused, retry with exponential backoff
            if attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                import time  # pylint: disable=import-outside-toplevel

                time.sleep(retry_delay)
                continue
            error_msg = f"Error connecting to API: {e}"
            colored_print(error_msg, AnsiColors.RED)
            return {"reply": error_msg}
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            error_msg = f"Error connecting to API: {e}"
            colored_print(error_msg, AnsiColors.RED)
            return {"reply": error_msg}

        if response.is_error:
            error_msg = f"API error: HTTP {response.status_code}"
            try:
                error_data = response.json()
                if "detail" in error_data:
                    error_msg = f"API error: {error_data['detail']}"
            except ValueError:
                pass
            logger.error(error_msg)
            colored_print(error_msg, AnsiColors.RED)
            return {"reply": error_msg}
        return cast(Dict[str, Any], response.json())

    # If we've exhausted all retries without returning
    error_msg = f"Failed to connect to API after {max_retries} attempts"
    colored_print(error_msg, AnsiColors.RED)
    return {"reply": error_msg}


def run_remote(base_url: str) -> None:
    """Run a shell whose session lives on the API server at *base_url*."""
    session_response = call_api(base_url, "/sessions", {})
    session_id = session_response.get("session_id")

    if not session_id:
        colored_print("Failed to create a session", AnsiColors.RED)
        return

    colored_print(
        f"\nagentloop remote shell ({base_url}) - type 'exit' or 'quit' (or Ctrl+C) to exit",
        AnsiColors.GREEN,
    )
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break
        if not user_msg:
            continue
        if user_msg.lower() in EXIT_WORDS:
            break

        response = call_api(base_url, f"/sessions/{session_id}/messages", {"message": user_msg})
        colored_print(response.get("reply", "No response from API"), AnsiColors.YELLOW)
