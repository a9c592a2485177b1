"""Assemble a ready-to-run :class:`Agent` (backend, tools, system prompt) from :class:`Settings`."""

import logging
import os
import platform
from dataclasses import (
    dataclass,
    field,
)
from pathlib import Path
from typing import (
    List,
    Optional,
)

from agentloop.agent.agent_loop import Agent
from agentloop.agent.chat_backend import (
    ChatBackend,
    load_backend,
)
from agentloop.config import (
    USER_CONFIG_DIR,
    Settings,
)
from agentloop.core.observer import AgentObserver
from agentloop.core.run_log import AgentRunLog
from agentloop.core.tokens import load_estimator
from agentloop.tools import Tool
from agentloop.tools.bash import BashTool
from agentloop.tools.files import (
    EditFileTool,
    ReadFileTool,
    WriteFileTool,
)
from agentloop.tools.mcp import (
    McpConnectionPool,
    load_mcp_tools,
)
from agentloop.tools.notes import (
    NoteStore,
    RecallNotesTool,
    RecordNoteTool,
)
from agentloop.tools.skills import (
    GetSkillTool,
    SkillLoader,
)

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are agentloop, an autonomous assistant that completes tasks with tools."
SKILLS_PLACEHOLDER = "{SKILLS_METADATA}"


@dataclass
class AgentBundle:
    """An agent plus the resources whose lifetime the caller owns."""

    agent: Agent
    mcp_pool: McpConnectionPool
    skills: Optional[SkillLoader] = None
    tools: List[Tool] = field(default_factory=list)
    owns_pool: bool = True

    async def aclose(self) -> None:
        """Close the MCP pool unless it was lent by the caller."""
        if self.owns_pool:
            await self.mcp_pool.close()


def find_config_file(filename: str, workspace: Optional[Path] = None) -> Optional[Path]:
    """
    Locate *filename*.

    Search order: absolute path, the workspace, ``./config/``, ``~/.agentloop/config/``.
    """
    path = Path(filename).expanduser()
    if path.is_absolute():
        return path if path.exists() else None
    candidates = []
    if workspace is not None:
        candidates.append(workspace / path)
    candidates += [Path.cwd() / path, Path.cwd() / "config" / path]
    candidates.append(USER_CONFIG_DIR / path)
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def build_tools(config: Settings, workspace: Path) -> tuple[List[Tool], Optional[SkillLoader]]:
    """Local (non-MCP) tools enabled in *config*."""
    tools: List[Tool] = []
    if config.ENABLE_BASH:
        tools.append(BashTool(workspace, timeout=config.BASH_TIMEOUT))
    if config.ENABLE_FILE_TOOLS:
        tools += [ReadFileTool(workspace), WriteFileTool(workspace), EditFileTool(workspace)]

    loader: Optional[SkillLoader] = None
    if config.ENABLE_SKILLS:
        skills_dir = find_config_file(config.SKILLS_DIR, workspace) or Path(config.SKILLS_DIR)
        loader = SkillLoader(skills_dir)
        loader.discover()
        tools.append(GetSkillTool(loader))

    if config.ENABLE_NOTES:
        store = NoteStore(workspace / config.NOTES_FILE)
        tools += [RecordNoteTool(store), RecallNotesTool(store)]
    return tools, loader


def build_system_prompt(
    config: Settings, workspace: Path, skills: Optional[SkillLoader] = None
) -> str:
    """Prompt file (or default) + skills metadata + execution environment + workspace sections."""
    prompt_path = find_config_file(config.SYSTEM_PROMPT_PATH, workspace)
    prompt = prompt_path.read_text(encoding="utf-8") if prompt_path else DEFAULT_SYSTEM_PROMPT

    metadata = skills.metadata_prompt() if skills is not None else ""
    prompt = prompt.replace(SKILLS_PLACEHOLDER, metadata)

    if "## Execution Environment" not in prompt:
        prompt += (
            "\n\n## Execution Environment\n"
            f"- OS: {platform.system()} ({platform.machine()})\n"
            "- Default shell for tool 'bash': bash -lc\n"
            f"- Path separator: {os.sep}"
        )
    if "Current Workspace" not in prompt:
        prompt += (
            "\n\n## Current Workspace\n"
            f"You are currently working in: `{workspace.resolve()}`\n"
            "All relative paths will be resolved relative to this directory."
        )
    return prompt


async def build_agent(
    config: Settings,
    workspace: Optional[Path] = None,
    observer: Optional[AgentObserver] = None,
    backend: Optional[ChatBackend] = None,
    pool: Optional[McpConnectionPool] = None,
) -> AgentBundle:
    """
    Create an :class:`Agent` wired to the tools, limits and backend described by *config*.

    A *pool* passed in is shared with the caller, who keeps the duty of closing it.
    """
    workspace = Path(workspace or config.WORKSPACE_DIR).expanduser()
    workspace.mkdir(parents=True, exist_ok=True)

    if backend is None:
        backend = load_backend(config, observer)

    tools, skills = build_tools(config, workspace)
    owns_pool = pool is None
    if pool is None:
        pool = McpConnectionPool()
    if config.ENABLE_MCP:
        mcp_path = find_config_file(config.MCP_CONFIG_PATH, workspace)
        if mcp_path is not None:
            local_names = {tool.name for tool in tools}
            for tool in await load_mcp_tools(mcp_path, pool):
                if tool.name in local_names:
                    logger.warning("MCP tool '%s' shadows a built-in tool; skipped", tool.name)
                    continue
                tools.append(tool)
            logger.info("Loaded MCP tools from %s", mcp_path)

    agent = Agent(
        backend=backend,
        system_prompt=build_system_prompt(config, workspace, skills),
        tools=tools,
        max_steps=config.MAX_STEPS,
        token_limit=config.TOKEN_LIMIT,
        completion_reserve=config.COMPLETION_RESERVE,
        retry_policy=config.retry_policy(),
        observer=observer,
        estimator=load_estimator(config.TOKEN_ESTIMATOR),
        run_log=AgentRunLog(Path(config.LOG_DIR) if config.LOG_DIR else None),
        workspace=workspace,
        arg_preview_chars=config.ARG_PREVIEW_CHARS,
        result_preview_chars=config.RESULT_PREVIEW_CHARS,
        summary_word_limit=config.SUMMARY_WORD_LIMIT,
    )
    return AgentBundle(agent=agent, mcp_pool=pool, skills=skills, tools=tools, owns_pool=owns_pool)
