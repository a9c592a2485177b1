"""
Installation helpers behind ``agentloop skills fetch`` and ``agentloop config init``.

Skills are fetched with ``git`` (a shallow clone, or a fast-forward pull when the destination is
already a checkout).  The per-user config directory is seeded from ``./config/`` when the current
directory carries templates, and from built-in defaults otherwise.
"""

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import (
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
)

import yaml

from agentloop.agent.factory import (
    DEFAULT_SYSTEM_PROMPT,
    SKILLS_PLACEHOLDER,
)
from agentloop.config import (
    PLACEHOLDER_API_KEY,
    SECRET_FIELDS,
    USER_CONFIG_DIR,
    Settings,
)

logger = logging.getLogger(__name__)

DEFAULT_SKILLS_SOURCE = "https://github.com/anthropics/skills"
DEFAULT_SKILLS_DEST = USER_CONFIG_DIR / "skills"

GitRunner = Callable[[Sequence[str]], int]


class InstallError(RuntimeError):
    """Raised when skills or config templates cannot be installed."""


def run_git(args: Sequence[str]) -> int:
    """Run ``git`` with *args*, inheriting the terminal; returns the exit status."""
    git = shutil.which("git")
    if git is None:
        raise InstallError("git executable not found on PATH; install git or clone the skills manually")
    logger.info("Running git %s", " ".join(args))
    return subprocess.run([git, *args], check=False).returncode


def fetch_skills(source: str, dest: Path, force: bool = False, git: GitRunner = run_git) -> str:
    """
    Install the skills repository *source* into *dest*.

    An existing checkout is updated with ``git pull --ff-only``.  Any other existing directory is
    only replaced when *force* is set.

    Returns
    -------
    str
        ``"updated"`` or ``"cloned"``.
    """
    dest = Path(dest).expanduser()
    if dest.exists():
        if (dest / ".git").exists():
            logger.info("Updating skills checkout %s", dest)
            status = git(["-C", str(dest), "pull", "--ff-only"])
            if status != 0:
                raise InstallError(f"git pull failed (exit {status})")
            return "updated"
        if not force:
            raise InstallError(
                f"destination exists and is not a git repo: {dest} (use --force to overwrite)"
            )
        logger.warning("Removing %s before cloning", dest)
        shutil.rmtree(dest)

    dest.parent.mkdir(parents=True, exist_ok=True)
    status = git(["clone", "--depth", "1", source, str(dest)])
    if status != 0:
        raise InstallError(f"git clone failed (exit {status})")
    return "cloned"


# ---------------------------------------------------------------------------
# User config templates
# ---------------------------------------------------------------------------
def default_config_yaml() -> str:
    values = {
        name: field.default for name, field in Settings.model_fields.items() if name not in SECRET_FIELDS
    }
    values = {"API_KEY": PLACEHOLDER_API_KEY, **values}
    return yaml.safe_dump(values, sort_keys=False)


def default_system_prompt() -> str:
    return f"{DEFAULT_SYSTEM_PROMPT}\n\n{SKILLS_PLACEHOLDER}\n"


def default_mcp_json() -> str:
    example = {
        "mcpServers": {
            "filesystem": {
                "command": "npx",
                "args": ["-y", "@modelcontextprotocol/server-filesystem", "."],
                "disabled": True,
            }
        }
    }
    return json.dumps(example, indent=2) + "\n"


# target name -> (template name under ./config/, built-in fallback)
TEMPLATES: Dict[str, tuple[str, Callable[[], str]]] = {
    "config.yaml": ("config-example.yaml", default_config_yaml),
    "system_prompt.md": ("system_prompt.md", default_system_prompt),
    "mcp.json": ("mcp.json", default_mcp_json),
}


def init_user_config(
    user_dir: Path = USER_CONFIG_DIR,
    force: bool = False,
    templates_dir: Optional[Path] = None,
) -> List[Path]:
    """
    Write config.yaml, system_prompt.md and mcp.json into *user_dir*.

    Existing files are kept unless *force* is set.  Returns the paths that were written.
    """
    templates_dir = templates_dir if templates_dir is not None else Path.cwd() / "config"
    user_dir = Path(user_dir).expanduser()
    try:
        user_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise InstallError(f"Cannot create {user_dir}: {exc}") from exc

    written: List[Path] = []
    for target, (template, fallback) in TEMPLATES.items():
        destination = user_dir / target
        if destination.exists() and not force:
            logger.info("Keeping existing %s", destination)
            continue
        source = templates_dir / template
        content = source.read_text(encoding="utf-8") if source.is_file() else fallback()
        destination.write_text(content, encoding="utf-8")
        written.append(destination)
    return written
