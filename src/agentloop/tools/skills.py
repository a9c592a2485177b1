"""
Skill discovery and the ``get_skill`` tool.

A skill is a directory holding a ``SKILL.md`` file with YAML front-matter::

    ---
    name: pdf
    description: Extract text and tables from PDF files
    ---
    Body with instructions, e.g. `scripts/extract.py` or "see reference.md."

Relative references in the body are rewritten to absolute paths when the target exists, so the model
can open them with ``read_file`` or run them with ``bash`` regardless of the workspace.
"""

import logging
import re
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

import yaml
from pydantic import (
    BaseModel,
    ValidationError,
)

from agentloop.tools import (
    Tool,
    ToolExecutionError,
    require_str,
)

logger = logging.getLogger(__name__)

SKILL_FILE = "SKILL.md"

_FRONTMATTER = re.compile(r"\A---\r?\n(.*?)\r?\n---\r?\n(.*)\Z", re.DOTALL)
_RESOURCE_DIRS = r"(?:scripts|examples|templates|reference)"
_PYTHON_CMD = re.compile(rf"(?m)^(?P<lead>\s*python\s+)(?P<rel>{_RESOURCE_DIRS}/\S+)")
_BACKTICKED = re.compile(rf"`(?P<rel>{_RESOURCE_DIRS}/[^\s`)]+)`")
_DOC_MENTION = re.compile(
    r"(?i)(?P<prefix>(?:see|read|refer to|check)\s+)"
    r"(?P<file>[A-Za-z0-9_-]+\.(?:md|txt|json|yaml))(?P<suffix>[.,;\s])"
)
_MD_LINK = re.compile(
    r"(?i)(?P<prefix>(?:Read|See|Check|Refer to|Load|View)\s+)?"
    r"\[(?P<text>`?[^`\]]+`?)\]\((?P<path>(?:\./)?[^)]+\.(?:md|txt|json|yaml|js|py|html))\)"
)


class Skill(BaseModel):
    name: str
    description: str = ""
    content: str
    path: Optional[Path] = None

    def render(self) -> str:
        return f"# Skill: {self.name}\n\n{self.description}\n\n---\n\n{self.content}"


def rewrite_skill_paths(content: str, skill_dir: Path) -> str:
    """Replace relative resource references in *content* with absolute paths that exist."""

    def existing(rel: str) -> Optional[Path]:
        candidate = skill_dir / rel.removeprefix("./")
        return candidate if candidate.exists() else None

    def python_cmd(m: re.Match) -> str:
        abs_path = existing(m["rel"])
        return f"{m['lead']}{abs_path}" if abs_path else m[0]

    def backticked(m: re.Match) -> str:
        abs_path = existing(m["rel"])
        return f"`{abs_path}`" if abs_path else m[0]

    def doc_mention(m: re.Match) -> str:
        abs_path = existing(m["file"])
        if abs_path is None:
            return m[0]
        return f"{m['prefix']}`{abs_path}` (use read_file to access){m['suffix']}"

    def md_link(m: re.Match) -> str:
        abs_path = existing(m["path"])
        if abs_path is None:
            return m[0]
        return f"{m['prefix'] or ''}[{m['text']}](`{abs_path}`) (use read_file to access)"

    result = _PYTHON_CMD.sub(python_cmd, content)
    result = _BACKTICKED.sub(backticked, result)
    result = _DOC_MENTION.sub(doc_mention, result)
    return _MD_LINK.sub(md_link, result)


class SkillLoader:
    """Finds and parses every ``SKILL.md`` below a root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.loaded: Dict[str, Skill] = {}

    def discover(self) -> int:
        """Load all skills under :attr:`root`; returns how many are known afterwards."""
        if not self.root.exists():
            logger.info("Skills directory %s does not exist", self.root)
            return 0
        for path in sorted(self.root.rglob(SKILL_FILE)):
            try:
                self.load_file(path)
            except (OSError, yaml.YAMLError, ValidationError) as exc:
                logger.warning("Skipping skill %s: %s", path, exc)
        logger.info("Loaded %d skills from %s", len(self.loaded), self.root)
        return len(self.loaded)

    def load_file(self, path: Path) -> Optional[Skill]:
        match = _FRONTMATTER.match(path.read_text(encoding="utf-8"))
        if match is None:
            return None
        meta = yaml.safe_load(match.group(1)) or {}
        if not isinstance(meta, dict) or not meta.get("name"):
            return None
        skill = Skill(
            name=str(meta["name"]),
            description=str(meta.get("description") or ""),
            content=rewrite_skill_paths(match.group(2).strip(), path.parent),
            path=path,
        )
        self.loaded[skill.name] = skill
        return skill

    def list(self) -> List[str]:
        return sorted(self.loaded)

    def get(self, name: str) -> Optional[Skill]:
        return self.loaded.get(name)

    def metadata_prompt(self) -> str:
        """Markdown list of skills for the system prompt ('' when none are loaded)."""
        if not self.loaded:
            return ""
        lines = ["## Available Skills"]
        for name in self.list():
            lines.append(f"- `{name}`: {self.loaded[name].description}")
        return "\n".join(lines) + "\n"


class GetSkillTool(Tool):
    name = "get_skill"
    description = "Get the full content of a named skill."
    parameters = {
        "type": "object",
        "properties": {"skill_name": {"type": "string", "description": "Skill name"}},
        "required": ["skill_name"],
    }

    def __init__(self, loader: SkillLoader):
        self.loader = loader

    async def run(self, arguments: Dict[str, Any]) -> str:
        name = require_str(arguments, "skill_name")
        skill = self.loader.get(name)
        if skill is None:
            raise ToolExecutionError(f"Skill '{name}' not found")
        return skill.render()
