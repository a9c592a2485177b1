"""Built-in tools and the tool contract."""

import asyncio
import json
from pathlib import Path

import pytest

from agentloop.core.schema import ToolResult
from agentloop.tools import (
    FunctionTool,
    Tool,
    ToolExecutionError,
    ToolRegistry,
    function_tool,
)
from agentloop.tools.bash import BashTool
from agentloop.tools.files import (
    EditFileTool,
    ReadFileTool,
    WriteFileTool,
)
from agentloop.tools.notes import (
    NoteStore,
    RecallNotesTool,
    RecordNoteTool,
)
from agentloop.tools.skills import (
    GetSkillTool,
    SkillLoader,
    rewrite_skill_paths,
)


def run(tool: Tool, **arguments) -> ToolResult:
    return asyncio.run(tool.execute(arguments))


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------
class _Failing(Tool):
    name = "failing"

    async def run(self, arguments):
        raise ToolExecutionError("nope")


def test_tool_execution_error_becomes_failed_result() -> None:
    result = run(_Failing())
    assert not result.success
    assert result.error == "nope"


def test_function_tool_schema_and_result() -> None:
    @function_tool("scale", description="Scale a number")
    def scale(value: float, factor: int = 2, tags: list | None = None) -> dict:
        return {"value": value * factor}

    assert isinstance(scale, FunctionTool)
    assert scale.description == "Scale a number"
    assert scale.parameters == {
        "type": "object",
        "properties": {
            "value": {"type": "number"},
            "factor": {"type": "integer"},
            "tags": {},
        },
        "required": ["value"],
    }
    result = run(scale, value=1.5)
    assert result.success
    assert json.loads(result.content) == {"value": 3.0}


def test_function_tool_docstring_description() -> None:
    @function_tool("shout")
    def shout(text: str) -> str:
        """Upper-case the text."""
        return text.upper()

    assert shout.descriptor().description == "Upper-case the text."
    assert run(shout, text="hi").content == "HI"
    assert "Invalid arguments for tool 'shout'" in run(shout, txt="hi").error


def test_registry_rejects_duplicate_names() -> None:
    @function_tool("dup")
    def first() -> str:
        return "1"

    @function_tool("dup")
    def second() -> str:
        return "2"

    registry = ToolRegistry([first])
    with pytest.raises(ValueError, match="already registered"):
        registry.register(second)
    assert "dup" in registry
    assert len(registry) == 1
    assert registry.get("DUP") is None


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------
def test_write_read_edit(tmp_path: Path) -> None:
    write = run(WriteFileTool(tmp_path), path="sub/notes.txt", content="hello world, hello")
    assert write.success
    assert (tmp_path / "sub" / "notes.txt").read_text(encoding="utf-8") == "hello world, hello"
    assert write.content.startswith("wrote 18 bytes")

    assert run(ReadFileTool(tmp_path), path="sub/notes.txt").content == "hello world, hello"

    edit = run(EditFileTool(tmp_path), path="sub/notes.txt", old_str="hello", new_str="bye")
    assert edit.success
    assert "replaced 2 occurrence(s)" in edit.content
    assert (tmp_path / "sub" / "notes.txt").read_text(encoding="utf-8") == "bye world, bye"


def test_file_errors(tmp_path: Path) -> None:
    missing = run(ReadFileTool(tmp_path), path="missing.txt")
    assert not missing.success
    assert missing.error.startswith("read error")

    (tmp_path / "a.txt").write_text("abc", encoding="utf-8")
    assert "not found" in run(EditFileTool(tmp_path), path="a.txt", old_str="zzz", new_str="").error
    assert "must not be empty" in run(EditFileTool(tmp_path), path="a.txt", old_str="", new_str="x").error
    assert run(ReadFileTool(tmp_path)).error == "missing 'path'"


def test_absolute_paths_are_used_as_is(tmp_path: Path) -> None:
    target = tmp_path / "elsewhere" / "f.txt"
    assert run(WriteFileTool(tmp_path / "ws"), path=str(target), content="x").success
    assert target.read_text(encoding="utf-8") == "x"


# ---------------------------------------------------------------------------
# Bash
# ---------------------------------------------------------------------------
def test_bash_success_and_exit_code(tmp_path: Path) -> None:
    ok = run(BashTool(tmp_path), command="echo hi")
    assert ok.success
    assert ok.content == "hi\n"

    pwd = run(BashTool(tmp_path), command="pwd")
    assert Path(pwd.content.strip()).resolve() == tmp_path.resolve()

    failed = run(BashTool(tmp_path), command="echo oops >&2; exit 3")
    assert not failed.success
    assert failed.error.startswith("exit: 3")
    assert "oops" in failed.content


def test_bash_timeout(tmp_path: Path) -> None:
    result = run(BashTool(tmp_path, timeout=0.2), command="sleep 5")
    assert not result.success
    assert "timed out" in result.error


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------
def test_record_and_recall_notes(tmp_path: Path) -> None:
    store = NoteStore(tmp_path / "memory.json")
    recall = RecallNotesTool(store)
    assert run(recall).content == "No notes recorded yet."

    assert run(RecordNoteTool(store), content="uses poetry", category="project").content == (
        "Recorded note: uses poetry (category: project)"
    )
    run(RecordNoteTool(store), content="likes tabs")

    everything = run(recall).content
    assert everything.startswith("Recorded Notes:\n1. [project] uses poetry")
    assert "2. [general] likes tabs" in everything
    assert "   (recorded at " in everything

    only_project = run(recall, category="project").content
    assert "likes tabs" not in only_project
    assert run(recall, category="other").content == "No notes found in category: other"
    assert len(json.loads((tmp_path / "memory.json").read_text(encoding="utf-8"))) == 2


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------
def _write_skill(root: Path) -> Path:
    skill_dir = root / "pdf"
    (skill_dir / "scripts").mkdir(parents=True)
    (skill_dir / "scripts" / "extract.py").write_text("print('x')\n", encoding="utf-8")
    (skill_dir / "reference.md").write_text("# ref\n", encoding="utf-8")
    (skill_dir / "SKILL.md").write_text(
        "---\n"
        "name: pdf\n"
        "description: Work with PDF files\n"
        "---\n"
        "Run `scripts/extract.py` first.\n"
        "For details see reference.md.\n"
        "Missing: `scripts/absent.py`\n",
        encoding="utf-8",
    )
    return skill_dir


def test_skill_discovery_and_get_skill(tmp_path: Path) -> None:
    skill_dir = _write_skill(tmp_path)
    (tmp_path / "broken").mkdir()
    (tmp_path / "broken" / "SKILL.md").write_text("no front matter", encoding="utf-8")

    loader = SkillLoader(tmp_path)
    assert loader.discover() == 1
    assert loader.list() == ["pdf"]
    assert loader.metadata_prompt() == "## Available Skills\n- `pdf`: Work with PDF files\n"

    content = run(GetSkillTool(loader), skill_name="pdf").content
    assert content.startswith("# Skill: pdf\n\nWork with PDF files")
    assert f"`{skill_dir / 'scripts' / 'extract.py'}`" in content
    assert f"see `{skill_dir / 'reference.md'}` (use read_file to access)." in content
    assert "`scripts/absent.py`" in content

    assert run(GetSkillTool(loader), skill_name="docx").error == "Skill 'docx' not found"


def test_rewrite_markdown_links(tmp_path: Path) -> None:
    (tmp_path / "forms.md").write_text("", encoding="utf-8")
    rewritten = rewrite_skill_paths("Read [forms](./forms.md) and [gone](gone.md)", tmp_path)
    assert f"Read [forms](`{tmp_path / 'forms.md'}`) (use read_file to access)" in rewritten
    assert "[gone](gone.md)" in rewritten


def test_missing_skills_dir(tmp_path: Path) -> None:
    loader = SkillLoader(tmp_path / "none")
    assert loader.discover() == 0
    assert loader.metadata_prompt() == ""


def test_registry_describe_and_order() -> None:
    @function_tool("zeta")
    def zeta() -> str:
        return "z"

    @function_tool("alpha")
    def alpha(x: str) -> str:
        return x

    registry = ToolRegistry([zeta, alpha])
    assert registry.names() == ["alpha", "zeta"]
    assert [d.name for d in registry.descriptors()] == ["zeta", "alpha"]
    assert registry.describe("alpha").parameters["required"] == ["x"]
    assert registry.describe("missing") is None
