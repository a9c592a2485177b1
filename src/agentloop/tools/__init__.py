"""
Tool contract and registry for agentloop.

Every capability the model may invoke is a :class:`Tool`.  Concrete tools implement :meth:`Tool.run`
and may raise :class:`ToolExecutionError` (or anything else); the public :meth:`Tool.execute`
wrapper turns every failure into a ``ToolResult(success=False)`` so the loop never sees an exception
from a tool.

Plain Python functions can be exposed with the :func:`function_tool` decorator, which derives the
JSON parameter schema from the signature:

    @function_tool("echo")
    def echo(text: str) -> str:
        \"\"\"Echo the input text back to the caller.\"\"\"
        return text
"""

import inspect
import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Union,
    get_type_hints,
)

from agentloop.core.schema import (
    ToolDescriptor,
    ToolResult,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised inside a tool when it cannot do what was asked."""


class Tool(ABC):
    """A named capability with a JSON-schema described argument object."""

    name: str = ""
    description: str = ""
    parameters: Dict[str, Any] = {"type": "object", "properties": {}}

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(name=self.name, description=self.description, parameters=self.parameters)

    async def execute(self, arguments: Any) -> ToolResult:
        """Run the tool.  Never raises; malformed *arguments* produce a failed result."""
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, Mapping):
            return ToolResult.fail(
                f"Invalid arguments for tool '{self.name}': expected an object, "
                f"got {type(arguments).__name__}"
            )
        try:
            outcome = await self.run(dict(arguments))
        except ToolExecutionError as exc:
            logger.debug("Tool '%s' failed: %s", self.name, exc)
            return ToolResult.fail(str(exc) or f"Tool '{self.name}' failed")
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unhandled error in tool '%s'", self.name)
            return ToolResult.fail(f"Tool '{self.name}' raised an error: {exc}")
        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult.ok(outcome)

    @abstractmethod
    async def run(self, arguments: Dict[str, Any]) -> Union[ToolResult, str]:
        """Do the work.  Return text (success) or a full :class:`ToolResult`."""


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------
def require_str(arguments: Mapping[str, Any], key: str) -> str:
    """Fetch a mandatory string argument or raise :class:`ToolExecutionError`."""
    value = arguments.get(key)
    if value is None:
        raise ToolExecutionError(f"missing '{key}'")
    if not isinstance(value, str):
        raise ToolExecutionError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def optional_str(arguments: Mapping[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    value = arguments.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ToolExecutionError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """Name-keyed tool map for one session.  Names are unique and matched exactly."""

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """
        Add *tool* to the registry.

        Raises
        ------
        ValueError
            If a tool with the same name is already registered.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered.")
        logger.debug("Registering tool '%s'", tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return sorted(self._tools)

    def describe(self, name: str) -> Optional[ToolDescriptor]:
        tool = self._tools.get(name)
        return tool.descriptor() if tool is not None else None

    def descriptors(self) -> List[ToolDescriptor]:
        """Descriptors in registration order, as advertised to the model."""
        return [tool.descriptor() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


# ---------------------------------------------------------------------------
# Function tools
# ---------------------------------------------------------------------------
_JSON_TYPES: Dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def schema_from_signature(fn: Callable) -> Dict[str, Any]:
    """Build a JSON object schema from *fn*'s parameters and type hints."""
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        hint = type_hints.get(param_name)
        json_type = _JSON_TYPES.get(getattr(hint, "__origin__", hint))  # type: ignore[arg-type]
        properties[param_name] = {"type": json_type} if json_type else {}
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class FunctionTool(Tool):
    """Adapts a plain (sync or async) callable to the :class:`Tool` contract."""

    def __init__(self, fn: Callable, name: str, description: Optional[str] = None):
        self._fn = fn
        self._signature = inspect.signature(fn)
        self.name = name
        self.description = description or inspect.getdoc(fn) or ""
        self.parameters = schema_from_signature(fn)

    async def run(self, arguments: Dict[str, Any]) -> str:
        try:
            self._signature.bind(**arguments)
        except TypeError as exc:
            raise ToolExecutionError(f"Invalid arguments for tool '{self.name}': {exc}") from exc

        result = self._fn(**arguments)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, str):
            return result
        return json.dumps(result, ensure_ascii=False, default=str)


def function_tool(name: str, description: Optional[str] = None) -> Callable[[Callable], FunctionTool]:
    """Decorator turning a function into a :class:`FunctionTool` named *name*."""

    def wrapper(fn: Callable) -> FunctionTool:
        return FunctionTool(fn, name=name, description=description)

    return wrapper
