"""Tool data model shared by the agent core and the concrete tool modules.

A tool is a named async (or sync) callable taking a single string input and
returning a string. Failures are reported as ``"Error: ..."`` strings by
convention; exceptions are unexpected but still caught by the execution
wrapper in ``agent.tool_executor``.

Dependency direction:
    agent/* ──> tools/registry.py <── tools/memory_tool.py
    (This module imports nothing from the agent package.)
"""

import enum
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

from hive_constants import TAB_TOOL_PREFIX

ToolResult = Union[str, Awaitable[str]]
ToolFunc = Callable[..., ToolResult]


class ToolKind(enum.Enum):
    """How a tool relates to the browser debug session."""

    # Creates, lists, selects or closes tabs. Usable without a live session.
    TAB_LIFECYCLE = "tab_lifecycle"
    # Everything else. Needs a healthy session to run.
    SESSION_DEPENDENT = "session_dependent"

    @classmethod
    def for_name(cls, name: str) -> "ToolKind":
        if name.startswith(TAB_TOOL_PREFIX):
            return cls.TAB_LIFECYCLE
        return cls.SESSION_DEPENDENT


@dataclass(frozen=True)
class ToolExecutionContext:
    """Extra information handed to a tool that ran after user approval."""

    requires_approval: bool = False
    approval_reason: str = ""


@dataclass
class Tool:
    """A registered tool.

    ``kind`` is resolved from the name once, at construction, unless given
    explicitly.
    """

    name: str
    description: str
    func: ToolFunc
    kind: Optional[ToolKind] = field(default=None)

    def __post_init__(self):
        if self.kind is None:
            self.kind = ToolKind.for_name(self.name)

    @property
    def is_tab_tool(self) -> bool:
        return self.kind is ToolKind.TAB_LIFECYCLE

    async def invoke(self, tool_input: str, context: Optional[ToolExecutionContext] = None) -> str:
        """Call the tool, awaiting the result if the function is async."""
        if context is None:
            result = self.func(tool_input)
        else:
            result = self.func(tool_input, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    def with_func(self, func: ToolFunc) -> "Tool":
        """Return a copy of this tool with a different function."""
        return Tool(name=self.name, description=self.description, func=func, kind=self.kind)


def coerce_tool(obj: Any) -> Tool:
    """Accept a ``Tool`` or any object/dict exposing name, description and func."""
    if isinstance(obj, Tool):
        return obj
    if isinstance(obj, dict):
        return Tool(name=obj["name"], description=obj.get("description", ""), func=obj["func"])
    name = getattr(obj, "name", None)
    func = getattr(obj, "func", None)
    if not name or not callable(func):
        raise TypeError(f"Unsupported tool object: {obj!r}")
    return Tool(name=name, description=getattr(obj, "description", "") or "", func=func)


def tool_names(tools: Iterable[Tool]) -> List[str]:
    return [t.name for t in tools]
