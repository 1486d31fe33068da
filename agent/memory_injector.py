"""Domain memory injection.

Before the first model call on a domain, the agent asks the memory lookup
tool for task patterns that worked there before and, if any exist, appends a
single user turn summarizing them. Lookup and parse failures degrade to "no
memories"; they are logged and never raised.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import TypeAdapter, ValidationError

from hive_constants import MEMORY_LOOKUP_TOOL
from tools.memory_tool import MemoryRecord
from tools.registry import Tool

logger = logging.getLogger(__name__)

_RECORDS = TypeAdapter(List[MemoryRecord])

_NO_RESULT_PREFIXES = ("No memories found", "Error")


def format_memory_message(domain: str, memories: List[MemoryRecord]) -> str:
    patterns = "\n\n".join(
        f"Task: {m.task_description}\nSteps: {' → '.join(m.tool_sequence)}" for m in memories
    )
    context = (
        f"I found {len(memories)} memories for {domain}. Here are patterns that worked before:\n\n"
        f"{patterns}"
    )
    return (
        "Before we start, here are some patterns that worked well for tasks on this website before:\n\n"
        f"{context}\n\nYou can adapt these patterns to the current task if relevant."
    )


class MemoryInjector:
    """Looks up per-domain memories through the registered lookup tool."""

    def __init__(self, tools: Iterable[Tool] = ()):
        self._memory_tool: Optional[Tool] = None
        self.update_memory_tool(tools)

    @property
    def memory_tool(self) -> Optional[Tool]:
        return self._memory_tool

    def update_memory_tool(self, tools: Iterable[Tool]) -> None:
        """Re-resolve the lookup tool by name (the tool set may have been swapped)."""
        self._memory_tool = next((t for t in tools if t.name == MEMORY_LOOKUP_TOOL), None)

    async def lookup_memories(self, domain: str, messages: List[Dict[str, Any]]) -> int:
        """Append a memory summary for ``domain`` to ``messages``.

        Returns the number of memories injected (0 when nothing was appended).
        """
        if self._memory_tool is None:
            return 0

        try:
            result = await self._memory_tool.invoke(domain)
        except Exception as e:
            logger.warning("Error looking up memories: %s", e)
            return 0

        if not result or result.startswith(_NO_RESULT_PREFIXES):
            return 0

        try:
            memories = _RECORDS.validate_python(json.loads(result))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning("Error parsing memory results: %s", e)
            return 0

        if not memories:
            return 0

        messages.append({"role": "user", "content": format_memory_message(domain, memories)})
        logger.info("Injected %d memories for %s", len(memories), domain)
        return len(memories)
