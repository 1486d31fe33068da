#!/usr/bin/env python3
"""
Memory Tool Module - Per-Domain Task Memories

Remembers which tool sequences accomplished a task on a website so the agent
can replay them the next time it is on the same domain. Memories are keyed by
normalized domain (lowercase, no scheme, no ``www.``, no path).

The store here is in-process only; nothing is written to disk. A host that
wants persistence supplies its own store with the same methods.

Tools exposed to the model (all take a single string input):
  - save_memory        JSON {"domain", "taskDescription", "toolSequence"}
  - lookup_memories    domain -> JSON array of records, newest first
  - get_all_memories   (ignored input) -> JSON array of every record
  - delete_memory      numeric id
  - clear_all_memories (ignored input)

Every tool returns a string; failures are "Error ..." strings, never raised.
"""

import json
import logging
import threading
import time
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hive_constants import MEMORY_LOOKUP_TOOL, MEMORY_SAVE_TOOL
from tools.registry import Tool

logger = logging.getLogger(__name__)


class MemoryRecord(BaseModel):
    """One remembered task on one domain."""

    model_config = ConfigDict(populate_by_name=True)

    domain: str = ""
    task_description: str = Field(alias="taskDescription")
    tool_sequence: List[str] = Field(default_factory=list, alias="toolSequence")
    id: Optional[int] = None
    created_at: Optional[int] = Field(default=None, alias="createdAt")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def normalize_domain(value: str) -> str:
    """Canonical domain form: ``https://www.Example.com/a`` -> ``example.com``."""
    if not value:
        return ""
    normalized = value.strip().lower()
    if "://" in normalized:
        try:
            normalized = urlparse(normalized).hostname or normalized
        except ValueError as e:
            logger.warning("Error parsing URL %r: %s", value, e)
    if normalized.startswith("www."):
        normalized = normalized[4:]
    return normalized.split("/")[0]


class MemoryStore:
    """Thread-safe in-memory store of ``MemoryRecord`` objects."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[int, MemoryRecord] = {}
        self._next_id = 1

    def store_memory(self, record: MemoryRecord) -> int:
        domain = normalize_domain(record.domain)
        with self._lock:
            memory_id = self._next_id
            self._next_id += 1
            created = record.created_at or int(time.time() * 1000)
            self._records[memory_id] = record.model_copy(
                update={"domain": domain, "id": memory_id, "created_at": created}
            )
        return memory_id

    def get_memories_by_domain(self, domain: str) -> List[MemoryRecord]:
        domain = normalize_domain(domain)
        with self._lock:
            matches = [r for r in self._records.values() if r.domain == domain]
        # Newest first; ids break ties for records created in the same ms
        return sorted(matches, key=lambda r: (r.created_at or 0, r.id or 0), reverse=True)

    def get_all_memories(self) -> List[MemoryRecord]:
        with self._lock:
            return list(self._records.values())

    def delete_memory(self, memory_id: int) -> bool:
        with self._lock:
            return self._records.pop(memory_id, None) is not None

    def clear_memories(self) -> None:
        with self._lock:
            self._records.clear()


def _dump(records: List[MemoryRecord]) -> str:
    return json.dumps([r.to_payload() for r in records], indent=2, ensure_ascii=False)


def build_memory_tools(store: MemoryStore) -> List[Tool]:
    """Create the memory tools bound to ``store``."""

    def save_memory(tool_input: str) -> str:
        try:
            data = json.loads(tool_input)
        except json.JSONDecodeError as e:
            return f"Error saving memory: {e}"
        if not isinstance(data, dict) or not all(
            data.get(k) for k in ("domain", "taskDescription", "toolSequence")
        ):
            return "Error: Missing required fields. Please provide domain, taskDescription, and toolSequence."
        if not normalize_domain(str(data["domain"])):
            return "Error: Invalid domain provided."
        try:
            record = MemoryRecord.model_validate(data)
        except ValidationError as e:
            return f"Error saving memory: {e}"
        memory_id = store.store_memory(record)
        return f"Memory saved successfully with ID: {memory_id}"

    def lookup_memories(tool_input: str) -> str:
        domain = normalize_domain(tool_input or "")
        if not domain:
            return "Error: Please provide a valid domain to lookup memories for."
        memories = store.get_memories_by_domain(domain)
        if not memories:
            return f"No memories found for domain: {domain}"
        return _dump(memories)

    def get_all_memories(tool_input: str = "") -> str:
        memories = store.get_all_memories()
        if not memories:
            return "No memories found."
        return _dump(memories)

    def delete_memory(tool_input: str) -> str:
        try:
            memory_id = int(tool_input.strip())
        except (AttributeError, ValueError):
            return "Error: Please provide a valid numeric ID."
        if not store.delete_memory(memory_id):
            return f"Error: No memory found with ID {memory_id}."
        return f"Memory with ID {memory_id} deleted successfully."

    def clear_all_memories(tool_input: str = "") -> str:
        store.clear_memories()
        return "All memories cleared successfully."

    return [
        Tool(
            name=MEMORY_SAVE_TOOL,
            description=(
                "Save a memory of how to accomplish a specific task on a website. Use this when you "
                "want to remember a useful sequence of actions for future reference. Input is JSON: "
                '{"domain": ..., "taskDescription": ..., "toolSequence": [...]}'
            ),
            func=save_memory,
        ),
        Tool(
            name=MEMORY_LOOKUP_TOOL,
            description=(
                "Look up stored memories for a specific website domain. Use this as your FIRST step "
                "when starting a task on a website to check if there are any saved patterns you can "
                "reuse. Always call this with the current domain (e.g., 'www.google.com')."
            ),
            func=lookup_memories,
        ),
        Tool(
            name="get_all_memories",
            description="Retrieve all stored memories across all domains.",
            func=get_all_memories,
        ),
        Tool(
            name="delete_memory",
            description="Delete a specific memory by its numeric ID. Use this when a memory is no longer accurate.",
            func=delete_memory,
        ),
        Tool(
            name="clear_all_memories",
            description="Clear all stored memories across all domains. Use with caution.",
            func=clear_all_memories,
        ),
    ]
