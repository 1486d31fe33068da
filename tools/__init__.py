#!/usr/bin/env python3
"""
Tools Package

Tool data model and the reference tool implementations the agent core needs
to run end to end. Concrete browser actions are provided by the host.

- registry: Tool, ToolKind, ToolExecutionContext
- memory_tool: per-domain task memories (save_memory, lookup_memories, ...)
- approval: correlation of approval requests and user responses
- browser_session: active page tracking and the session liveness probe
"""

from .registry import Tool, ToolExecutionContext, ToolKind, coerce_tool, tool_names
from .memory_tool import MemoryRecord, MemoryStore, build_memory_tools, normalize_domain
from .approval import (
    ApprovalCorrelator,
    PendingApproval,
    get_correlator,
    handle_approval_response,
    request_approval,
)
from .browser_session import ActivePageTracker, PageProbe, always_healthy, read_page_context

__all__ = [
    "Tool",
    "ToolExecutionContext",
    "ToolKind",
    "coerce_tool",
    "tool_names",
    "MemoryRecord",
    "MemoryStore",
    "build_memory_tools",
    "normalize_domain",
    "ApprovalCorrelator",
    "PendingApproval",
    "get_correlator",
    "handle_approval_response",
    "request_approval",
    "ActivePageTracker",
    "PageProbe",
    "always_healthy",
    "read_page_context",
]
