"""System prompt assembly with caching.

Owns the prompt-building logic for one agent. The prompt is a pure function
of three pieces of state: the tool list, the current page context, and the
detected client platform.

Caching contract:
    - get_system_prompt() returns the cached value on subsequent calls
    - update_tools() and set_current_page_context() invalidate the cache
    - After invalidation, the next get_system_prompt() builds a fresh prompt
"""

import os
import platform as _platform
from typing import Iterable, List, Optional, Tuple

from agent.prompt_builder import (
    CANONICAL_SEQUENCE,
    DEFAULT_AGENT_IDENTITY,
    MODIFIER_KEY_HINTS,
    TOOL_CALL_SYNTAX,
    build_page_context,
    build_tools_section,
    is_mac_platform,
)
from tools.registry import Tool


def detect_platform(explicit: Optional[str] = None) -> str:
    """Client platform: explicit value, then HIVE_CLIENT_PLATFORM, then this host."""
    if explicit:
        return explicit
    return os.getenv("HIVE_CLIENT_PLATFORM") or _platform.system()


class PromptAssembler:
    """Assembles the system prompt from layered components.

    Args:
        tools: Tools to list in the prompt, in registration order.
        platform: Client platform name (e.g. "Darwin", "Windows"). Detected
            when omitted.
    """

    def __init__(self, tools: Iterable[Tool] = (), *, platform: Optional[str] = None):
        self._tools: List[Tool] = list(tools)
        self._platform = detect_platform(platform)
        self._page_context: Optional[Tuple[str, str]] = None
        self._cached_prompt: Optional[str] = None

    @property
    def platform(self) -> str:
        return self._platform

    @property
    def current_url(self) -> Optional[str]:
        return self._page_context[0] if self._page_context else None

    def get_system_prompt(self) -> str:
        """Assemble the full system prompt from all layers."""
        if self._cached_prompt is not None:
            return self._cached_prompt

        prompt_parts = [
            DEFAULT_AGENT_IDENTITY,
            CANONICAL_SEQUENCE,
            TOOL_CALL_SYNTAX,
            build_tools_section(self._tools),
        ]

        hint_key = "mac" if is_mac_platform(self._platform) else "default"
        prompt_parts.append(MODIFIER_KEY_HINTS[hint_key])

        # Page context (always last when present)
        if self._page_context is not None:
            prompt_parts.append(build_page_context(*self._page_context))

        self._cached_prompt = "\n\n".join(prompt_parts)
        return self._cached_prompt

    @property
    def cached(self) -> Optional[str]:
        """Return the cached prompt, or None if not yet built/invalidated."""
        return self._cached_prompt

    def invalidate(self) -> None:
        self._cached_prompt = None

    def set_current_page_context(self, url: str, title: str) -> None:
        """Replace any previous page context."""
        self._page_context = (url, title)
        self.invalidate()

    def clear_page_context(self) -> None:
        self._page_context = None
        self.invalidate()

    def update_tools(self, tools: Iterable[Tool]) -> None:
        """Replace the tool list. Page context is left alone."""
        self._tools = list(tools)
        self.invalidate()
