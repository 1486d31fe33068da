"""Tests for PromptAssembler and the prompt_builder segments.

Covers:
    - Layer ordering (identity first, page context last)
    - Tool list rendering in registration order
    - Modifier-key hint selection by platform
    - Caching contract (same object until invalidated)
    - Invalidation on tool and page-context changes
"""

import pytest

from agent.prompt_assembler import PromptAssembler, detect_platform
from agent.prompt_builder import (
    CANONICAL_SEQUENCE,
    DEFAULT_AGENT_IDENTITY,
    MODIFIER_KEY_HINTS,
    TOOL_CALL_SYNTAX,
    is_mac_platform,
)
from tools.registry import Tool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _tools(*names):
    return [Tool(name=n, description=f"does {n}", func=lambda i: i) for n in names]


def _assembler(*names, platform="Linux"):
    return PromptAssembler(_tools(*names), platform=platform)


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------

class TestLayering:
    def test_segments_in_fixed_order(self):
        prompt = _assembler("browser_click").get_system_prompt()

        positions = [
            prompt.index(DEFAULT_AGENT_IDENTITY),
            prompt.index(CANONICAL_SEQUENCE),
            prompt.index(TOOL_CALL_SYNTAX),
            prompt.index("You have access to these tools:"),
            prompt.index(MODIFIER_KEY_HINTS["default"]),
        ]
        assert positions == sorted(positions)
        assert prompt.startswith(DEFAULT_AGENT_IDENTITY)

    def test_tools_listed_in_registration_order(self):
        prompt = _assembler("lookup_memories", "browser_click", "browser_tab_new").get_system_prompt()
        assert (
            "lookup_memories: does lookup_memories\n"
            "browser_click: does browser_click\n"
            "browser_tab_new: does browser_tab_new"
        ) in prompt

    def test_no_page_context_by_default(self):
        assert "CURRENT PAGE CONTEXT" not in _assembler().get_system_prompt()

    def test_page_context_is_last(self):
        assembler = _assembler("browser_click")
        assembler.set_current_page_context("https://example.com/cart", "Your Cart")
        prompt = assembler.get_system_prompt()

        context_at = prompt.index("## CURRENT PAGE CONTEXT")
        assert "You are currently on https://example.com/cart (Your Cart)." in prompt
        assert context_at > prompt.index(MODIFIER_KEY_HINTS["default"])
        assert prompt.rstrip().endswith("navigate → observe → analyze → act")

    def test_page_context_replaced_not_appended(self):
        assembler = _assembler()
        assembler.set_current_page_context("https://a.com", "A")
        assembler.set_current_page_context("https://b.com", "B")
        prompt = assembler.get_system_prompt()

        assert prompt.count("## CURRENT PAGE CONTEXT") == 1
        assert "https://a.com" not in prompt
        assert assembler.current_url == "https://b.com"


# ---------------------------------------------------------------------------
# Platform hints
# ---------------------------------------------------------------------------

class TestPlatformHints:
    @pytest.mark.parametrize("name", ["Darwin", "macOS", "MacIntel", "mac"])
    def test_mac_platforms(self, name):
        assert is_mac_platform(name)
        prompt = _assembler(platform=name).get_system_prompt()
        assert MODIFIER_KEY_HINTS["mac"] in prompt
        assert MODIFIER_KEY_HINTS["default"] not in prompt

    @pytest.mark.parametrize("name", ["Windows", "Linux", ""])
    def test_other_platforms_use_control(self, name):
        assert not is_mac_platform(name)

    def test_default_hint_for_linux(self):
        assert MODIFIER_KEY_HINTS["default"] in _assembler(platform="Linux").get_system_prompt()

    def test_detect_platform_prefers_explicit(self, monkeypatch):
        monkeypatch.setenv("HIVE_CLIENT_PLATFORM", "Windows")
        assert detect_platform("Darwin") == "Darwin"
        assert detect_platform() == "Windows"


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------

class TestCaching:
    def test_cached_prompt_is_same_object(self):
        assembler = _assembler("browser_click")
        assert assembler.cached is None

        first = assembler.get_system_prompt()
        assert assembler.get_system_prompt() is first
        assert assembler.cached is first

    def test_update_tools_invalidates(self):
        assembler = _assembler("browser_click")
        first = assembler.get_system_prompt()

        assembler.update_tools(_tools("browser_navigate"))
        assert assembler.cached is None

        second = assembler.get_system_prompt()
        assert "browser_navigate: does browser_navigate" in second
        assert "browser_click: does" not in second
        assert second != first

    def test_update_tools_keeps_page_context(self):
        assembler = _assembler()
        assembler.set_current_page_context("https://example.com", "Example")
        assembler.update_tools(_tools("browser_click"))
        assert "https://example.com" in assembler.get_system_prompt()

    def test_page_context_invalidates(self):
        assembler = _assembler()
        assembler.get_system_prompt()
        assembler.set_current_page_context("https://example.com", "Example")
        assert assembler.cached is None

    def test_clear_page_context(self):
        assembler = _assembler()
        assembler.set_current_page_context("https://example.com", "Example")
        assembler.get_system_prompt()

        assembler.clear_page_context()
        assert assembler.current_url is None
        assert "CURRENT PAGE CONTEXT" not in assembler.get_system_prompt()
