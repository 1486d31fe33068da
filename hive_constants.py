"""Shared constants for Hive Agent.

Import-safe module with no dependencies: can be imported from anywhere
without risk of circular imports.
"""

import os
from pathlib import Path

HIVE_HOME = Path(os.getenv("HIVE_HOME", Path.home() / ".hive"))

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"
OLLAMA_BASE_URL = "http://localhost:11434/v1"

DEFAULT_MODEL = "anthropic/claude-sonnet-4"

# Tools whose names start with this prefix manage tabs (create/list/select/close)
# and keep working when the debug session is gone.
TAB_TOOL_PREFIX = "browser_tab_"
TAB_RECOVERY_TOOLS = ("browser_tab_new", "browser_tab_select")

MEMORY_LOOKUP_TOOL = "lookup_memories"
MEMORY_SAVE_TOOL = "save_memory"

# Loop guardrails
MAX_STEPS = 50
MAX_CONTEXT_TOKENS = 12_000
MAX_OUTPUT_TOKENS = 1024
MAX_RETRY_ATTEMPTS = 5

# Message bus events
APPROVAL_REQUEST_EVENT = "approval:request"
APPROVAL_RESPONSE_EVENT = "approval:response"
