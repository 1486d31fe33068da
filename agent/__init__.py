"""Agent internals -- the orchestration core behind BrowserAgent.

Module Overview
---------------
**browser_agent.py**
    BrowserAgent facade: one per browser session. Wires the modules below
    together and tracks the page domain for memory injection.

**execution_engine.py**
    The prompt -> model -> tool-call loop, provider retry with backoff,
    approval gating, streaming with non-streaming fallback.

**tool_executor.py**
    Connection-health guard around every session-dependent tool, and the
    ToolManager that owns the wrapped tool list.

**error_handler.py**
    Provider error classification, backoff calculation, cancellation flag.

**context_trimmer.py**
    Token estimation and history trimming to the context budget.

**memory_injector.py**
    Injects remembered per-domain task patterns before the first model call.

**prompt_assembler.py / prompt_builder.py**
    Deterministic, cached system prompt assembly and its text segments.

**tool_call_parser.py**
    The XML tool-call protocol: parsing and corrective messages.

**providers.py / usage_tracker.py**
    Model provider contract, the OpenAI-compatible adapter, token accounting.

**config.py**
    AgentConfig loading from kwargs, environment, .env and config.yaml.

Architecture
------------
1. **No circular imports**: modules depend on external packages,
   hive_constants and tools.registry; only browser_agent and
   execution_engine import sibling classes.

2. **Errors as values at the edges**: tools return "Error: ..." strings,
   providers raise ProviderError, the loop turns both into messages.

3. **One state owner per agent**: cancellation, usage and page context live
   on the BrowserAgent, never in module globals. The approval table is the
   only shared structure, and it is locked.
"""
