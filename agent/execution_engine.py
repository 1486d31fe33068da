"""The agent execution loop.

One run of ``ExecutionEngine.execute_prompt`` drives the model through a
sequence of tool calls until it replies without one, the step cap is hit, the
user cancels, or the provider fails for good:

    seed history -> [inject domain memories] ->
    loop:
        trim (copy) -> system prompt -> provider call (with retry)
        -> parse one tool call
             none            -> done
             malformed       -> corrective user turn, continue
             unknown tool    -> corrective user turn, continue
             needs approval  -> wait for the user
        -> invoke wrapped tool -> append "Tool result: ..." -> check cancel

Provider failures:
    - retryable (rate limit / overload), non-streaming: sleep with backoff and
      re-issue the same call, up to ``max_retry_attempts`` times
    - anything else, non-streaming: "Fatal error: ..." and the run ends
    - any failure while streaming propagates so that
      ``execute_prompt_with_fallback`` can re-run without streaming

Tool calls are strictly sequential. Cancellation is cooperative: the flag is
read between steps and between stream chunks, never mid-await.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from agent.context_trimmer import trim_history
from agent.error_handler import (
    ExecutionState,
    calculate_backoff,
    format_error_message,
    is_overloaded_error,
    is_retryable,
    is_streaming_supported,
)
from agent.memory_injector import MemoryInjector
from agent.prompt_assembler import PromptAssembler
from agent.tool_call_parser import (
    TOOL_CALL_PATTERN,
    ParsedToolCall,
    decode_escaped_brackets,
    find_protocol_error,
    parse_tool_call,
)
from agent.tool_executor import ToolManager
from agent.usage_tracker import UsageTracker
from hive_constants import MAX_CONTEXT_TOKENS, MAX_RETRY_ATTEMPTS, MAX_STEPS
from tools.approval import ApprovalCorrelator, get_correlator
from tools.registry import ToolExecutionContext

logger = logging.getLogger(__name__)

APPROVAL_REASON = "The AI assistant has determined this action requires your approval."
REJECTED_RESULT = "Action cancelled by user."
APPROVAL_FAILED_RESULT = "Error in approval process. Action cancelled."
CANCELLED_OUTPUT = "\n\nExecution cancelled by user."


@dataclass
class ExecutionCallbacks:
    """UI hooks for one run. Every callback is optional."""

    on_llm_chunk: Optional[Callable[[str], Any]] = None
    on_llm_output: Optional[Callable[[str], Any]] = None
    on_tool_output: Optional[Callable[[str], Any]] = None
    on_complete: Optional[Callable[[], Any]] = None
    on_error: Optional[Callable[[Exception], Any]] = None
    on_tool_start: Optional[Callable[[str, str], Any]] = None
    on_tool_end: Optional[Callable[[str], Any]] = None
    on_segment_complete: Optional[Callable[[str], Any]] = None
    on_fallback_started: Optional[Callable[[], Any]] = None

    def fire(self, name: str, *args) -> None:
        callback = getattr(self, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning("Callback %s raised: %s", name, e)


@dataclass
class ExecutionResult:
    """Outcome of one ``execute_prompt`` run."""

    messages: List[Dict[str, Any]] = field(default_factory=list)
    final_response: str = ""
    completed: bool = False
    cancelled: bool = False
    steps: int = 0
    error: Optional[str] = None
    stop_reason: str = ""


class RetryExhaustedError(Exception):
    """A retryable provider error kept failing past the retry cap."""

    def __init__(self, error: Exception, attempts: int):
        super().__init__(f"Maximum retry attempts ({attempts}) exceeded")
        self.error = error
        self.attempts = attempts


def initialize_messages(prompt: str, initial_messages: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    """Seed the history with ``prompt`` as the newest user turn.

    ``initial_messages`` is copied, never mutated. The prompt is not appended
    twice when the caller already put it last.
    """
    if not initial_messages:
        return [{"role": "user", "content": prompt}]

    messages = list(initial_messages)
    last = messages[-1]
    if last.get("role") != "user" or last.get("content") != prompt:
        messages.append({"role": "user", "content": prompt})
    return messages


def format_tool_result(result: Any, prompt: str) -> str:
    """Render a tool result as the user turn fed back to the model."""
    text = result if isinstance(result, str) else str(result)
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return f"Tool result: {text}"

    if isinstance(parsed, dict) and parsed.get("type") == "screenshotRef" and parsed.get("id"):
        return (
            f"Tool result: Screenshot captured ({parsed['id']}). {parsed.get('note') or ''} "
            f"Based on this image, please answer the user's original question: \"{prompt}\". "
            "Don't just describe the image - focus on answering the specific question or "
            "completing the task the user asked for."
        )
    return f"Tool result: {json.dumps(parsed, indent=2, ensure_ascii=False)}"


def _error_text(error: Exception) -> str:
    return getattr(error, "message", None) or str(error)


class ExecutionEngine:
    """Runs prompts against a provider with the agent's tools.

    Args:
        provider: ``ModelProvider`` implementation.
        tool_manager: Holds the wrapped tools.
        prompt_assembler: Supplies the system prompt.
        memory_injector: Injects domain memories at the start of a run.
        state: The owning agent's cancellation flag.
        usage: Token accounting; a private tracker is created when omitted.
        correlator: Approval correlator; the process default when omitted.
        session_id: Identifies this agent's approvals on the message bus.
    """

    def __init__(
        self,
        provider,
        tool_manager: ToolManager,
        prompt_assembler: PromptAssembler,
        memory_injector: MemoryInjector,
        state: ExecutionState,
        *,
        usage: Optional[UsageTracker] = None,
        correlator: Optional[ApprovalCorrelator] = None,
        session_id: str = "default",
        max_steps: int = MAX_STEPS,
        max_context_tokens: int = MAX_CONTEXT_TOKENS,
        max_retry_attempts: int = MAX_RETRY_ATTEMPTS,
        client_identifier: Optional[str] = None,
    ):
        self.provider = provider
        self.tool_manager = tool_manager
        self.prompt_assembler = prompt_assembler
        self.memory_injector = memory_injector
        self.state = state
        self.usage = usage if usage is not None else UsageTracker()
        self.correlator = correlator if correlator is not None else get_correlator()
        self.session_id = session_id
        self.max_steps = max_steps
        self.max_context_tokens = max_context_tokens
        self.max_retry_attempts = max_retry_attempts
        self.client_identifier = client_identifier

    def is_streaming_supported(self) -> bool:
        return is_streaming_supported(self.provider, self.client_identifier)

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _complete(self, system_prompt: str, messages: List[Dict[str, Any]],
                        callbacks: ExecutionCallbacks) -> str:
        try:
            response = await self.provider.complete(system_prompt, messages)
            self.usage.track_input_tokens(response.input_tokens)
            self.usage.track_output_tokens(response.output_tokens)
        finally:
            self.usage.reset_call()
        text = decode_escaped_brackets(response.text or "")
        callbacks.fire("on_llm_output", text)
        return text

    async def _stream(self, system_prompt: str, messages: List[Dict[str, Any]],
                      callbacks: ExecutionCallbacks) -> str:
        accumulated = ""
        tool_call_detected = False
        stream = self.provider.stream(system_prompt, messages)
        try:
            async for chunk in stream:
                if self.state.is_cancelled():
                    break

                if chunk.type == "usage":
                    self.usage.record_chunk(chunk)
                    continue
                if chunk.type != "text" or not chunk.text:
                    continue

                accumulated += chunk.text
                match = TOOL_CALL_PATTERN.search(decode_escaped_brackets(accumulated))
                if match:
                    tool_call_detected = True
                    before = decode_escaped_brackets(accumulated)[: match.start()]
                    if before.strip():
                        callbacks.fire("on_segment_complete", before)
                    callbacks.fire("on_tool_start", match.group(2).strip(), match.group(3).strip())
                    # Nothing after the first complete tool call is used.
                    break

                callbacks.fire("on_llm_chunk", chunk.text)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
            self.usage.reset_call()

        logger.debug("Stream finished (%d chars, tool call: %s)", len(accumulated), tool_call_detected)
        return decode_escaped_brackets(accumulated)

    async def _call_model(self, messages: List[Dict[str, Any]], callbacks: ExecutionCallbacks,
                          is_streaming: bool) -> str:
        """One model turn over a trimmed copy of the history."""
        trimmed = trim_history(messages, self.max_context_tokens)
        system_prompt = self.prompt_assembler.get_system_prompt()

        if is_streaming:
            return await self._stream(system_prompt, trimmed, callbacks)

        attempt = 0
        while True:
            try:
                return await self._complete(system_prompt, trimmed, callbacks)
            except Exception as err:
                if not is_retryable(err):
                    raise
                if attempt >= self.max_retry_attempts:
                    raise RetryExhaustedError(err, self.max_retry_attempts) from err

                if callbacks.on_error is not None:
                    callbacks.fire("on_error", err)
                else:
                    callbacks.fire("on_llm_output", format_error_message(err))

                delay_ms = calculate_backoff(err, attempt)
                logger.warning("Retryable provider error (attempt %d): %s; sleeping %dms",
                               attempt + 1, err, delay_ms)
                await asyncio.sleep(delay_ms / 1000)

                error_type = "server overload" if is_overloaded_error(err) else "rate limit"
                callbacks.fire(
                    "on_tool_output",
                    f"Retrying after {error_type} error (attempt {attempt + 1} of {self.max_retry_attempts})...",
                )
                attempt += 1
                if hasattr(err, "retry_attempt"):
                    err.retry_attempt = attempt

                if self.state.is_cancelled():
                    return ""

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    async def _invoke(self, tool, tool_input: str, context: Optional[ToolExecutionContext] = None) -> str:
        # Wrapped tools already turn failures into results; tab tools do not.
        try:
            return await tool.invoke(tool_input, context)
        except Exception as e:
            logger.warning("Tool %s raised: %s", tool.name, e)
            return f"Error executing {tool.name}: {e}"

    async def _run_tool_call(self, call: ParsedToolCall, tool, callbacks: ExecutionCallbacks) -> str:
        callbacks.fire("on_tool_output", f"🕹️ tool: {call.name} | args: {call.input}")

        if not call.requires_approval:
            return await self._invoke(tool, call.input)

        callbacks.fire("on_tool_output", f"⚠️ This action requires approval: {APPROVAL_REASON}")
        try:
            approved = await self.correlator.request_approval(
                self.session_id, call.name, call.input, APPROVAL_REASON
            )
        except Exception as e:
            logger.error("Error in approval process for %s: %s", call.name, e)
            callbacks.fire("on_tool_output", f"❌ Error in approval process: {e}")
            return APPROVAL_FAILED_RESULT

        if not approved:
            callbacks.fire("on_tool_output", "❌ Action rejected by user.")
            return REJECTED_RESULT

        callbacks.fire("on_tool_output", "✅ Action approved by user. Executing...")
        context = ToolExecutionContext(requires_approval=True, approval_reason=APPROVAL_REASON)
        return await self._invoke(tool, call.input, context)

    async def _handle_response(self, prompt: str, text: str, messages: List[Dict[str, Any]],
                               callbacks: ExecutionCallbacks, result: ExecutionResult) -> bool:
        """Act on one model reply. Returns True when the run is complete."""
        call = parse_tool_call(text)

        if call is None:
            problem = find_protocol_error(text)
            if problem is None:
                messages.append({"role": "assistant", "content": text})
                result.final_response = text
                return True
            logger.info("Malformed tool call from model; asking it to retry")
            callbacks.fire("on_tool_output", "⚠️ Incomplete tool call detected")
            messages.extend([
                {"role": "assistant", "content": text},
                {"role": "user", "content": problem},
            ])
            return False

        tool = self.tool_manager.find_tool(call.name)
        if tool is None:
            available = ", ".join(t.name for t in self.tool_manager.get_tools())
            messages.extend([
                {"role": "assistant", "content": text},
                {"role": "user", "content": f'Error: tool "{call.name}" not found. Available: {available}'},
            ])
            return False

        if self.state.is_cancelled():
            return False

        tool_result = await self._run_tool_call(call, tool, callbacks)
        callbacks.fire("on_tool_end", tool_result)

        messages.extend([
            {"role": "assistant", "content": text},
            {"role": "user", "content": format_tool_result(tool_result, prompt)},
        ])
        return False

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def execute_prompt(
        self,
        prompt: str,
        callbacks: Optional[ExecutionCallbacks] = None,
        initial_messages: Optional[List[Dict[str, Any]]] = None,
        is_streaming: bool = False,
        domain: Optional[str] = None,
    ) -> ExecutionResult:
        """Run ``prompt`` to completion.

        Non-streaming runs never raise for provider failures; the outcome is
        in the returned ``ExecutionResult``. Streaming runs re-raise so the
        caller can fall back.
        """
        callbacks = callbacks or ExecutionCallbacks()
        self.state.reset_cancel()

        messages = initialize_messages(prompt, initial_messages)
        result = ExecutionResult(messages=messages)

        if domain:
            await self.memory_injector.lookup_memories(domain, messages)

        done = False
        try:
            while not done and result.steps < self.max_steps and not self.state.is_cancelled():
                result.steps += 1
                text = await self._call_model(messages, callbacks, is_streaming)
                if self.state.is_cancelled():
                    break
                done = await self._handle_response(prompt, text, messages, callbacks, result)

        except RetryExhaustedError as e:
            message = f"Maximum retry attempts ({e.attempts}) exceeded. Please try again later."
            logger.error("Giving up after %d retries: %s", e.attempts, e.error)
            callbacks.fire("on_llm_output", message)
            result.error = message
            result.stop_reason = "retry_exhausted"
            callbacks.fire("on_complete")
            return result

        except Exception as err:
            if is_streaming:
                logger.warning("Streaming run failed: %s", err)
                raise
            message = f"Fatal error: {_error_text(err)}"
            logger.error(message)
            callbacks.fire("on_error", err)
            callbacks.fire("on_llm_output", message)
            result.error = message
            result.stop_reason = "error"
            callbacks.fire("on_complete")
            return result

        if self.state.is_cancelled():
            result.cancelled = True
            result.stop_reason = "cancelled"
            callbacks.fire("on_llm_output", CANCELLED_OUTPUT)
        elif done:
            result.completed = True
            result.stop_reason = "completed"
        else:
            result.stop_reason = "max_steps"
            callbacks.fire("on_llm_output", f"Stopped: exceeded maximum of {self.max_steps} steps.")

        logger.info("Run finished after %d step(s): %s", result.steps, result.stop_reason)
        callbacks.fire("on_complete")
        return result

    async def execute_prompt_with_fallback(
        self,
        prompt: str,
        callbacks: Optional[ExecutionCallbacks] = None,
        initial_messages: Optional[List[Dict[str, Any]]] = None,
        domain: Optional[str] = None,
    ) -> ExecutionResult:
        """Stream when possible; on a streaming failure re-run once without it."""
        callbacks = callbacks or ExecutionCallbacks()
        streaming = self.is_streaming_supported() and callbacks.on_llm_chunk is not None

        if not streaming:
            return await self.execute_prompt(prompt, callbacks, initial_messages, False, domain)

        try:
            return await self.execute_prompt(prompt, callbacks, initial_messages, True, domain)
        except Exception as err:
            logger.warning("Execution failed, attempting fallback: %s", err)
            callbacks.fire("on_fallback_started")
            if is_retryable(err):
                callbacks.fire("on_error", err)
            return await self.execute_prompt(prompt, callbacks, initial_messages, False, domain)
