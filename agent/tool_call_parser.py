"""
Tool-call parsing for the XML tool protocol.

The model asks for a tool with exactly three tags:

    <tool>browser_click</tool>
    <input>button.submit</input>
    <requires_approval>false</requires_approval>

optionally wrapped in a ```xml or ```bash fence. Only a call with all three
tags is executed. Partial calls are protocol errors: the engine feeds a
corrective message back to the model instead of aborting the run.
"""

import re
from dataclasses import dataclass
from typing import Optional

TOOL_CALL_PATTERN = re.compile(
    r"(```(?:xml|bash)\s*)?<tool>(.*?)</tool>\s*<input>([\s\S]*?)</input>\s*"
    r"<requires_approval>(.*?)</requires_approval>(\s*```)?"
)
_MISSING_APPROVAL_PATTERN = re.compile(
    r"<tool>(.*?)</tool>\s*<input>([\s\S]*?)</input>(?!\s*<requires_approval>)"
)
_INTERRUPTED_PATTERN = re.compile(
    r"<tool>(.*?)</tool>\s*<input>([\s\S]*?)</input>\s*<requires(?:_approval)?(?:>[^<]*)?$"
)
_MISSING_INPUT_PATTERN = re.compile(r"<tool>(.*?)</tool>(?!\s*<input>)")

_APPROVAL_GUIDANCE = (
    'The <requires_approval> tag is mandatory. Set it to "true" for purchases, data deletion, '
    "messages visible to others, sensitive-data forms, or any risky action. "
    'If unsure, set it to "true".'
)


@dataclass
class ParsedToolCall:
    """A complete tool call extracted from model output."""

    name: str
    input: str
    requires_approval: bool
    text_before: str = ""
    raw_text: str = ""


def decode_escaped_brackets(text: str) -> str:
    """Undo ``\\u003c``/``\\u003e`` escapes some providers emit for < and >."""
    return text.replace("\\u003c", "<").replace("\\u003e", ">")


def parse_tool_call(text: str) -> Optional[ParsedToolCall]:
    """Return the first complete tool call in ``text``, or None."""
    match = TOOL_CALL_PATTERN.search(text)
    if not match:
        return None
    name, tool_input, approval = match.group(2, 3, 4)
    return ParsedToolCall(
        name=name.strip(),
        input=tool_input.strip(),
        requires_approval=approval.strip().lower() == "true",
        text_before=text[: match.start()],
        raw_text=match.group(0),
    )


def has_tool_call(text: str) -> bool:
    return TOOL_CALL_PATTERN.search(text) is not None


def find_protocol_error(text: str) -> Optional[str]:
    """Corrective message for a malformed tool call, or None.

    Returns None when ``text`` holds a complete tool call or no tool tag at all.
    """
    if has_tool_call(text):
        return None

    interrupted = _INTERRUPTED_PATTERN.search(text.rstrip())
    if interrupted:
        name, tool_input = interrupted.group(1).strip(), interrupted.group(2).strip()
        return (
            "Error: Your tool call was interrupted. Please provide the complete tool call "
            "with all three required tags:\n\n"
            f"<tool>{name}</tool>\n<input>{tool_input}</input>\n"
            "<requires_approval>true or false</requires_approval>\n\n"
            f"{_APPROVAL_GUIDANCE}"
        )

    missing_approval = _MISSING_APPROVAL_PATTERN.search(text)
    if missing_approval:
        name, tool_input = missing_approval.group(1).strip(), missing_approval.group(2).strip()
        return (
            f"Error: Incomplete tool call. You provided <tool>{name}</tool> and "
            f"<input>{tool_input}</input> but are missing the <requires_approval> tag. "
            "Please provide the complete tool call with all three required tags:\n\n"
            f"<tool>{name}</tool>\n<input>{tool_input}</input>\n"
            "<requires_approval>true or false</requires_approval>\n\n"
            f"{_APPROVAL_GUIDANCE}"
        )

    missing_input = _MISSING_INPUT_PATTERN.search(text)
    if missing_input:
        name = missing_input.group(1).strip()
        return (
            f"Error: Incomplete tool call. You provided <tool>{name}</tool> but are missing the "
            "<input> and <requires_approval> tags. Please provide the complete tool call with "
            "all three required tags:\n\n"
            f"<tool>{name}</tool>\n<input>arguments here</input>\n"
            "<requires_approval>true or false</requires_approval>\n\n"
            f"{_APPROVAL_GUIDANCE}"
        )

    return None
