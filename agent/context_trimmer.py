"""Token estimation and message-history trimming.

Pure utility functions with no agent dependency. Used by the execution engine
to keep the history sent to the model inside a token budget.

Trimming contract:
    - The first message (the original request) is always kept.
    - Every user message is always kept, even over budget.
    - Assistant turns are kept newest-first wherever they fit; one that
      doesn't fit is skipped and older, smaller turns may still be kept.
    - Relative order of kept messages is never changed.
"""

import json
import math
from typing import Any, Dict, List, Sequence

from hive_constants import MAX_CONTEXT_TOKENS


def _content_text(content: Any) -> str:
    """Serialize non-text content to a canonical string before measuring."""
    if isinstance(content, str):
        return content
    return json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def approx_tokens(text: Any) -> int:
    """Very cheap "char/4" token estimate, rounded up."""
    return math.ceil(len(_content_text(text)) / 4)


def context_token_count(messages: Sequence[Dict[str, Any]]) -> int:
    """Rough token count for a message list."""
    return sum(approx_tokens(m.get("content", "")) for m in messages)


def trim_history(
    messages: Sequence[Dict[str, Any]],
    max_tokens: int = MAX_CONTEXT_TOKENS,
) -> List[Dict[str, Any]]:
    """Trim history to ``max_tokens`` while preserving every user message.

    Returns a new list; ``messages`` is not modified. If the mandatory set
    (first message plus all user messages) alone exceeds the budget, that
    set is returned as-is.
    """
    if context_token_count(messages) <= max_tokens:
        return list(messages)

    keep = set()
    if messages:
        keep.add(0)
    for i, msg in enumerate(messages):
        if msg.get("role") == "user":
            keep.add(i)

    remaining = max_tokens - context_token_count([messages[i] for i in keep])

    # Newest first; anything that isn't a user turn is droppable.
    for i in range(len(messages) - 1, 0, -1):
        if i in keep:
            continue
        cost = approx_tokens(messages[i].get("content", ""))
        if cost > remaining:
            continue
        keep.add(i)
        remaining -= cost

    return [msg for i, msg in enumerate(messages) if i in keep]
