"""Token accounting for message sequences."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import TYPE_CHECKING

from conversation_state.constants import CHARS_PER_TOKEN, DEFAULT_TOKENIZER_MODEL
from conversation_state.models import (
    FunctionCallItem,
    FunctionCallOutputItem,
    MessageItem,
    ReasoningItem,
    TokenUsage,
    dump_items,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    import tiktoken

    from conversation_state.models import Item


@lru_cache(maxsize=4)
def _get_encoding(model: str = DEFAULT_TOKENIZER_MODEL) -> tiktoken.Encoding | None:
    """Get tiktoken encoding for a model, with caching.

    Falls back to cl100k_base for unknown models (covers most modern LLMs).
    Returns None when tiktoken is not installed so callers can use a heuristic.
    """
    try:
        import tiktoken  # noqa: PLC0415
    except ModuleNotFoundError:
        return None

    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str, model: str = DEFAULT_TOKENIZER_MODEL) -> int:
    """Count tokens using tiktoken, falling back to char-based estimate."""
    if not text:
        return 0
    enc = _get_encoding(model)
    if enc is None:
        return _estimate_token_count(text)
    # Conversation text may contain special tokens; count them as plain text
    return len(enc.encode(text, disallowed_special=()))


def _estimate_token_count(text: str) -> int:
    """Very rough token estimate based on character length (~4 chars/token)."""
    return max(1, (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN)


def estimate_usage(messages: Sequence[Item]) -> TokenUsage:
    """Coarse usage estimate: UTF-8 serialized byte length / 4, split evenly between input and output."""
    total_bytes = sum(
        len(json.dumps(item, ensure_ascii=False).encode("utf-8")) for item in dump_items(messages)
    )
    total = -(-total_bytes // CHARS_PER_TOKEN)
    half = total // 2
    return TokenUsage(input=half, output=total - half, total=total)


def analyze_usage(messages: Sequence[Item], model: str = DEFAULT_TOKENIZER_MODEL) -> TokenUsage:
    """Count tokens per item and attribute them to input or output.

    User messages and tool outputs are input (they are sent to the model);
    everything the model produced (assistant text, tool calls, reasoning) is
    output.
    """
    input_tokens = 0
    output_tokens = 0
    for item in messages:
        if isinstance(item, MessageItem):
            tokens = count_tokens(item.text(), model)
            if item.role == "user":
                input_tokens += tokens
            else:
                output_tokens += tokens
        elif isinstance(item, FunctionCallItem):
            output_tokens += count_tokens(item.arguments, model)
        elif isinstance(item, FunctionCallOutputItem):
            input_tokens += count_tokens(item.output or "", model)
        elif isinstance(item, ReasoningItem):
            output_tokens += count_tokens(item.text(), model)
    return TokenUsage(
        input=input_tokens,
        output=output_tokens,
        total=input_tokens + output_tokens,
    )
