"""Builders for raw conversation items."""

from __future__ import annotations

from typing import Any


def message(text: str | None = "hello", role: str = "user") -> dict[str, Any]:
    """Build a raw message item."""
    return {"type": "message", "role": role, "content": text}


def function_call(call_id: str, name: str | None = "read_file") -> dict[str, Any]:
    """Build a raw function call item."""
    return {"type": "function_call", "name": name, "call_id": call_id, "arguments": "{}"}


def function_output(call_id: str, output: str | None = "ok") -> dict[str, Any]:
    """Build a raw function call output item."""
    return {"type": "function_call_output", "call_id": call_id, "output": output}


def reasoning(text: str = "thinking") -> dict[str, Any]:
    """Build a raw reasoning item."""
    return {"type": "reasoning", "summary": [{"type": "summary_text", "text": text}]}
