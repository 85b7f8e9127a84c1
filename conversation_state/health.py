"""Structural health checks for a message sequence."""

from __future__ import annotations

from typing import TYPE_CHECKING

from conversation_state.curation import is_valid_item
from conversation_state.models import (
    ConversationHealth,
    FunctionCallItem,
    FunctionCallOutputItem,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from conversation_state.models import Item


def find_orphans(messages: Sequence[Item]) -> tuple[list[str], list[str]]:
    """Find function calls without outputs and outputs without calls.

    Returns:
        Tuple of (unanswered call ids, unmatched output call ids), each in
        the order the items appear.

    """
    call_ids = [m.call_id for m in messages if isinstance(m, FunctionCallItem) and m.call_id]
    output_ids = [
        m.call_id for m in messages if isinstance(m, FunctionCallOutputItem) and m.call_id
    ]
    answered = set(output_ids)
    requested = set(call_ids)
    orphaned_calls = [cid for cid in call_ids if cid not in answered]
    orphaned_outputs = [cid for cid in output_ids if cid not in requested]
    return orphaned_calls, orphaned_outputs


def validate_health(messages: Sequence[Item]) -> ConversationHealth:
    """Report orphaned tool calls and invalid items in ``messages``.

    The continuity score is ``1 - orphans / tool_items``, where ``tool_items``
    counts every function call and function call output.
    """
    issues: list[str] = []

    invalid_count = sum(1 for m in messages if not is_valid_item(m))
    if invalid_count:
        issues.append(f"{invalid_count} invalid messages found")

    orphaned_calls, orphaned_outputs = find_orphans(messages)
    issues.extend(f"Orphaned function call: {cid}" for cid in orphaned_calls)
    issues.extend(f"Unmatched function output: {cid}" for cid in orphaned_outputs)

    orphan_count = len(orphaned_calls) + len(orphaned_outputs)
    tool_items = sum(
        1 for m in messages if isinstance(m, FunctionCallItem | FunctionCallOutputItem)
    )
    continuity_score = 1.0 - orphan_count / tool_items if tool_items else 1.0

    return ConversationHealth(
        is_valid=orphan_count == 0,
        has_invalid_responses=invalid_count > 0,
        continuity_score=max(0.0, continuity_score),
        issues=issues,
    )
