"""Removal of structurally invalid items from a message sequence."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from conversation_state.models import (
    FunctionCallItem,
    FunctionCallOutputItem,
    Item,
    MessageItem,
    ReasoningItem,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


def is_valid_item(item: Item) -> bool:
    """Check that an item carries the fields its type requires.

    Messages need content, function calls need a name and a call id, and
    function call outputs need a call id and an output. Reasoning items are
    always kept.
    """
    if isinstance(item, MessageItem):
        return bool(item.content)
    if isinstance(item, FunctionCallItem):
        return bool(item.name and item.call_id)
    if isinstance(item, FunctionCallOutputItem):
        return bool(item.call_id) and item.output is not None
    if isinstance(item, ReasoningItem):
        return True
    msg = f"Unknown item type: {type(item).__name__}"
    raise TypeError(msg)


def curate_items(
    items: Iterable[Item],
    predicate: Callable[[Item], bool] = is_valid_item,
) -> list[Item]:
    """Return the items that satisfy ``predicate``, in their original order."""
    valid: list[Item] = []
    for item in items:
        if predicate(item):
            valid.append(item)
        else:
            logger.debug("Removed invalid %s item", item.type)
    return valid
