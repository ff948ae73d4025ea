"""Propose a disposition for a receipt line from what was learned before."""

from __future__ import annotations

import logging
from typing import Optional

from .learned import LearnedLineStore
from .lines import ActionableLineInfo, LineDescriptor

logger = logging.getLogger(__name__)


def unresolved(quantity: float) -> ActionableLineInfo:
    """Info for a line nothing is known about."""
    return ActionableLineInfo(quantity_change=quantity, quantity_multiplier=1.0)


def resolve_actionable_info(
    store: LearnedLineStore,
    descriptor: LineDescriptor,
    quantity: float,
    owner_id: Optional[int] = None,
) -> ActionableLineInfo:
    """Look the line's fingerprint up in the learned-line store.

    A miss is a normal outcome and yields unresolved info. Learned lines are
    shared between owners, so an item binding is only proposed when the item
    belongs to ``owner_id``; the ignore flag and multiplier are proposed
    regardless.

    Args:
        store: Learned-line store to consult
        descriptor: The line's descriptive fields
        quantity: Receipt quantity of the line
        owner_id: Owner of the scan the line belongs to, None to skip the check

    Returns:
        ActionableLineInfo with quantity_change = quantity * quantity_multiplier
    """
    learned = store.get(descriptor.fingerprint)
    if learned is None:
        return unresolved(quantity)

    multiplier = learned.quantity_multiplier or 1.0
    info = ActionableLineInfo(
        ignore=bool(learned.ignored),
        quantity_multiplier=multiplier,
        quantity_change=quantity * multiplier,
    )

    item = learned.item
    if item is not None and (owner_id is None or item.owner_id == owner_id):
        info.existing_item_id = item.id
        info.existing_item_title = item.title
    elif item is not None:
        logger.debug(f"Learned line {learned.fingerprint[:12]} is bound to another owner's item; not proposing it")

    return info
