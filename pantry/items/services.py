"""Service functions for inventory items.

``apply_quantity_delta`` is the mutation entry point used by receipt
reconciliation; the rest is the small amount of CRUD the API exposes.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
import logging
import math
from typing import Any, Dict, List, Optional

from pantry.extensions import db
from pantry.items.exceptions import ItemNotFoundError, ItemValidationError
from pantry.items.models import Item
from pantry.services import notification_service

logger = logging.getLogger(__name__)


def to_item_delta(quantity_change: float) -> int:
    """Round a (possibly fractional) receipt quantity change to whole item units."""
    if not math.isfinite(quantity_change):
        raise ItemValidationError(
            f"Quantity change must be a finite number, got {quantity_change}", field="quantity_change"
        )
    return int(Decimal(str(quantity_change)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_items_for_user(owner_id: int) -> List[Item]:
    """Get all items for a user ordered by title."""
    return db.session.scalars(db.select(Item).filter_by(owner_id=owner_id).order_by(Item.title, Item.id)).all()


def get_item_for_user(item_id: int, owner_id: int) -> Optional[Item]:
    """Get an item by ID if it belongs to the user."""
    return db.session.scalars(db.select(Item).filter_by(id=item_id, owner_id=owner_id)).first()


def require_item_for_user(item_id: int, owner_id: int) -> Item:
    """Like get_item_for_user but raises ItemNotFoundError."""
    item = get_item_for_user(item_id, owner_id)
    if item is None:
        raise ItemNotFoundError(item_id)
    return item


def create_item(
    owner_id: int,
    title: str,
    quantity: int = 0,
    warning_amount: Optional[int] = None,
    commit: bool = True,
) -> Item:
    """Create an item for a user.

    Args:
        owner_id: The ID of the owning user
        title: Display name; must not be blank
        quantity: Starting stock, never negative
        warning_amount: Optional low-stock threshold
        commit: Commit immediately, or leave the item pending in the session

    Returns:
        The new item (flushed, so it has an ID)
    """
    if not title or not title.strip():
        raise ItemValidationError("Item title is required", field="title")
    if quantity < 0:
        raise ItemValidationError("Item quantity cannot be negative", field="quantity")

    item = Item(owner_id=owner_id, title=title.strip(), quantity=quantity, warning_amount=warning_amount)
    db.session.add(item)
    db.session.flush()
    if commit:
        db.session.commit()
    logger.info(f"Created item {item.id} '{item.title}' for user {owner_id}")
    return item


def create_item_for_user(owner_id: int, data: Dict[str, Any]) -> Item:
    """Create an item from validated API data."""
    return create_item(
        owner_id,
        title=data["title"],
        quantity=data.get("quantity", 0) or 0,
        warning_amount=data.get("warning_amount"),
    )


def update_item_for_user(item: Item, data: Dict[str, Any]) -> Item:
    """Update an item's title and warning threshold.

    Quantity is deliberately not editable here; it only moves through
    apply_quantity_delta so every change is notified.
    """
    if "title" in data:
        if not data["title"] or not str(data["title"]).strip():
            raise ItemValidationError("Item title is required", field="title")
        item.title = data["title"]
    if "warning_amount" in data:
        item.warning_amount = data["warning_amount"]

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return item


def apply_quantity_delta(owner_id: int, item_id: int, delta: int, commit: bool = True) -> Item:
    """Add ``delta`` units to an item's stock.

    The increment is issued as ``quantity = quantity + delta`` so concurrent
    changes are not lost.

    Raises:
        ItemNotFoundError: The item does not exist or is not owned by the caller
        ItemValidationError: The change is zero or would leave negative stock
    """
    if delta == 0:
        raise ItemValidationError("Quantity change cannot be zero", field="quantity_change")

    item = require_item_for_user(item_id, owner_id)
    if item.quantity + delta < 0:
        raise ItemValidationError(
            f"Cannot remove {-delta} units from '{item.title}', only {item.quantity} in stock",
            field="quantity_change",
        )

    item.quantity = Item.quantity + delta
    db.session.flush()
    db.session.refresh(item)
    logger.info(f"Item {item.id} quantity changed by {delta:+d} to {item.quantity}")

    if commit:
        db.session.commit()
        notification_service.notify_item_quantity_changed(item, delta)
    return item


def update_item_quantity(owner_id: int, item_id: int, quantity_change: int) -> Item:
    """Manually adjust stock, e.g. when something is used up."""
    try:
        return apply_quantity_delta(owner_id, item_id, quantity_change)
    except Exception:
        db.session.rollback()
        raise


def delete_item_for_user(item: Item) -> None:
    """Delete an item.

    Learned receipt lines bound to the item are unbound rather than removed,
    so the next receipt containing them asks the user again.
    """
    from pantry.receipts.learned import get_learned_line_store

    item_id = item.id
    try:
        unbound = get_learned_line_store().unbind_item(item_id)
        db.session.delete(item)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Deleted item {item_id}; unbound {unbound} learned receipt lines")
