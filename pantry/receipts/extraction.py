"""Turn an OCR document into deduplicated receipt lines.

Documents follow the document-processing provider's shape::

    {"line_items": [{"description": "Milk 2L", "sku": "123", "quantity": 2}, ...]}

Extraction is strict: one line without a description fails the whole
document, so no partial scan is ever created.
"""

from __future__ import annotations

import logging
import math
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional

from pantry.errors.exceptions import ServiceValidationError

from .actionability import resolve_actionable_info
from .exceptions import MalformedDocumentError
from .fingerprint import FINGERPRINT_FIELDS
from .learned import LearnedLineStore
from .lines import LineDescriptor, ReceiptLine

logger = logging.getLogger(__name__)

# Document key for each descriptive field
DOCUMENT_FIELDS = {
    "title": "description",
    "sku": "sku",
    "upc": "upc",
    "hsn": "hsn",
    "reference": "reference",
}


def _text(value: Any) -> Optional[str]:
    """Non-empty stripped string, or None for anything else."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def normalize_descriptor(fields: Mapping[str, Any]) -> LineDescriptor:
    """Build a descriptor from client-supplied fields, normalized as extraction does.

    Raises:
        ServiceValidationError: The title is blank
    """
    values = {name: _text(fields.get(name)) for name in FINGERPRINT_FIELDS}
    if values["title"] is None:
        raise ServiceValidationError("Line title must not be blank", field="line")
    return LineDescriptor(**values)


def _quantity(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value) or value < 1:
        return 1
    return value


def parse_line_item(raw: Mapping[str, Any], position: int) -> tuple[LineDescriptor, float]:
    """Read the descriptive fields and quantity of one raw line item."""
    if not isinstance(raw, Mapping):
        raise MalformedDocumentError(f"Line item {position} is not an object", field="line_items")

    fields = {name: _text(raw.get(key)) for name, key in DOCUMENT_FIELDS.items()}
    if fields["title"] is None:
        raise MalformedDocumentError(f"Line item {position} has no description", field="line_items")

    return LineDescriptor(**fields), _quantity(raw.get("quantity"))


def extract_receipt_lines(
    document: Mapping[str, Any],
    store: LearnedLineStore,
    owner_id: Optional[int] = None,
) -> List[ReceiptLine]:
    """Extract the lines of a document in order of first occurrence.

    Lines with the same fingerprint are merged by adding their quantities.
    Each new line gets an actionability proposal from the learned-line store.

    Raises:
        MalformedDocumentError: No line items, or a line item without a description
    """
    if not isinstance(document, Mapping):
        raise MalformedDocumentError("Receipt document must be an object")

    raw_items = document.get("line_items")
    if not raw_items or not isinstance(raw_items, list):
        raise MalformedDocumentError("No line items found", field="line_items")

    lines: Dict[str, ReceiptLine] = {}
    for position, raw in enumerate(raw_items):
        descriptor, quantity = parse_line_item(raw, position)
        fingerprint = descriptor.fingerprint

        existing = lines.get(fingerprint)
        if existing is not None:
            existing.quantity += quantity
            info = existing.actionable_info
            info.quantity_change += quantity * info.quantity_multiplier
            logger.debug(f"Merged duplicate line '{descriptor.title}' into quantity {existing.quantity}")
            continue

        info = resolve_actionable_info(store, descriptor, quantity, owner_id=owner_id)
        lines[fingerprint] = ReceiptLine(descriptor=descriptor, quantity=quantity, actionable_info=info)

    logger.info(f"Extracted {len(lines)} receipt lines from {len(raw_items)} line items")
    return list(lines.values())
