"""Content-addressed identity for receipt lines.

A fingerprint is SHA-256 over the JSON array
``[title, sku, upc, hsn, reference]``. JSON encoding escapes every field, so no
field value can forge a delimiter, and ``null`` stays distinct from ``""``.
The hash is stable across processes and releases; changing the encoding
orphans every learned line.
"""

import hashlib
import json
from typing import Optional

FINGERPRINT_FIELDS = ("title", "sku", "upc", "hsn", "reference")

# Length of a hex SHA-256 digest
FINGERPRINT_LENGTH = 64


def compute_fingerprint(
    title: str,
    sku: Optional[str] = None,
    upc: Optional[str] = None,
    hsn: Optional[str] = None,
    reference: Optional[str] = None,
) -> str:
    """Fingerprint a line's descriptive fields.

    Args:
        title: Line description as printed on the receipt (required upstream)
        sku: Stock keeping unit, if the OCR found one
        upc: Universal product code
        hsn: Harmonized system nomenclature code
        reference: Any other product reference

    Returns:
        64 character lowercase hex digest
    """
    payload = json.dumps([title, sku, upc, hsn, reference], ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()

