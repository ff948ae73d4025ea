"""Value types for lines embedded in a receipt scan.

Lines are stored as a JSON array on the scan row; these dataclasses are the
in-memory form and own the (de)serialization.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
import enum
from typing import Any, Dict, Optional

from .fingerprint import compute_fingerprint


class LineStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class LineDescriptor:
    """The five descriptive fields that identify a product line."""

    title: str
    sku: Optional[str] = None
    upc: Optional[str] = None
    hsn: Optional[str] = None
    reference: Optional[str] = None

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(self.title, self.sku, self.upc, self.hsn, self.reference)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineDescriptor":
        return cls(
            title=data["title"],
            sku=data.get("sku"),
            upc=data.get("upc"),
            hsn=data.get("hsn"),
            reference=data.get("reference"),
        )


@dataclass
class ActionableLineInfo:
    """Proposed (or finalized) disposition for a receipt line.

    ``quantity_change`` is always ``quantity * quantity_multiplier`` of the line
    it belongs to.
    """

    existing_item_id: Optional[int] = None
    existing_item_title: Optional[str] = None
    ignore: Optional[bool] = None
    quantity_change: float = 1
    quantity_multiplier: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ActionableLineInfo":
        data = data or {}
        return cls(
            existing_item_id=data.get("existing_item_id"),
            existing_item_title=data.get("existing_item_title"),
            ignore=data.get("ignore"),
            quantity_change=data.get("quantity_change", 1),
            quantity_multiplier=data.get("quantity_multiplier", 1.0),
        )


@dataclass
class ReceiptLine:
    """One deduplicated line of a scan.

    ``id`` is the line's fingerprint, which is unique within a scan.
    """

    descriptor: LineDescriptor
    quantity: float = 1
    status: LineStatus = LineStatus.PENDING
    actionable_info: ActionableLineInfo = field(default_factory=ActionableLineInfo)

    @property
    def id(self) -> str:
        return self.descriptor.fingerprint

    @property
    def title(self) -> str:
        return self.descriptor.title

    @property
    def is_pending(self) -> bool:
        return self.status == LineStatus.PENDING

    def completed(self) -> "ReceiptLine":
        """Copy of this line marked COMPLETED."""
        return replace(self, status=LineStatus.COMPLETED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            **self.descriptor.to_dict(),
            "quantity": self.quantity,
            "status": self.status.value,
            "actionable_info": self.actionable_info.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReceiptLine":
        return cls(
            descriptor=LineDescriptor.from_dict(data),
            quantity=data.get("quantity", 1),
            status=LineStatus(data.get("status", LineStatus.PENDING.value)),
            actionable_info=ActionableLineInfo.from_dict(data.get("actionable_info")),
        )
