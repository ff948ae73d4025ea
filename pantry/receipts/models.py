from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import CheckConstraint
from sqlalchemy.orm import Mapped, relationship

from pantry.extensions import db
from pantry.models.base import BaseModel

from .fingerprint import FINGERPRINT_LENGTH
from .lines import LineDescriptor, LineStatus, ReceiptLine

if TYPE_CHECKING:
    from pantry.auth.models import User
    from pantry.items.models import Item


class ScanStatus(str, enum.Enum):
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class ReceiptScan(BaseModel):
    """A scanned receipt awaiting (or done with) reconciliation.

    Attributes:
        owner_id: ID of the user who uploaded the receipt
        status: PENDING, CANCELLED or COMPLETED
        raw_document: The document returned by the OCR provider, as received
        lines: Ordered, deduplicated receipt lines (JSON array, see ReceiptLine)
        version_id: Optimistic concurrency counter, bumped on every UPDATE

    Notes:
        - status is COMPLETED exactly when no line is PENDING
        - CANCELLED is entered only from PENDING
        - lines must be reassigned, never mutated in place, or the change is not persisted
    """

    __tablename__ = "receipt_scan"
    __table_args__ = {"comment": "Receipt scans and their embedded line items"}

    owner_id: Mapped[int] = db.Column(
        db.Integer,
        db.ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Reference to the user who owns this scan",
    )
    status: Mapped[ScanStatus] = db.Column(
        db.Enum(ScanStatus, name="scan_status", native_enum=False, length=20),
        nullable=False,
        default=ScanStatus.PENDING,
        index=True,
        comment="Reconciliation status of the scan",
    )
    raw_document: Mapped[Optional[Dict[str, Any]]] = db.Column(
        db.JSON, nullable=True, comment="Raw OCR document the lines were extracted from"
    )
    lines: Mapped[List[Dict[str, Any]]] = db.Column(
        db.JSON, nullable=False, default=list, comment="Embedded ordered receipt lines"
    )
    version_id: Mapped[int] = db.Column(db.Integer, nullable=False, comment="Optimistic lock counter")

    owner: Mapped["User"] = relationship("User", back_populates="receipt_scans")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def receipt_lines(self) -> List[ReceiptLine]:
        return [ReceiptLine.from_dict(line) for line in self.lines or []]

    @property
    def pending_lines(self) -> List[ReceiptLine]:
        return [line for line in self.receipt_lines if line.is_pending]

    def set_lines(self, lines: List[ReceiptLine]) -> None:
        """Replace the embedded lines; a fresh list so the JSON column is flagged dirty."""
        self.lines = [line.to_dict() for line in lines]

    def find_pending_line(self, line_id: str) -> Optional[ReceiptLine]:
        for line in self.pending_lines:
            if line.id == line_id:
                return line
        return None

    def complete_line(self, line: ReceiptLine) -> None:
        """Store ``line`` (with its final disposition) as COMPLETED in place of the line with the same id."""
        self.set_lines([line.completed() if current.id == line.id else current for current in self.receipt_lines])

    def recompute_status(self) -> ScanStatus:
        """COMPLETED when no PENDING lines remain, PENDING otherwise."""
        self.status = ScanStatus.PENDING if self.pending_lines else ScanStatus.COMPLETED
        return self.status

    def to_dict(self, pending_only: bool = False, include_document: bool = False) -> Dict[str, Any]:
        lines = self.pending_lines if pending_only else self.receipt_lines
        result: Dict[str, Any] = {
            "id": self.id,
            "owner_id": self.owner_id,
            "status": self.status.value if self.status else None,
            "lines": [line.to_dict() for line in lines],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_document:
            result["raw_document"] = self.raw_document
        return result

    def __repr__(self) -> str:
        return f"<ReceiptScan(id={self.id}, owner_id={self.owner_id}, status={self.status}, lines={len(self.lines or [])})>"


class LearnedReceiptLine(BaseModel):
    """What a product line resolved to the last time a person disposed of it.

    Keyed by fingerprint and shared by all owners. At most one of ``item_id``
    and ``ignored`` is set; neither set means unresolved.
    """

    __tablename__ = "learned_receipt_line"
    __table_args__ = (
        CheckConstraint("NOT (item_id IS NOT NULL AND ignored)", name="ck_learned_line_single_binding"),
        CheckConstraint("quantity_multiplier > 0", name="ck_learned_line_positive_multiplier"),
        {"comment": "Remembered dispositions of receipt lines, keyed by fingerprint"},
    )

    fingerprint: Mapped[str] = db.Column(
        db.String(FINGERPRINT_LENGTH),
        unique=True,
        nullable=False,
        index=True,
        comment="SHA-256 of the descriptive fields",
    )
    title: Mapped[str] = db.Column(db.Text, nullable=False)
    sku: Mapped[Optional[str]] = db.Column(db.String(255), nullable=True)
    upc: Mapped[Optional[str]] = db.Column(db.String(255), nullable=True)
    hsn: Mapped[Optional[str]] = db.Column(db.String(255), nullable=True)
    reference: Mapped[Optional[str]] = db.Column(db.String(255), nullable=True)
    item_id: Mapped[Optional[int]] = db.Column(
        db.Integer,
        db.ForeignKey("item.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Item this line resolves to",
    )
    ignored: Mapped[bool] = db.Column(
        db.Boolean, nullable=False, default=False, comment="Line is noise and should be skipped"
    )
    quantity_multiplier: Mapped[float] = db.Column(
        db.Float, nullable=False, default=1.0, comment="Inventory units per receipt unit"
    )

    item: Mapped[Optional["Item"]] = relationship("Item", lazy="joined")

    @property
    def descriptor(self) -> LineDescriptor:
        return LineDescriptor(self.title, self.sku, self.upc, self.hsn, self.reference)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fingerprint": self.fingerprint,
            **self.descriptor.to_dict(),
            "item_id": self.item_id,
            "ignore": self.ignored,
            "quantity_multiplier": self.quantity_multiplier,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<LearnedReceiptLine(fingerprint={self.fingerprint[:12]}, item_id={self.item_id}, ignored={self.ignored})>"


class OcrRequest(BaseModel):
    """One call to the OCR provider, counted against the owner's monthly quota.

    Kept separately from scans so deleting a scan does not refund the quota.
    """

    __tablename__ = "ocr_request"

    owner_id: Mapped[int] = db.Column(
        db.Integer,
        db.ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_name: Mapped[str] = db.Column(db.String(255), nullable=False)


__all__ = ["LineStatus", "LearnedReceiptLine", "OcrRequest", "ReceiptScan", "ScanStatus"]
