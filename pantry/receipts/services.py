"""Receipt reconciliation: ingesting scans and confirming their lines.

A scan moves PENDING -> COMPLETED as its lines are confirmed, or
PENDING -> CANCELLED when the owner gives up on it (``reopen`` is the only
way back). Every confirmation either applies a quantity change to an item,
records that the line is noise, or fails as unresolved.

Writes to a scan are serialized by the scan's ``version_id``: a request that
loses the race gets ScanConcurrentModificationError and nothing it did is
kept.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm.exc import StaleDataError

from pantry.errors.exceptions import ServiceError
from pantry.extensions import db
from pantry.items import services as item_services
from pantry.items.models import Item
from pantry.services import notification_service

from .exceptions import (
    LineNotFoundError,
    MalformedDocumentError,
    ScanConcurrentModificationError,
    ScanNotFoundError,
    ScanQuotaExceededError,
    ScanStateError,
    UnresolvedLineError,
)
from .extraction import extract_receipt_lines
from .learned import LearnedLineStore, get_learned_line_store
from .lines import ActionableLineInfo, LineDescriptor, ReceiptLine
from .models import OcrRequest, ReceiptScan, ScanStatus
from .ocr import OcrClient, get_ocr_client

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "heic", "pdf"}


@dataclass
class NewItemAction:
    title: str
    warning_amount: Optional[int] = None


@dataclass
class LineAction:
    """An explicit disposition supplied by the owner for one line.

    Precedence when several are set: ``item_id``, then ``new_item``, then ``ignore``.
    """

    item_id: Optional[int] = None
    new_item: Optional[NewItemAction] = None
    ignore: bool = False
    quantity_multiplier: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["LineAction"]:
        if not data:
            return None
        new_item = data.get("new_item")
        return cls(
            item_id=data.get("item_id"),
            new_item=NewItemAction(**new_item) if new_item else None,
            ignore=bool(data.get("ignore")),
            quantity_multiplier=data.get("quantity_multiplier"),
        )


@dataclass
class _QuantityChange:
    item: Item
    delta: int


@dataclass
class BulkConfirmation:
    """Outcome of confirming every pending line of a scan."""

    scan: ReceiptScan
    confirmed: List[ReceiptLine] = field(default_factory=list)
    unconfirmed: List[ReceiptLine] = field(default_factory=list)
    errors: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class ReceiptService:
    """Scan lifecycle and line confirmation for one owner at a time.

    Args:
        store: Learned-line store consulted at extraction and updated on confirmation
        ocr_client: Document-processing client; created from app config on first upload if omitted
    """

    def __init__(self, store: LearnedLineStore, ocr_client: Optional[OcrClient] = None):
        self.store = store
        self._ocr_client = ocr_client

    @property
    def ocr_client(self) -> OcrClient:
        if self._ocr_client is None:
            self._ocr_client = get_ocr_client()
        return self._ocr_client

    # =========================================================================
    # INGEST
    # =========================================================================

    def ingest(self, owner_id: int, document: Mapping[str, Any]) -> ReceiptScan:
        """Create a PENDING scan from an OCR document.

        Raises:
            MalformedDocumentError: The document has no line items or a line without a description
        """
        try:
            lines = extract_receipt_lines(document, self.store, owner_id=owner_id)
            scan = ReceiptScan(owner_id=owner_id, status=ScanStatus.PENDING, raw_document=dict(document))
            scan.set_lines(lines)
            db.session.add(scan)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Created receipt scan {scan.id} for user {owner_id} with {len(lines)} lines")
        return scan

    def upload(self, owner_id: int, base64_data: str, extension: str) -> ReceiptScan:
        """Run a receipt image through OCR and ingest the result.

        The image itself is not kept. Each OCR request counts against the
        owner's monthly quota, whether or not processing succeeds.

        Raises:
            MalformedDocumentError: Bad image data or extension, or an unusable document
            ScanQuotaExceededError: The owner has no scans left this month
            OcrServiceError: The provider failed
        """
        extension = (extension or "").lower().lstrip(".")
        if extension not in ALLOWED_IMAGE_EXTENSIONS:
            raise MalformedDocumentError(
                f"Unsupported file type '{extension}'. Allowed: {', '.join(sorted(ALLOWED_IMAGE_EXTENSIONS))}",
                field="extension",
            )
        try:
            base64.b64decode(base64_data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedDocumentError("Receipt image is not valid base64", field="base64") from e

        file_name = self._reserve_scan(owner_id, extension)
        document = self.ocr_client.process_document(base64_data, file_name)
        return self.ingest(owner_id, document)

    def scans_used_this_month(self, owner_id: int) -> int:
        now = datetime.now(timezone.utc)
        start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return db.session.scalar(
            db.select(func.count(OcrRequest.id)).where(
                OcrRequest.owner_id == owner_id,
                OcrRequest.created_at >= start_of_month,
            )
        )

    def _reserve_scan(self, owner_id: int, extension: str) -> str:
        limit = current_app.config.get("MAX_MONTHLY_SCANS", 10)
        used = self.scans_used_this_month(owner_id)
        if used >= limit:
            logger.warning(f"User {owner_id} hit the monthly scan limit ({used}/{limit})")
            raise ScanQuotaExceededError(limit)

        file_name = f"{int(time.time() * 1000)}-{owner_id}.{extension}"
        try:
            db.session.add(OcrRequest(owner_id=owner_id, file_name=file_name))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return file_name

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_current_scan(self, owner_id: int) -> Optional[ReceiptScan]:
        """The owner's most recent PENDING scan, if any."""
        return db.session.scalars(
            db.select(ReceiptScan)
            .filter_by(owner_id=owner_id, status=ScanStatus.PENDING)
            .order_by(ReceiptScan.created_at.desc(), ReceiptScan.id.desc())
        ).first()

    def get_scan(self, owner_id: int, scan_id: int) -> ReceiptScan:
        return self._require_scan(owner_id, scan_id)

    def get_scans(self, owner_id: int) -> List[ReceiptScan]:
        return db.session.scalars(
            db.select(ReceiptScan)
            .filter_by(owner_id=owner_id)
            .order_by(ReceiptScan.created_at.desc(), ReceiptScan.id.desc())
        ).all()

    def _require_scan(self, owner_id: int, scan_id: int, for_update: bool = False) -> ReceiptScan:
        stmt = db.select(ReceiptScan).filter_by(id=scan_id, owner_id=owner_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        scan = db.session.scalars(stmt).first()
        if scan is None:
            raise ScanNotFoundError(scan_id)
        return scan

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    def cancel(self, owner_id: int, scan_id: int) -> ReceiptScan:
        """Cancel a PENDING scan whatever state its lines are in.

        Cancelling an already cancelled scan is a no-op.

        Raises:
            ScanNotFoundError: No such scan for this owner
            ScanStateError: The scan is COMPLETED
        """
        return self._transition(owner_id, scan_id, {ScanStatus.PENDING}, ScanStatus.CANCELLED)

    def reopen(self, owner_id: int, scan_id: int) -> ReceiptScan:
        """Return a CANCELLED scan to PENDING."""
        return self._transition(owner_id, scan_id, {ScanStatus.CANCELLED}, ScanStatus.PENDING)

    def _transition(self, owner_id: int, scan_id: int, sources: set, target: ScanStatus) -> ReceiptScan:
        try:
            scan = self._require_scan(owner_id, scan_id, for_update=True)
            if scan.status == target:
                return scan
            if scan.status not in sources:
                raise ScanStateError(
                    f"Cannot move receipt scan {scan_id} from {scan.status.value} to {target.value}",
                    field="status",
                )
            previous = scan.status
            scan.status = target
            self._commit_scan(scan_id)
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Receipt scan {scan_id} {previous.value} -> {target.value}")
        return scan

    # =========================================================================
    # CONFIRMATION
    # =========================================================================

    def confirm_line(
        self,
        owner_id: int,
        scan_id: int,
        line_id: Optional[str] = None,
        descriptor: Optional[LineDescriptor] = None,
        action: Optional[LineAction] = None,
    ) -> ReceiptScan:
        """Confirm one pending line, with or without an explicit action.

        The line is identified by ``line_id`` (its fingerprint) or, failing
        that, by its five descriptive fields.

        Returns:
            The updated scan; its ``pending_lines`` are what is left to confirm

        Raises:
            ScanNotFoundError: No such scan for this owner
            ScanStateError: The scan is cancelled
            LineNotFoundError: No pending line matches
            UnresolvedLineError: No action given and nothing was learned for the line
            ItemNotFoundError: The target item is gone or belongs to someone else
        """
        try:
            scan = self._require_scan(owner_id, scan_id, for_update=True)
            self._require_confirmable(scan)
            line = self._find_pending_line(scan, line_id, descriptor)

            line, change = self._dispose(owner_id, line, action)
            scan.complete_line(line)
            self._update_status(scan)
            self._commit_scan(scan_id)
        except Exception:
            db.session.rollback()
            raise

        if change is not None:
            notification_service.notify_item_quantity_changed(change.item, change.delta)
        return scan

    def confirm_scan(self, owner_id: int, scan_id: int) -> BulkConfirmation:
        """Confirm every pending line using only what was learned.

        A line that cannot be confirmed stays PENDING and is reported in
        ``unconfirmed`` instead of failing the whole scan. Each line runs in
        its own savepoint so a failed line leaves no partial writes.
        """
        try:
            scan = self._require_scan(owner_id, scan_id, for_update=True)
            self._require_confirmable(scan)
            result = BulkConfirmation(scan=scan)
            changes: List[_QuantityChange] = []

            lines: List[ReceiptLine] = []
            for line in scan.receipt_lines:
                if not line.is_pending:
                    lines.append(line)
                    continue
                try:
                    with db.session.begin_nested():
                        disposed, change = self._dispose(owner_id, line, None)
                except ServiceError as e:
                    logger.info(f"Line '{line.title}' of scan {scan_id} left pending: {e.message}")
                    result.unconfirmed.append(line)
                    result.errors[line.id] = e.to_dict()
                    lines.append(line)
                    continue

                completed = disposed.completed()
                result.confirmed.append(completed)
                lines.append(completed)
                if change is not None:
                    changes.append(change)

            scan.set_lines(lines)
            self._update_status(scan)
            self._commit_scan(scan_id)
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            f"Bulk confirmed scan {scan_id}: {len(result.confirmed)} confirmed, {len(result.unconfirmed)} unconfirmed"
        )
        for change in changes:
            notification_service.notify_item_quantity_changed(change.item, change.delta)
        return result

    def _require_confirmable(self, scan: ReceiptScan) -> None:
        if scan.status == ScanStatus.CANCELLED:
            raise ScanStateError(f"Receipt scan {scan.id} is cancelled", field="status")

    def _find_pending_line(
        self,
        scan: ReceiptScan,
        line_id: Optional[str],
        descriptor: Optional[LineDescriptor],
    ) -> ReceiptLine:
        if not scan.pending_lines:
            raise LineNotFoundError(f"Receipt scan {scan.id} has no pending lines")

        target = line_id or (descriptor.fingerprint if descriptor is not None else None)
        if target is None:
            raise LineNotFoundError("A line id or the line's fields are required")

        line = scan.find_pending_line(target)
        if line is None:
            raise LineNotFoundError(line_id=target)
        return line

    def _dispose(
        self,
        owner_id: int,
        line: ReceiptLine,
        action: Optional[LineAction],
    ) -> Tuple[ReceiptLine, Optional[_QuantityChange]]:
        """Apply the first matching disposition to ``line``.

        Returns the line carrying its final actionable info, and the item
        quantity change to announce once committed.
        """
        info = line.actionable_info
        action = action or LineAction()

        if action.item_id is not None or action.new_item is not None:
            multiplier = action.quantity_multiplier or info.quantity_multiplier or 1.0
            quantity_change = line.quantity * multiplier
            delta = item_services.to_item_delta(quantity_change)

            if action.item_id is not None:
                item = item_services.apply_quantity_delta(owner_id, action.item_id, delta, commit=False)
                how = "bound to"
            else:
                item = item_services.create_item(
                    owner_id,
                    title=action.new_item.title,
                    quantity=delta,
                    warning_amount=action.new_item.warning_amount,
                    commit=False,
                )
                how = "created"

            self.store.bind(line.descriptor, item.id, quantity_multiplier=action.quantity_multiplier)
            logger.info(f"Line '{line.title}' {how} item {item.id} '{item.title}', quantity {delta:+d}")
            final = ActionableLineInfo(
                existing_item_id=item.id,
                existing_item_title=item.title,
                ignore=False,
                quantity_change=quantity_change,
                quantity_multiplier=multiplier,
            )
            return replace(line, actionable_info=final), _QuantityChange(item, delta)

        if action.ignore:
            self.store.ignore(line.descriptor)
            logger.info(f"Line '{line.title}' ignored")
            final = replace(info, existing_item_id=None, existing_item_title=None, ignore=True)
            return replace(line, actionable_info=final), None

        if info.ignore:
            logger.info(f"Line '{line.title}' skipped, previously ignored")
            return line, None

        if info.existing_item_id is not None:
            delta = item_services.to_item_delta(info.quantity_change)
            item = item_services.apply_quantity_delta(owner_id, info.existing_item_id, delta, commit=False)
            logger.info(f"Line '{line.title}' applied to item {item.id} from learning, quantity {delta:+d}")
            return line, _QuantityChange(item, delta)

        logger.info(f"Line '{line.title}' unresolved")
        raise UnresolvedLineError(line.id, line.title)

    def _update_status(self, scan: ReceiptScan) -> None:
        previous = scan.status
        status = scan.recompute_status()
        if status != previous:
            logger.info(f"Receipt scan {scan.id} {previous.value} -> {status.value}")

    def _commit_scan(self, scan_id: int) -> None:
        try:
            db.session.commit()
        except StaleDataError as e:
            db.session.rollback()
            logger.warning(f"Concurrent update of receipt scan {scan_id} detected")
            raise ScanConcurrentModificationError(scan_id) from e

    # =========================================================================
    # REMOVAL
    # =========================================================================

    def delete_scan(self, owner_id: int, scan_id: int) -> None:
        try:
            scan = self._require_scan(owner_id, scan_id)
            db.session.delete(scan)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info(f"Deleted receipt scan {scan_id} of user {owner_id}")

    def delete_all_scans(self, owner_id: int) -> int:
        """Delete every scan of the owner; returns how many were removed."""
        try:
            result = db.session.execute(
                db.delete(ReceiptScan)
                .where(ReceiptScan.owner_id == owner_id)
                .execution_options(synchronize_session="fetch")
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        count = result.rowcount or 0
        logger.info(f"Deleted {count} receipt scans of user {owner_id}")
        return count


def get_receipt_service() -> ReceiptService:
    """Get a ReceiptService bound to the app's learned-line store."""
    return ReceiptService(get_learned_line_store())
