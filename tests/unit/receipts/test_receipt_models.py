"""Tests for receipt scan models and embedded lines."""

import pytest

from pantry.extensions import db
from pantry.receipts.lines import ActionableLineInfo, LineDescriptor, LineStatus, ReceiptLine
from pantry.receipts.models import ReceiptScan, ScanStatus


def _line(title, quantity=1, status=LineStatus.PENDING):
    return ReceiptLine(descriptor=LineDescriptor(title), quantity=quantity, status=status)


class TestReceiptLine:
    """Test ReceiptLine serialization."""

    def test_to_dict_flattens_descriptor(self):
        line = ReceiptLine(
            descriptor=LineDescriptor("Milk", sku="S1"),
            quantity=2,
            actionable_info=ActionableLineInfo(existing_item_id=3, existing_item_title="Milk", quantity_change=2),
        )

        data = line.to_dict()

        assert data["id"] == line.descriptor.fingerprint
        assert data["title"] == "Milk"
        assert data["sku"] == "S1"
        assert data["upc"] is None
        assert data["status"] == "PENDING"
        assert data["actionable_info"]["existing_item_id"] == 3
        assert ReceiptLine.from_dict(data) == line

    def test_completed_returns_copy(self):
        line = _line("Milk")
        completed = line.completed()
        assert completed.status == LineStatus.COMPLETED
        assert line.status == LineStatus.PENDING


class TestReceiptScan:
    """Test ReceiptScan line helpers."""

    @pytest.fixture
    def scan(self, user):
        scan = ReceiptScan(owner_id=user.id, status=ScanStatus.PENDING)
        scan.set_lines([_line("Milk"), _line("Bread")])
        db.session.add(scan)
        db.session.commit()
        return scan

    def test_lines_are_persisted_in_order(self, scan):
        db.session.expire_all()
        assert [line.title for line in db.session.get(ReceiptScan, scan.id).receipt_lines] == ["Milk", "Bread"]

    def test_version_starts_at_one(self, scan):
        assert scan.version_id == 1

    def test_complete_line_persists(self, scan):
        milk = scan.receipt_lines[0]

        scan.complete_line(milk)
        db.session.commit()
        db.session.expire_all()

        reloaded = db.session.get(ReceiptScan, scan.id)
        assert reloaded.receipt_lines[0].status == LineStatus.COMPLETED
        assert [line.title for line in reloaded.pending_lines] == ["Bread"]
        assert reloaded.version_id == 2

    def test_recompute_status(self, scan):
        assert scan.recompute_status() == ScanStatus.PENDING
        for line in scan.receipt_lines:
            scan.complete_line(line)
        assert scan.recompute_status() == ScanStatus.COMPLETED

    def test_find_pending_line(self, scan):
        bread = scan.receipt_lines[1]
        assert scan.find_pending_line(bread.id) == bread
        assert scan.find_pending_line("0" * 64) is None

    def test_to_dict(self, scan):
        scan.complete_line(scan.receipt_lines[0])

        assert len(scan.to_dict()["lines"]) == 2
        data = scan.to_dict(pending_only=True, include_document=True)
        assert [line["title"] for line in data["lines"]] == ["Bread"]
        assert data["status"] == "PENDING"
        assert "raw_document" in data
