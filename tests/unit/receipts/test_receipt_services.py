"""Tests for the receipt scan lifecycle and line confirmation."""

import base64
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import func

from pantry.extensions import db
from pantry.items.exceptions import ItemNotFoundError, ItemValidationError
from pantry.items.models import Item
from pantry.receipts.exceptions import (
    LineNotFoundError,
    MalformedDocumentError,
    OcrServiceError,
    ScanConcurrentModificationError,
    ScanNotFoundError,
    ScanQuotaExceededError,
    ScanStateError,
    UnresolvedLineError,
)
from pantry.receipts.lines import LineDescriptor, LineStatus
from pantry.receipts.models import LearnedReceiptLine, OcrRequest, ReceiptScan, ScanStatus
from pantry.receipts.ocr import OcrClient
from pantry.receipts.services import LineAction, NewItemAction, ReceiptService

IMAGE = base64.b64encode(b"\x89PNG fake image").decode()


@pytest.fixture(autouse=True)
def notifications():
    with patch("pantry.services.notification_service.notify_item_quantity_changed") as mock_notify:
        yield mock_notify


@pytest.fixture
def scan(receipt_service, user, make_document):
    """A pending scan with a single unresolved Milk line."""
    return receipt_service.ingest(user.id, make_document({"description": "Milk 2L", "quantity": 2}))


def _learned_count() -> int:
    return db.session.scalar(db.select(func.count(LearnedReceiptLine.id)))


class TestIngest:
    """Test ReceiptService.ingest."""

    def test_creates_pending_scan(self, receipt_service, user, make_document):
        document = make_document({"description": "Milk 2L", "quantity": 2}, {"description": "Bread"})

        scan = receipt_service.ingest(user.id, document)

        assert scan.id is not None
        assert scan.owner_id == user.id
        assert scan.status == ScanStatus.PENDING
        assert scan.raw_document["vendor"] == {"name": "Corner Shop"}
        assert [line.title for line in scan.receipt_lines] == ["Milk 2L", "Bread"]
        assert all(line.status == LineStatus.PENDING for line in scan.receipt_lines)

    def test_malformed_document_persists_nothing(self, receipt_service, user, make_document):
        with pytest.raises(MalformedDocumentError):
            receipt_service.ingest(user.id, make_document({"description": "Milk"}, {"quantity": 1}))

        assert db.session.scalar(db.select(func.count(ReceiptScan.id))) == 0

    def test_empty_document_is_rejected(self, receipt_service, user, make_document):
        with pytest.raises(MalformedDocumentError):
            receipt_service.ingest(user.id, make_document())


class TestQueries:
    """Test current scan and scan lookup."""

    def test_current_scan_is_latest_pending(self, receipt_service, user, make_document):
        first = receipt_service.ingest(user.id, make_document({"description": "Milk"}))
        second = receipt_service.ingest(user.id, make_document({"description": "Bread"}))
        receipt_service.cancel(user.id, second.id)

        assert receipt_service.get_current_scan(user.id).id == first.id

    def test_no_current_scan(self, receipt_service, user):
        assert receipt_service.get_current_scan(user.id) is None

    def test_current_scan_is_owner_scoped(self, receipt_service, scan, other_user):
        assert receipt_service.get_current_scan(other_user.id) is None

    def test_get_scan_of_other_owner(self, receipt_service, scan, other_user):
        with pytest.raises(ScanNotFoundError):
            receipt_service.get_scan(other_user.id, scan.id)

    def test_get_scans(self, receipt_service, user, make_document):
        receipt_service.ingest(user.id, make_document({"description": "Milk"}))
        receipt_service.ingest(user.id, make_document({"description": "Bread"}))
        assert len(receipt_service.get_scans(user.id)) == 2


class TestTransitions:
    """Test cancel and reopen."""

    def test_cancel_pending_scan(self, receipt_service, scan, user):
        cancelled = receipt_service.cancel(user.id, scan.id)

        assert cancelled.status == ScanStatus.CANCELLED
        assert cancelled.pending_lines

    def test_cancel_twice_is_noop(self, receipt_service, scan, user):
        receipt_service.cancel(user.id, scan.id)
        assert receipt_service.cancel(user.id, scan.id).status == ScanStatus.CANCELLED

    def test_cancel_other_owners_scan(self, receipt_service, scan, other_user):
        with pytest.raises(ScanNotFoundError):
            receipt_service.cancel(other_user.id, scan.id)

    def test_cancel_completed_scan(self, receipt_service, scan, user, item):
        line_id = scan.receipt_lines[0].id
        receipt_service.confirm_line(user.id, scan.id, line_id=line_id, action=LineAction(item_id=item.id))

        with pytest.raises(ScanStateError):
            receipt_service.cancel(user.id, scan.id)

    def test_reopen_cancelled_scan(self, receipt_service, scan, user):
        receipt_service.cancel(user.id, scan.id)

        reopened = receipt_service.reopen(user.id, scan.id)

        assert reopened.status == ScanStatus.PENDING
        assert receipt_service.get_current_scan(user.id).id == scan.id

    def test_reopen_requires_cancelled_scan(self, receipt_service, scan, user, item):
        line_id = scan.receipt_lines[0].id
        receipt_service.confirm_line(user.id, scan.id, line_id=line_id, action=LineAction(item_id=item.id))

        with pytest.raises(ScanStateError):
            receipt_service.reopen(user.id, scan.id)


class TestConfirmLine:
    """Test ReceiptService.confirm_line."""

    def test_bind_to_existing_item(self, receipt_service, scan, user, item, notifications):
        line = scan.receipt_lines[0]

        result = receipt_service.confirm_line(user.id, scan.id, line_id=line.id, action=LineAction(item_id=item.id))

        assert db.session.get(Item, item.id).quantity == 6
        assert result.status == ScanStatus.COMPLETED
        assert result.pending_lines == []
        confirmed = result.receipt_lines[0]
        assert confirmed.status == LineStatus.COMPLETED
        assert confirmed.actionable_info.existing_item_id == item.id
        assert confirmed.actionable_info.existing_item_title == "Milk"

        learned = receipt_service.store.get(line.id)
        assert learned.item_id == item.id
        assert learned.ignored is False
        notifications.assert_called_once()
        assert notifications.call_args.args[1] == 2

    def test_line_matched_by_fields(self, receipt_service, scan, user, item):
        result = receipt_service.confirm_line(
            user.id, scan.id, descriptor=LineDescriptor("Milk 2L"), action=LineAction(item_id=item.id)
        )
        assert result.status == ScanStatus.COMPLETED

    def test_explicit_multiplier(self, receipt_service, user, item, make_document):
        scan = receipt_service.ingest(user.id, make_document({"description": "Milk 6x1L", "quantity": 2}))
        line = scan.receipt_lines[0]

        result = receipt_service.confirm_line(
            user.id, scan.id, line_id=line.id, action=LineAction(item_id=item.id, quantity_multiplier=6)
        )

        assert db.session.get(Item, item.id).quantity == 16
        assert result.receipt_lines[0].actionable_info.quantity_change == 12
        assert receipt_service.store.get(line.id).quantity_multiplier == 6

    def test_create_new_item(self, receipt_service, scan, user):
        line = scan.receipt_lines[0]

        receipt_service.confirm_line(
            user.id, scan.id, line_id=line.id, action=LineAction(new_item=NewItemAction(title="Whole milk", warning_amount=1))
        )

        created = db.session.scalars(db.select(Item).filter_by(title="Whole milk")).one()
        assert created.owner_id == user.id
        assert created.quantity == 2
        assert created.warning_amount == 1
        assert receipt_service.store.get(line.id).item_id == created.id

    def test_item_id_takes_precedence(self, receipt_service, scan, user, item):
        line = scan.receipt_lines[0]

        receipt_service.confirm_line(
            user.id,
            scan.id,
            line_id=line.id,
            action=LineAction(item_id=item.id, new_item=NewItemAction(title="Other"), ignore=True),
        )

        assert db.session.get(Item, item.id).quantity == 6
        assert db.session.scalars(db.select(Item).filter_by(title="Other")).first() is None
        assert receipt_service.store.get(line.id).ignored is False

    def test_explicit_ignore(self, receipt_service, scan, user, item, notifications):
        line = scan.receipt_lines[0]

        result = receipt_service.confirm_line(user.id, scan.id, line_id=line.id, action=LineAction(ignore=True))

        assert result.status == ScanStatus.COMPLETED
        assert result.receipt_lines[0].actionable_info.ignore is True
        assert db.session.get(Item, item.id).quantity == 4
        learned = receipt_service.store.get(line.id)
        assert learned.ignored is True
        assert learned.item_id is None
        notifications.assert_not_called()

    def test_ignore_overrides_earlier_binding(self, receipt_service, user, item, make_document):
        document = make_document({"description": "Milk 2L"})
        first = receipt_service.ingest(user.id, document)
        receipt_service.confirm_line(user.id, first.id, line_id=first.receipt_lines[0].id, action=LineAction(item_id=item.id))

        second = receipt_service.ingest(user.id, document)
        receipt_service.confirm_line(user.id, second.id, line_id=second.receipt_lines[0].id, action=LineAction(ignore=True))

        assert _learned_count() == 1
        learned = receipt_service.store.get(first.receipt_lines[0].id)
        assert learned.ignored is True
        assert learned.item_id is None

    def test_previously_ignored_line_needs_no_action(self, receipt_service, user, item, make_document):
        document = make_document({"description": "BAG FEE"})
        first = receipt_service.ingest(user.id, document)
        receipt_service.confirm_line(user.id, first.id, line_id=first.receipt_lines[0].id, action=LineAction(ignore=True))

        second = receipt_service.ingest(user.id, document)
        result = receipt_service.confirm_line(user.id, second.id, line_id=second.receipt_lines[0].id)

        assert result.status == ScanStatus.COMPLETED
        assert db.session.get(Item, item.id).quantity == 4

    def test_learned_item_applies_quantity_without_touching_store(self, receipt_service, user, item, make_document):
        first = receipt_service.ingest(user.id, make_document({"description": "Milk 2L", "quantity": 1}))
        receipt_service.confirm_line(
            user.id, first.id, line_id=first.receipt_lines[0].id, action=LineAction(item_id=item.id, quantity_multiplier=2)
        )
        learned_before = receipt_service.store.get(first.receipt_lines[0].id).updated_at

        second = receipt_service.ingest(user.id, make_document({"description": "Milk 2L", "quantity": 3}))
        assert second.receipt_lines[0].actionable_info.existing_item_id == item.id
        receipt_service.confirm_line(user.id, second.id, line_id=second.receipt_lines[0].id)

        assert db.session.get(Item, item.id).quantity == 4 + 2 + 6
        assert receipt_service.store.get(first.receipt_lines[0].id).updated_at == learned_before

    def test_unresolved_line(self, receipt_service, scan, user):
        line = scan.receipt_lines[0]

        with pytest.raises(UnresolvedLineError) as exc_info:
            receipt_service.confirm_line(user.id, scan.id, line_id=line.id)

        assert exc_info.value.code == "UNRESOLVED_LINE"
        refreshed = receipt_service.get_scan(user.id, scan.id)
        assert refreshed.status == ScanStatus.PENDING
        assert refreshed.pending_lines[0].id == line.id
        assert _learned_count() == 0

    def test_unknown_line(self, receipt_service, scan, user, item):
        with pytest.raises(LineNotFoundError):
            receipt_service.confirm_line(user.id, scan.id, line_id="0" * 64, action=LineAction(item_id=item.id))

    def test_already_completed_line(self, receipt_service, user, item, make_document):
        scan = receipt_service.ingest(user.id, make_document({"description": "Milk"}, {"description": "Bread"}))
        line = scan.receipt_lines[0]
        receipt_service.confirm_line(user.id, scan.id, line_id=line.id, action=LineAction(item_id=item.id))

        with pytest.raises(LineNotFoundError):
            receipt_service.confirm_line(user.id, scan.id, line_id=line.id, action=LineAction(item_id=item.id))

    def test_completed_scan_has_no_pending_lines(self, receipt_service, scan, user, item):
        line_id = scan.receipt_lines[0].id
        receipt_service.confirm_line(user.id, scan.id, line_id=line_id, action=LineAction(item_id=item.id))

        with pytest.raises(LineNotFoundError):
            receipt_service.confirm_line(user.id, scan.id, line_id=line_id, action=LineAction(item_id=item.id))

    def test_cancelled_scan(self, receipt_service, scan, user, item):
        receipt_service.cancel(user.id, scan.id)

        with pytest.raises(ScanStateError):
            receipt_service.confirm_line(
                user.id, scan.id, line_id=scan.receipt_lines[0].id, action=LineAction(item_id=item.id)
            )

    def test_other_owners_scan(self, receipt_service, scan, other_user):
        with pytest.raises(ScanNotFoundError):
            receipt_service.confirm_line(other_user.id, scan.id, line_id=scan.receipt_lines[0].id, action=LineAction(ignore=True))

    def test_other_owners_item(self, receipt_service, scan, user, other_user):
        foreign = Item(title="Their milk", quantity=1, owner_id=other_user.id)
        db.session.add(foreign)
        db.session.commit()

        with pytest.raises(ItemNotFoundError):
            receipt_service.confirm_line(
                user.id, scan.id, line_id=scan.receipt_lines[0].id, action=LineAction(item_id=foreign.id)
            )

        assert db.session.get(Item, foreign.id).quantity == 1
        assert _learned_count() == 0

    def test_zero_quantity_change_is_rejected(self, receipt_service, scan, user, item):
        with pytest.raises(ItemValidationError):
            receipt_service.confirm_line(
                user.id,
                scan.id,
                line_id=scan.receipt_lines[0].id,
                action=LineAction(item_id=item.id, quantity_multiplier=0.1),
            )
        assert receipt_service.get_scan(user.id, scan.id).status == ScanStatus.PENDING

    def test_status_stays_pending_while_lines_remain(self, receipt_service, user, item, make_document):
        scan = receipt_service.ingest(user.id, make_document({"description": "Milk"}, {"description": "Bread"}))

        result = receipt_service.confirm_line(
            user.id, scan.id, line_id=scan.receipt_lines[0].id, action=LineAction(item_id=item.id)
        )

        assert result.status == ScanStatus.PENDING
        assert [line.title for line in result.pending_lines] == ["Bread"]

    def test_concurrent_modification(self, receipt_service, scan, user, item):
        line_id = scan.receipt_lines[0].id
        with patch.object(db.session, "commit", side_effect=_stale_data_error):
            with pytest.raises(ScanConcurrentModificationError):
                receipt_service.confirm_line(user.id, scan.id, line_id=line_id, action=LineAction(item_id=item.id))


def _stale_data_error():
    from sqlalchemy.orm.exc import StaleDataError

    raise StaleDataError("UPDATE statement on table 'receipt_scan' expected to update 1 row(s); 0 were matched.")


class TestConfirmScan:
    """Test ReceiptService.confirm_scan."""

    def _learn(self, receipt_service, user_id, document, **action):
        scan = receipt_service.ingest(user_id, document)
        for line in scan.receipt_lines:
            receipt_service.confirm_line(user_id, scan.id, line_id=line.id, action=LineAction(**action))

    def test_partial_failure(self, receipt_service, user, item, make_document, notifications):
        self._learn(receipt_service, user.id, make_document({"description": "Milk 2L"}), item_id=item.id)
        self._learn(receipt_service, user.id, make_document({"description": "BAG FEE"}), ignore=True)
        notifications.reset_mock()

        scan = receipt_service.ingest(
            user.id,
            make_document(
                {"description": "Milk 2L", "quantity": 3},
                {"description": "BAG FEE"},
                {"description": "Mystery item"},
            ),
        )
        result = receipt_service.confirm_scan(user.id, scan.id)

        assert [line.title for line in result.confirmed] == ["Milk 2L", "BAG FEE"]
        assert [line.title for line in result.unconfirmed] == ["Mystery item"]
        assert result.errors[result.unconfirmed[0].id]["code"] == "UNRESOLVED_LINE"
        assert result.scan.status == ScanStatus.PENDING
        assert [line.title for line in result.scan.pending_lines] == ["Mystery item"]
        assert db.session.get(Item, item.id).quantity == 4 + 1 + 3
        notifications.assert_called_once()

    def test_all_lines_resolved_completes_scan(self, receipt_service, user, item, make_document):
        self._learn(receipt_service, user.id, make_document({"description": "Milk 2L"}), item_id=item.id)

        scan = receipt_service.ingest(user.id, make_document({"description": "Milk 2L", "quantity": 3}))
        result = receipt_service.confirm_scan(user.id, scan.id)

        assert result.unconfirmed == []
        assert result.scan.status == ScanStatus.COMPLETED
        assert db.session.get(Item, item.id).quantity == 4 + 1 + 3

    def test_non_finite_quantity_counts_as_one(self, receipt_service, user, item, make_document):
        scan = receipt_service.ingest(user.id, make_document({"description": "Milk 2L", "quantity": float("nan")}))
        line = scan.receipt_lines[0]
        assert line.quantity == 1

        receipt_service.confirm_line(user.id, scan.id, line_id=line.id, action=LineAction(item_id=item.id))

        assert db.session.get(Item, item.id).quantity == 5

    def test_overflowing_quantity_change_is_reported_per_line(self, receipt_service, user, item, make_document):
        receipt_service.store.bind(LineDescriptor("Milk 2L"), item.id, quantity_multiplier=1e308)
        db.session.commit()
        self._learn(receipt_service, user.id, make_document({"description": "BAG FEE"}), ignore=True)

        scan = receipt_service.ingest(
            user.id, make_document({"description": "Milk 2L", "quantity": 10}, {"description": "BAG FEE"})
        )
        result = receipt_service.confirm_scan(user.id, scan.id)

        assert [line.title for line in result.confirmed] == ["BAG FEE"]
        assert result.errors[result.unconfirmed[0].id]["code"] == "INVALID_ITEM"
        assert result.scan.status == ScanStatus.PENDING

    def test_nothing_resolved(self, receipt_service, scan, user):
        result = receipt_service.confirm_scan(user.id, scan.id)

        assert result.confirmed == []
        assert len(result.unconfirmed) == 1
        assert result.scan.status == ScanStatus.PENDING

    def test_deleted_item_leaves_line_pending(self, receipt_service, user, item, make_document):
        self._learn(receipt_service, user.id, make_document({"description": "Milk 2L"}), item_id=item.id)
        scan = receipt_service.ingest(user.id, make_document({"description": "Milk 2L"}))
        db.session.delete(db.session.get(Item, item.id))
        db.session.commit()

        result = receipt_service.confirm_scan(user.id, scan.id)

        assert [line.title for line in result.unconfirmed] == ["Milk 2L"]
        assert result.errors[result.unconfirmed[0].id]["code"] == "ITEM_NOT_FOUND"
        assert result.scan.status == ScanStatus.PENDING

    def test_failed_line_is_rolled_back(self, receipt_service, user, item, make_document):
        """A line whose item change fails after other writes leaves none of them behind."""
        self._learn(receipt_service, user.id, make_document({"description": "Milk 2L"}), item_id=item.id)
        scan = receipt_service.ingest(user.id, make_document({"description": "Milk 2L", "quantity": 2}))

        with patch(
            "pantry.receipts.services.item_services.apply_quantity_delta",
            side_effect=ItemValidationError("nope"),
        ):
            result = receipt_service.confirm_scan(user.id, scan.id)

        assert len(result.unconfirmed) == 1
        assert db.session.get(Item, item.id).quantity == 5

    def test_cancelled_scan(self, receipt_service, scan, user):
        receipt_service.cancel(user.id, scan.id)
        with pytest.raises(ScanStateError):
            receipt_service.confirm_scan(user.id, scan.id)

    def test_unexpected_errors_propagate(self, receipt_service, user, item, make_document):
        self._learn(receipt_service, user.id, make_document({"description": "Milk 2L"}), item_id=item.id)
        scan = receipt_service.ingest(user.id, make_document({"description": "Milk 2L"}))

        with patch(
            "pantry.receipts.services.item_services.apply_quantity_delta",
            side_effect=RuntimeError("database went away"),
        ):
            with pytest.raises(RuntimeError):
                receipt_service.confirm_scan(user.id, scan.id)

        assert receipt_service.get_scan(user.id, scan.id).status == ScanStatus.PENDING


class TestUpload:
    """Test ReceiptService.upload."""

    @pytest.fixture
    def ocr_client(self):
        client = Mock(spec=OcrClient)
        client.process_document.return_value = {"line_items": [{"description": "Milk 2L", "quantity": 1}]}
        return client

    @pytest.fixture
    def service(self, receipt_service, ocr_client):
        return ReceiptService(receipt_service.store, ocr_client=ocr_client)

    def test_upload_ingests_ocr_document(self, service, ocr_client, user):
        scan = service.upload(user.id, IMAGE, "PNG")

        assert scan.status == ScanStatus.PENDING
        assert scan.receipt_lines[0].title == "Milk 2L"
        base64_data, file_name = ocr_client.process_document.call_args.args
        assert base64_data == IMAGE
        assert file_name.endswith(f"-{user.id}.png")
        assert service.scans_used_this_month(user.id) == 1

    def test_monthly_quota(self, service, ocr_client, user, other_user):
        for _ in range(3):
            service.upload(user.id, IMAGE, "jpg")

        with pytest.raises(ScanQuotaExceededError) as exc_info:
            service.upload(user.id, IMAGE, "jpg")

        assert exc_info.value.limit == 3
        assert ocr_client.process_document.call_count == 3
        service.upload(other_user.id, IMAGE, "jpg")

    def test_deleting_scans_does_not_refund_quota(self, service, user):
        scan = service.upload(user.id, IMAGE, "jpg")
        service.delete_scan(user.id, scan.id)
        assert service.scans_used_this_month(user.id) == 1

    def test_failed_ocr_still_counts(self, service, ocr_client, user):
        ocr_client.process_document.side_effect = OcrServiceError("down")

        with pytest.raises(OcrServiceError):
            service.upload(user.id, IMAGE, "jpg")

        assert db.session.scalar(db.select(func.count(OcrRequest.id))) == 1
        assert db.session.scalar(db.select(func.count(ReceiptScan.id))) == 0

    @pytest.mark.parametrize("extension", ["exe", "", "txt"])
    def test_rejects_unsupported_extension(self, service, ocr_client, user, extension):
        with pytest.raises(MalformedDocumentError):
            service.upload(user.id, IMAGE, extension)
        ocr_client.process_document.assert_not_called()

    def test_rejects_invalid_base64(self, service, ocr_client, user):
        with pytest.raises(MalformedDocumentError):
            service.upload(user.id, "not base64!!", "jpg")
        ocr_client.process_document.assert_not_called()


class TestRemoval:
    """Test delete_scan and delete_all_scans."""

    def test_delete_scan(self, receipt_service, scan, user):
        receipt_service.delete_scan(user.id, scan.id)

        with pytest.raises(ScanNotFoundError):
            receipt_service.get_scan(user.id, scan.id)

    def test_delete_other_owners_scan(self, receipt_service, scan, other_user):
        with pytest.raises(ScanNotFoundError):
            receipt_service.delete_scan(other_user.id, scan.id)

    def test_delete_all_scans(self, receipt_service, user, other_user, make_document):
        receipt_service.ingest(user.id, make_document({"description": "Milk"}))
        receipt_service.ingest(user.id, make_document({"description": "Bread"}))
        kept = receipt_service.ingest(other_user.id, make_document({"description": "Eggs"}))

        assert receipt_service.delete_all_scans(user.id) == 2
        assert receipt_service.get_scans(user.id) == []
        assert receipt_service.get_scan(other_user.id, kept.id).id == kept.id
