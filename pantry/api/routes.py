from __future__ import annotations

from typing import Any, Tuple, cast

from flask import Response, current_app, jsonify, request
from flask_login import current_user, login_required
from marshmallow import ValidationError

from pantry.auth.models import User
from pantry.errors.exceptions import ServiceError
from pantry.extensions import limiter
from pantry.items import services as item_services
from pantry.receipts.extraction import normalize_descriptor
from pantry.receipts.services import LineAction, get_receipt_service

from . import bp, validate_api_csrf
from .schemas import (
    ConfirmLineSchema,
    ItemSchema,
    ItemUpdateSchema,
    QuantityChangeSchema,
    ReceiptDocumentSchema,
    ReceiptUploadSchema,
)

# Schema instances
item_schema = ItemSchema()
items_schema = ItemSchema(many=True)
item_update_schema = ItemUpdateSchema()
quantity_change_schema = QuantityChangeSchema()
document_schema = ReceiptDocumentSchema()
upload_schema = ReceiptUploadSchema()
confirm_line_schema = ConfirmLineSchema()


def _get_current_user() -> User:
    """Get the current authenticated user with proper typing."""
    return cast(User, current_user._get_current_object())


def _create_api_response(
    data: Any = None, message: str = "Success", status: str = "success", code: int = 200
) -> Tuple[Response, int]:
    """Create a standardized API response."""
    response_data = {"status": status, "message": message}
    if data is not None:
        response_data["data"] = data
    return jsonify(response_data), code


def _handle_validation_error(error: ValidationError) -> Tuple[Response, int]:
    """Handle validation errors consistently."""
    return (
        jsonify({"status": "error", "message": "Validation failed", "code": 400, "errors": error.messages}),
        400,
    )


def _handle_service_error(error: Exception, operation: str) -> Tuple[Response, int]:
    """Handle service layer errors consistently.

    Expected domain errors keep their own status and code; anything else is a 500.
    """
    if isinstance(error, ServiceError):
        current_app.logger.info(f"Could not {operation}: {error.message}")
        return (
            jsonify(
                {
                    "status": "error",
                    "message": error.message,
                    "code": error.status_code,
                    "error": error.to_dict(),
                }
            ),
            error.status_code,
        )

    current_app.logger.error(f"Error in {operation}: {str(error)}", exc_info=True)
    return (
        jsonify({"status": "error", "message": f"Failed to {operation}", "code": 500}),
        500,
    )


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError({"_schema": ["Request body must be a JSON object"]})
    return body


# =============================================================================
# RECEIPTS
# =============================================================================


@bp.route("/receipts", methods=["GET"])
@login_required
def get_receipts() -> Tuple[Response, int]:
    """List all receipt scans of the current user, newest first."""
    try:
        user = _get_current_user()
        scans = get_receipt_service().get_scans(user.id)
        return _create_api_response(data=[scan.to_dict() for scan in scans], message="Receipts retrieved successfully")
    except Exception as e:
        return _handle_service_error(e, "retrieve receipts")


@bp.route("/receipts", methods=["POST"])
@login_required
@validate_api_csrf
def ingest_receipt() -> Tuple[Response, int]:
    """Create a receipt scan from an already processed OCR document."""
    try:
        user = _get_current_user()
        document = document_schema.load(_json_body())
        scan = get_receipt_service().ingest(user.id, document)
        return _create_api_response(data=scan.to_dict(), message="Receipt scanned successfully", code=201)
    except ValidationError as e:
        return _handle_validation_error(e)
    except Exception as e:
        return _handle_service_error(e, "scan receipt")


@bp.route("/receipts/upload", methods=["POST"])
@login_required
@validate_api_csrf
@limiter.limit("10 per minute")
def upload_receipt() -> Tuple[Response, int]:
    """Scan a base64 encoded receipt image through OCR."""
    try:
        user = _get_current_user()
        data = upload_schema.load(_json_body())
        scan = get_receipt_service().upload(user.id, data["base64"], data["extension"])
        return _create_api_response(data=scan.to_dict(), message="Receipt scanned successfully", code=201)
    except ValidationError as e:
        return _handle_validation_error(e)
    except Exception as e:
        return _handle_service_error(e, "upload receipt")


@bp.route("/receipts/current", methods=["GET"])
@login_required
def get_current_receipt() -> Tuple[Response, int]:
    """Get the most recent pending scan with its pending lines."""
    try:
        user = _get_current_user()
        scan = get_receipt_service().get_current_scan(user.id)
        if scan is None:
            return jsonify({"status": "success", "message": "No pending receipt", "data": None}), 200
        return _create_api_response(data=scan.to_dict(pending_only=True), message="Receipt retrieved successfully")
    except Exception as e:
        return _handle_service_error(e, "retrieve current receipt")


@bp.route("/receipts/<int:scan_id>", methods=["GET"])
@login_required
def get_receipt(scan_id: int) -> Tuple[Response, int]:
    """Get a single scan, including the raw OCR document."""
    try:
        user = _get_current_user()
        scan = get_receipt_service().get_scan(user.id, scan_id)
        return _create_api_response(data=scan.to_dict(include_document=True), message="Receipt retrieved successfully")
    except Exception as e:
        return _handle_service_error(e, "retrieve receipt")


@bp.route("/receipts/<int:scan_id>/cancel", methods=["PATCH"])
@login_required
@validate_api_csrf
def cancel_receipt(scan_id: int) -> Tuple[Response, int]:
    try:
        user = _get_current_user()
        scan = get_receipt_service().cancel(user.id, scan_id)
        return _create_api_response(data=scan.to_dict(), message="Receipt cancelled successfully")
    except Exception as e:
        return _handle_service_error(e, "cancel receipt")


@bp.route("/receipts/<int:scan_id>/reopen", methods=["PATCH"])
@login_required
@validate_api_csrf
def reopen_receipt(scan_id: int) -> Tuple[Response, int]:
    try:
        user = _get_current_user()
        scan = get_receipt_service().reopen(user.id, scan_id)
        return _create_api_response(data=scan.to_dict(), message="Receipt reopened successfully")
    except Exception as e:
        return _handle_service_error(e, "reopen receipt")


@bp.route("/receipts/<int:scan_id>/confirm", methods=["POST"])
@login_required
@validate_api_csrf
def confirm_receipt(scan_id: int) -> Tuple[Response, int]:
    """Confirm every pending line that has a learned disposition.

    Lines that cannot be confirmed are returned under ``unconfirmed``.
    """
    try:
        user = _get_current_user()
        result = get_receipt_service().confirm_scan(user.id, scan_id)
        data = {
            "receipt": result.scan.to_dict(),
            "unconfirmed": [line.to_dict() for line in result.unconfirmed],
            "errors": result.errors,
        }
        message = "Receipt confirmed successfully" if not result.unconfirmed else "Some lines need attention"
        return _create_api_response(data=data, message=message)
    except Exception as e:
        return _handle_service_error(e, "confirm receipt")


@bp.route("/receipts/<int:scan_id>/lines/confirm", methods=["POST"])
@login_required
@validate_api_csrf
def confirm_receipt_line(scan_id: int) -> Tuple[Response, int]:
    """Confirm one line, optionally binding it to an item, a new item, or ignoring it."""
    try:
        user = _get_current_user()
        data = confirm_line_schema.load(_json_body())
        descriptor = normalize_descriptor(data["line"]) if data.get("line") else None
        scan = get_receipt_service().confirm_line(
            user.id,
            scan_id,
            line_id=data.get("line_id"),
            descriptor=descriptor,
            action=LineAction.from_dict(data.get("action")),
        )
        data = {
            "receipt": scan.to_dict(),
            "unconfirmed": [line.to_dict() for line in scan.pending_lines],
        }
        return _create_api_response(data=data, message="Line confirmed successfully")
    except ValidationError as e:
        return _handle_validation_error(e)
    except Exception as e:
        return _handle_service_error(e, "confirm line")


@bp.route("/receipts/<int:scan_id>", methods=["DELETE"])
@login_required
@validate_api_csrf
def delete_receipt(scan_id: int) -> Tuple[Response, int]:
    try:
        user = _get_current_user()
        get_receipt_service().delete_scan(user.id, scan_id)
        return _create_api_response(message="Receipt deleted successfully", code=204)
    except Exception as e:
        return _handle_service_error(e, "delete receipt")


@bp.route("/receipts", methods=["DELETE"])
@login_required
@validate_api_csrf
def delete_receipts() -> Tuple[Response, int]:
    """Delete every scan of the current user."""
    try:
        user = _get_current_user()
        count = get_receipt_service().delete_all_scans(user.id)
        return _create_api_response(data={"deleted": count}, message="Receipts deleted successfully")
    except Exception as e:
        return _handle_service_error(e, "delete receipts")


# =============================================================================
# ITEMS
# =============================================================================


@bp.route("/items", methods=["GET"])
@login_required
def get_items() -> Tuple[Response, int]:
    """Get all items for the current user."""
    try:
        user = _get_current_user()
        items = item_services.get_items_for_user(user.id)
        return _create_api_response(data=items_schema.dump(items), message="Items retrieved successfully")
    except Exception as e:
        return _handle_service_error(e, "retrieve items")


@bp.route("/items", methods=["POST"])
@login_required
@validate_api_csrf
def create_item() -> Tuple[Response, int]:
    """Create a new item."""
    try:
        user = _get_current_user()
        data = item_schema.load(_json_body())
        item = item_services.create_item_for_user(user.id, data)
        return _create_api_response(data=item_schema.dump(item), message="Item created successfully", code=201)
    except ValidationError as e:
        return _handle_validation_error(e)
    except Exception as e:
        return _handle_service_error(e, "create item")


@bp.route("/items/<int:item_id>", methods=["GET"])
@login_required
def get_item(item_id: int) -> Tuple[Response, int]:
    """Get a single item."""
    try:
        user = _get_current_user()
        item = item_services.require_item_for_user(item_id, user.id)
        return _create_api_response(data=item_schema.dump(item), message="Item retrieved successfully")
    except Exception as e:
        return _handle_service_error(e, "retrieve item")


@bp.route("/items/<int:item_id>", methods=["PUT"])
@login_required
@validate_api_csrf
def update_item(item_id: int) -> Tuple[Response, int]:
    """Update an item's title or warning threshold."""
    try:
        user = _get_current_user()
        item = item_services.require_item_for_user(item_id, user.id)
        data = item_update_schema.load(_json_body())
        updated_item = item_services.update_item_for_user(item, data)
        return _create_api_response(data=item_schema.dump(updated_item), message="Item updated successfully")
    except ValidationError as e:
        return _handle_validation_error(e)
    except Exception as e:
        return _handle_service_error(e, "update item")


@bp.route("/items/<int:item_id>/quantity", methods=["PATCH"])
@login_required
@validate_api_csrf
def update_item_quantity(item_id: int) -> Tuple[Response, int]:
    """Add to or take from an item's stock."""
    try:
        user = _get_current_user()
        data = quantity_change_schema.load(_json_body())
        item = item_services.update_item_quantity(user.id, item_id, data["quantity_change"])
        return _create_api_response(data=item_schema.dump(item), message="Item quantity updated successfully")
    except ValidationError as e:
        return _handle_validation_error(e)
    except Exception as e:
        return _handle_service_error(e, "update item quantity")


@bp.route("/items/<int:item_id>", methods=["DELETE"])
@login_required
@validate_api_csrf
def delete_item(item_id: int) -> Tuple[Response, int]:
    """Delete an item."""
    try:
        user = _get_current_user()
        item = item_services.require_item_for_user(item_id, user.id)
        item_services.delete_item_for_user(item)
        return _create_api_response(message="Item deleted successfully", code=204)
    except Exception as e:
        return _handle_service_error(e, "delete item")
