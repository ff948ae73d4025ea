"""Custom exceptions for receipt reconciliation."""

from typing import Optional

from pantry.errors.exceptions import (
    ConflictError,
    NotFoundError,
    QuotaExceededError,
    ServiceValidationError,
    UpstreamServiceError,
)


class ScanNotFoundError(NotFoundError):
    """Raised when a scan does not exist or belongs to another owner."""

    code = "SCAN_NOT_FOUND"

    def __init__(self, scan_id: Optional[int] = None):
        self.scan_id = scan_id
        message = f"Receipt scan with ID {scan_id} not found" if scan_id is not None else "No pending receipt scan"
        super().__init__(message)


class LineNotFoundError(NotFoundError):
    """Raised when the requested line is not among the scan's pending lines."""

    code = "LINE_NOT_FOUND"

    def __init__(self, message: str = "Receipt line not found among pending lines", line_id: Optional[str] = None):
        self.line_id = line_id
        super().__init__(message, field="line_id" if line_id else None)


class MalformedDocumentError(ServiceValidationError):
    """Raised when an OCR document cannot be turned into receipt lines."""

    code = "MALFORMED_DOCUMENT"


class ScanStateError(ConflictError):
    """Raised when a scan is not in the state a transition requires."""

    code = "INVALID_SCAN_STATE"


class ScanConcurrentModificationError(ConflictError):
    """Raised when another request changed the scan first."""

    code = "SCAN_MODIFIED"

    def __init__(self, scan_id: int):
        self.scan_id = scan_id
        super().__init__(f"Receipt scan {scan_id} was modified by another request, please retry")


class UnresolvedLineError(ServiceValidationError):
    """Raised when a line has no explicit or learned disposition."""

    code = "UNRESOLVED_LINE"

    def __init__(self, line_id: str, title: str):
        self.line_id = line_id
        self.title = title
        super().__init__(f"No actionable information provided for line '{title}'", field="action")


class OcrServiceError(UpstreamServiceError):
    """Raised when the document-processing provider fails."""

    code = "OCR_FAILED"


class ScanQuotaExceededError(QuotaExceededError):
    """Raised when an owner has used up this month's scans."""

    code = "SCAN_QUOTA_EXCEEDED"

    def __init__(self, limit: int):
        super().__init__(
            f"You have reached the maximum of {limit} scans for this month. Please try again next month.",
            limit=limit,
        )
