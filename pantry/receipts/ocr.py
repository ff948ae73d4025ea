"""Client for the external document-processing (OCR) API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import current_app
import requests

from .exceptions import OcrServiceError

logger = logging.getLogger(__name__)


class OcrClient:
    """Submits receipt images and returns the structured document.

    Credentials come from the ``OCR_*`` configuration keys.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        client_id: Optional[str] = None,
        username: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        config = current_app.config
        self.api_url = (api_url or config.get("OCR_API_URL", "")).rstrip("/")
        self.client_id = client_id or config.get("OCR_CLIENT_ID", "")
        self.username = username or config.get("OCR_USERNAME", "")
        self.api_key = api_key or config.get("OCR_API_KEY", "")
        self.timeout = timeout or config.get("OCR_TIMEOUT", 60)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.client_id and self.username and self.api_key)

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "CLIENT-ID": self.client_id,
            "AUTHORIZATION": f"apikey {self.username}:{self.api_key}",
            "User-Agent": "Pantry-Receipts/1.0",
        }

    def process_document(self, base64_data: str, file_name: str) -> Dict[str, Any]:
        """Process a base64 encoded receipt image.

        Args:
            base64_data: Image bytes, base64 encoded
            file_name: Name to report to the provider, extension included

        Returns:
            The provider's document, including ``line_items``

        Raises:
            OcrServiceError: Not configured, request failed, or the response is not a JSON object
        """
        if not self.is_configured:
            raise OcrServiceError("Receipt scanning is not configured")

        url = f"{self.api_url}/documents"
        payload = {"file_name": file_name, "file_data": base64_data}

        try:
            logger.debug(f"Submitting {file_name} to {url}")
            response = requests.post(url, headers=self._get_headers(), json=payload, timeout=self.timeout)
            if response.status_code >= 400:
                logger.error(f"OCR request failed: {response.status_code} - {response.text}")
            response.raise_for_status()
            document = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"OCR API error: {e}")
            raise OcrServiceError("Receipt could not be processed, please try again later") from e
        except ValueError as e:
            logger.error(f"OCR API returned invalid JSON: {e}")
            raise OcrServiceError("Receipt processing returned an invalid response") from e

        if not isinstance(document, dict):
            raise OcrServiceError("Receipt processing returned an invalid response")

        logger.info(f"OCR processed {file_name}: {len(document.get('line_items') or [])} line items")
        return document


def get_ocr_client() -> OcrClient:
    """Get an OcrClient for the current app."""
    return OcrClient()
