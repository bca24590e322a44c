"""
Servicer Adapter
Abstract contract every servicer adapter implements, plus shared formatting and transport helpers
"""

import asyncio
import hashlib
import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Any, Optional

import aiohttp

from models.application import PreparedApplication, TransformedApplication
from models.servicer import ServicerConfig
from models.submission_result import SubmissionResult, StatusCheckResult, ConnectionTestResult
from models.validation_result import ValidationResult
from services.exceptions import AuthenticationError, SubmissionValidationError, TransportError
from utils.logger import get_logger

logger = get_logger(__name__)

MIME_TYPES = {
    "pdf": ["application/pdf"],
    "jpg": ["image/jpeg", "image/jpg"],
    "jpeg": ["image/jpeg", "image/jpg"],
    "png": ["image/png"],
    "tiff": ["image/tiff"],
    "doc": ["application/msword"],
    "docx": ["application/vnd.openxmlformats-officedocument.wordprocessingml.document"]
}

DEFAULT_TIMEOUT_SECONDS = 30
MB = 1024 * 1024


class ServicerAdapter(ABC):
    """
    Base class for servicer adapters.

    Adapters are independent of each other: each owns its servicer's
    validation rules, payload shape and channel mechanics. `transform` must be
    a pure function of the application and the servicer config so a retried
    attempt sends an identical payload.
    """

    def __init__(self, config: ServicerConfig, email_service=None, intelligence_service=None):
        self.config = config
        self.email_service = email_service
        self.intelligence_service = intelligence_service

    @property
    def servicer_id(self) -> str:
        return self.config.id

    @abstractmethod
    async def validate_requirements(self, application: PreparedApplication) -> ValidationResult:
        """Check a package against servicer rules; errors block submission"""

    @abstractmethod
    async def transform(self, application: PreparedApplication) -> TransformedApplication:
        """Shape a package into the servicer's payload"""

    @abstractmethod
    async def submit(self, application: TransformedApplication) -> SubmissionResult:
        """Deliver a transformed package. Transport failures come back as success=False."""

    @abstractmethod
    async def check_status(self, tracking_number: str) -> StatusCheckResult:
        """Ask the servicer about a previous submission"""

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """Check that the servicer is reachable with our configuration"""

    def get_config(self) -> ServicerConfig:
        return self.config

    def get_requirements(self) -> Dict[str, Any]:
        return self.config.requirements or {}

    def get_timeout_seconds(self) -> float:
        return self.get_requirements().get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)

    def get_estimated_response_ms(self, default_hours: int = 72) -> int:
        hours = self.get_requirements().get("estimated_response_hours", default_hours)
        return int(hours * 60 * 60 * 1000)

    def get_required_documents(self) -> List[str]:
        return list(self.get_requirements().get("required_documents", []) or [])

    def format_date(self, value: datetime, date_format: str = None) -> str:
        """Format a date with MM/DD/YYYY style tokens"""
        date_format = date_format or "MM/DD/YYYY"
        return (
            date_format
            .replace("YYYY", f"{value.year:04d}")
            .replace("YY", f"{value.year % 100:02d}")
            .replace("MM", f"{value.month:02d}")
            .replace("DD", f"{value.day:02d}")
        )

    def format_file_name(
        self,
        template: str,
        doc_type: str,
        last_name: str,
        loan_number: str,
        extension: str,
        date: datetime
    ) -> str:
        """Fill a servicer naming convention"""
        return (
            template
            .replace("{DOCTYPE}", "_".join(doc_type.upper().split()))
            .replace("{LASTNAME}", (last_name or "").upper())
            .replace("{LOAN_NUMBER}", loan_number)
            .replace("{DATE}", self.format_date(date, "MMDDYYYY"))
            .replace("{EXT}", extension.lower())
        )

    def validate_file_size(self, size: int, max_size_mb: Optional[float] = None) -> bool:
        if not max_size_mb:
            return True
        return size <= max_size_mb * MB

    def validate_file_format(self, mime_type: str, supported_formats: Optional[List[str]] = None) -> bool:
        if not supported_formats:
            return True
        return any(
            mime_type.lower() in MIME_TYPES.get(file_format.lower(), [])
            for file_format in supported_formats
        )

    def find_missing_documents(self, application: PreparedApplication) -> List[str]:
        document_types = application.get_document_types()
        return [doc_type for doc_type in self.get_required_documents() if doc_type not in document_types]

    @staticmethod
    def idempotency_key(payload: Any) -> str:
        """SHA-256 of the canonical JSON payload"""
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def failed_result(self, error: str, *hints: str) -> SubmissionResult:
        """Failed submission result with the cause first"""
        return SubmissionResult(success=False, errors=[error, *hints])

    async def _request_json(
        self,
        method: str,
        url: str,
        payload: Dict[str, Any] = None,
        headers: Dict[str, str] = None
    ) -> Dict[str, Any]:
        """
        Make a JSON request to the servicer

        Raises:
            AuthenticationError: 401/403
            SubmissionValidationError: 400/422
            TransportError: other error statuses, client errors and timeouts
        """
        timeout = aiohttp.ClientTimeout(total=self.get_timeout_seconds())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, json=payload, headers=headers) as response:
                    body = await response.text()

                    if response.status in (401, 403):
                        raise AuthenticationError(
                            f"{self.config.name} authentication failed (HTTP {response.status})",
                            status_code=response.status
                        )
                    if response.status in (400, 422):
                        raise SubmissionValidationError(
                            f"{self.config.name} rejected the request: validation failed (HTTP {response.status})",
                            errors=[body[:500]] if body else []
                        )
                    if response.status >= 400:
                        raise TransportError(
                            f"{self.config.name} request failed (HTTP {response.status})",
                            status_code=response.status,
                            response_body=body[:500]
                        )

                    if not body:
                        return {}
                    return json.loads(body)

        except aiohttp.ClientError as e:
            logger.error(f"{self.config.name} request error: {str(e)}")
            raise TransportError(f"{self.config.name} request error: {str(e)}")
        except asyncio.TimeoutError:
            raise TransportError(f"{self.config.name} request timed out after {self.get_timeout_seconds()}s")
        except json.JSONDecodeError:
            raise TransportError(f"{self.config.name} returned a malformed response")
