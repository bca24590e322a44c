"""
Chase Adapter
API-based submissions to Chase loss mitigation
"""

import base64
from typing import List

from models.application import PreparedApplication, TransformedApplication
from models.submission_result import SubmissionResult, StatusCheckResult, ConnectionTestResult
from models.validation_result import ValidationResult
from services.exceptions import SubmissionError
from utils.logger import get_logger
from .base_adapter import ServicerAdapter

logger = get_logger(__name__)

CHASE_DOC_TYPES = {
    "hardship_letter": "HARDSHIP_EXPLANATION",
    "financial_statement": "FINANCIAL_WORKSHEET",
    "income_verification": "INCOME_DOCS",
    "bank_statement": "BANK_STATEMENTS",
    "tax_return": "TAX_RETURNS",
    "paystub": "PAY_STUBS",
    "cover_letter": "COVER_SHEET"
}


class ChaseAdapter(ServicerAdapter):
    """Adapter for the Chase submissions API"""

    async def validate_requirements(self, application: PreparedApplication) -> ValidationResult:
        errors = []
        warnings = []
        suggestions = []
        requirements = self.get_requirements()

        # Document order
        expected_order = requirements.get("document_order", [])
        if not self._is_order_correct(application.get_document_types(), expected_order):
            warnings.append(f"Chase prefers documents in this order: {', '.join(expected_order)}")
            suggestions.append("Reorder documents for faster processing")

        max_file_size_mb = requirements.get("max_file_size_mb")
        supported_formats = requirements.get("supported_formats", [])

        for doc in application.documents:
            if not self.validate_file_size(doc.size, max_file_size_mb):
                errors.append(f"{doc.file_name} exceeds max size of {max_file_size_mb}MB")

            if not self.validate_file_format(doc.mime_type, supported_formats):
                errors.append(f"{doc.file_name} format not supported. Accepted: {', '.join(supported_formats)}")

            expected_name = self._expected_file_name(application, doc.type, doc.extension)
            if doc.file_name != expected_name:
                suggestions.append(f"Rename {doc.file_name} to {expected_name} for better processing")

        missing = self.find_missing_documents(application)
        if missing:
            errors.append(f"Missing required documents: {', '.join(missing)}")

        if not requirements.get("requires_wet_signature", False):
            suggestions.append("Electronic signatures are accepted")

        return ValidationResult.from_findings(errors, warnings, suggestions)

    async def transform(self, application: PreparedApplication) -> TransformedApplication:
        requirements = self.get_requirements()

        chase_data = {
            "loanNumber": application.loan_number,
            "borrower": {
                "firstName": application.borrower_first_name,
                "lastName": application.borrower_last_name,
                "fullName": application.borrower_name
            },
            "submissionType": "loss_mitigation",
            "submissionDate": self.format_date(application.prepared_at, requirements.get("date_format")),
            "documents": [
                {
                    "documentId": f"DOC-{application.case_id}-{index}",
                    "documentType": CHASE_DOC_TYPES.get(doc.type, "OTHER_DOCUMENT"),
                    "fileName": self._expected_file_name(application, doc.type, doc.extension),
                    "fileSize": doc.size,
                    "mimeType": doc.mime_type,
                    "content": base64.b64encode(doc.content).decode("ascii")
                }
                for index, doc in enumerate(application.documents)
            ],
            "metadata": {
                **application.metadata,
                "caseId": application.case_id,
                "source": "realign_platform",
                "version": "3.0"
            }
        }

        request_key = self.idempotency_key(chase_data)

        return TransformedApplication(
            servicer_id=self.servicer_id,
            format="api",
            data=chase_data,
            headers={
                "Authorization": f"Bearer {self.config.get_credential('api_key', '')}",
                "Content-Type": "application/json",
                "X-Chase-Client-ID": self.config.get_credential("client_id", "realign-platform"),
                "X-Chase-Request-ID": f"REQ-{request_key[:16]}",
                "Idempotency-Key": request_key
            }
        )

    async def submit(self, application: TransformedApplication) -> SubmissionResult:
        try:
            logger.info(
                f"Submitting to Chase API: loan {application.data.get('loanNumber')}, "
                f"{len(application.data.get('documents', []))} documents"
            )

            response = await self._request_json(
                "POST",
                f"{self.config.endpoint}/submissions",
                payload=application.data,
                headers=application.headers
            )

            if response.get("success") is False:
                return self.failed_result(
                    response.get("error") or "Chase rejected the submission",
                    *response.get("errors", [])
                )

            return SubmissionResult(
                success=True,
                tracking_number=response.get("trackingNumber") or response.get("tracking_number"),
                confirmation_number=response.get("confirmationNumber") or response.get("confirmation_number"),
                estimated_response_time=self.get_estimated_response_ms(48),
                next_steps=[
                    "You will receive an email confirmation within 24 hours",
                    "A Chase representative will review your submission within 2 business days",
                    "Additional documents may be requested via secure message"
                ],
                warnings=response.get("warnings", []),
                raw_response=response
            )

        except SubmissionError as e:
            logger.error(f"Chase submission failed: {str(e)}")
            return self.failed_result(str(e), "Please try again or contact support")

    async def check_status(self, tracking_number: str) -> StatusCheckResult:
        try:
            response = await self._request_json(
                "GET",
                f"{self.config.endpoint}/status/{tracking_number}",
                headers=self._auth_headers()
            )

            fields = {
                "status": StatusCheckResult.normalize_status(response.get("status")),
                "message": response.get("message")
            }
            if response.get("lastUpdated"):
                fields["last_updated"] = response["lastUpdated"]
            return StatusCheckResult(**fields)

        except (SubmissionError, ValueError) as e:
            logger.error(f"Chase status check failed: {str(e)}")
            return StatusCheckResult(status="pending", message="Unable to retrieve status")

    async def test_connection(self) -> ConnectionTestResult:
        try:
            response = await self._request_json(
                "GET",
                f"{self.config.endpoint}/health",
                headers=self._auth_headers()
            )
            return ConnectionTestResult(
                success=response.get("status") == "healthy",
                message=response.get("message") or "Connection successful"
            )
        except SubmissionError as e:
            return ConnectionTestResult(success=False, message=str(e))

    def _auth_headers(self):
        return {
            "Authorization": f"Bearer {self.config.get_credential('api_key', '')}",
            "X-Chase-Client-ID": self.config.get_credential("client_id", "realign-platform")
        }

    def _expected_file_name(self, application: PreparedApplication, doc_type: str, extension: str) -> str:
        return self.format_file_name(
            self.get_requirements().get("naming_convention", "{DOCTYPE}_{LASTNAME}_{DATE}.{EXT}"),
            doc_type,
            application.borrower_last_name,
            application.loan_number,
            extension,
            application.prepared_at
        )

    @staticmethod
    def _is_order_correct(actual: List[str], expected: List[str]) -> bool:
        """Known document types must appear in non-decreasing expected position"""
        expected_index = 0
        for doc_type in actual:
            if doc_type not in expected:
                continue
            index = expected.index(doc_type)
            if index < expected_index:
                return False
            expected_index = index
        return True
