"""
Bank of America Adapter
Portal-based submissions through an authenticated BofA portal session
"""

import base64
import re
from datetime import datetime, timezone, timedelta
from typing import Dict, Optional

from models.application import PreparedApplication, PreparedDocument, TransformedApplication
from models.submission_result import SubmissionResult, StatusCheckResult, ConnectionTestResult
from models.validation_result import ValidationResult
from services.exceptions import AuthenticationError, SubmissionError
from utils.logger import get_logger
from .base_adapter import ServicerAdapter, MB

logger = get_logger(__name__)

BOFA_DOC_TYPES = {
    "hardship_letter": "HARDSHIP_AFFIDAVIT",
    "financial_statement": "RMA_FINANCIAL_WORKSHEET",
    "income_verification": "PROOF_OF_INCOME",
    "bank_statement": "BANK_STATEMENTS",
    "tax_return": "TAX_RETURNS",
    "paystub": "PAYSTUBS",
    "cover_sheet": "COVER_SHEET",
    "utility_bill": "PROOF_OF_OCCUPANCY"
}

STATUS_MESSAGES = {
    "pending": "Your submission is awaiting review",
    "in_review": "A specialist is reviewing your documents",
    "additional_info_needed": "Additional documentation required. Check your messages.",
    "accepted": "Your loss mitigation request has been approved",
    "rejected": "Unable to approve at this time. See details in your account."
}

COVER_SHEET_TYPES = ("cover_sheet", "cover_letter")


class BofAAdapter(ServicerAdapter):
    """Adapter for the Bank of America loss mitigation portal"""

    def __init__(self, config, email_service=None, intelligence_service=None):
        super().__init__(config, email_service, intelligence_service)
        self.session_token: Optional[str] = None
        self.session_expiry: Optional[datetime] = None

    async def validate_requirements(self, application: PreparedApplication) -> ValidationResult:
        errors = []
        warnings = []
        suggestions = []
        requirements = self.get_requirements()

        max_total_size_mb = requirements.get("max_total_size_mb")
        total_size = application.get_total_size()
        if max_total_size_mb and total_size > max_total_size_mb * MB:
            errors.append(
                f"Total file size {total_size / MB:.2f}MB exceeds limit of {max_total_size_mb}MB"
            )

        max_file_size_mb = requirements.get("max_file_size_mb")
        supported_formats = requirements.get("supported_formats", [])

        for doc in application.documents:
            if not self.validate_file_size(doc.size, max_file_size_mb):
                errors.append(f"{doc.file_name} exceeds max size of {max_file_size_mb}MB")

            if not self.validate_file_format(doc.mime_type, supported_formats):
                errors.append(f"{doc.file_name} format not supported. Accepted: {', '.join(supported_formats)}")

        if requirements.get("requires_cover_sheet") and not application.has_document_type(*COVER_SHEET_TYPES):
            errors.append("Bank of America requires a cover sheet for all submissions")
            suggestions.append("Generate a cover sheet using the BofA template")

        if requirements.get("requires_hardship_reason"):
            if not application.has_document_type("hardship_letter"):
                errors.append("Hardship letter is required")
            else:
                suggestions.append("Ensure hardship letter clearly states the reason for financial difficulty")

        warnings.append(f"Portal session timeout is {requirements.get('session_timeout_minutes', 15)} minutes")
        suggestions.append("Have all documents ready before starting the submission")

        return ValidationResult.from_findings(errors, warnings, suggestions)

    async def transform(self, application: PreparedApplication) -> TransformedApplication:
        requirements = self.get_requirements()

        documents = list(application.documents)
        if requirements.get("requires_cover_sheet") and not application.has_document_type(*COVER_SHEET_TYPES):
            documents.insert(0, self.generate_cover_sheet(application))

        portal_data = {
            "accountNumber": application.loan_number,
            "borrowerInfo": {
                "name": application.borrower_name,
                "lastName": application.borrower_last_name
            },
            "requestType": "LOSS_MITIGATION",
            "hardshipReason": application.metadata.get("hardship_reason", "Financial Hardship"),
            "submissionDate": application.prepared_at.isoformat(),
            "documents": [
                {
                    "id": f"BOFA-DOC-{application.case_id}-{index}",
                    "type": BOFA_DOC_TYPES.get(doc.type, "OTHER"),
                    "name": self.sanitize_file_name(doc.file_name),
                    "size": doc.size,
                    "mimeType": doc.mime_type,
                    "data": base64.b64encode(doc.content).decode("ascii"),
                    "uploadOrder": index + 1
                }
                for index, doc in enumerate(documents)
            ],
            "sessionInfo": {
                # 2 minutes per document
                "expectedDuration": len(documents) * 2,
                "requiresManualUpload": True
            }
        }

        return TransformedApplication(
            servicer_id=self.servicer_id,
            format="portal",
            data=portal_data,
            attachments=[
                {
                    "type": doc.type,
                    "file_name": self.sanitize_file_name(doc.file_name),
                    "mime_type": doc.mime_type,
                    "size": doc.size
                }
                for doc in documents
            ],
            headers={"Idempotency-Key": self.idempotency_key(portal_data)}
        )

    async def submit(self, application: TransformedApplication) -> SubmissionResult:
        try:
            await self.establish_session()

            logger.info(
                f"Submitting to BofA portal: account {application.data.get('accountNumber')}, "
                f"{len(application.data.get('documents', []))} documents"
            )

            try:
                response = await self._request_json(
                    "POST",
                    f"{self.config.endpoint}/loss-mitigation/submissions",
                    payload=application.data,
                    headers={**application.headers, **self._session_headers()}
                )
            except AuthenticationError:
                # Session rejected; the next attempt logs in again
                self.invalidate_session()
                raise

            confirmation_number = response.get("confirmationNumber") or response.get("confirmation_number")
            if not confirmation_number:
                return self.failed_result(
                    "BofA portal did not return a confirmation number",
                    "The portal may be experiencing issues. Please try again later."
                )

            return SubmissionResult(
                success=True,
                confirmation_number=confirmation_number,
                tracking_number=response.get("trackingNumber") or response.get("tracking_number"),
                estimated_response_time=self.get_estimated_response_ms(72),
                next_steps=[
                    "Check your email for confirmation",
                    "Log into BofA online banking to track status",
                    "Expect initial review within 3 business days",
                    "Prepare to provide additional documents if requested"
                ],
                warnings=[
                    "Keep your confirmation number for reference",
                    "Do not submit duplicate applications"
                ],
                raw_response=response
            )

        except SubmissionError as e:
            logger.error(f"BofA portal submission failed: {str(e)}")
            return self.failed_result(str(e), "The portal may be experiencing issues. Please try again later.")

    async def check_status(self, tracking_number: str) -> StatusCheckResult:
        try:
            await self.establish_session()
            response = await self._request_json(
                "GET",
                f"{self.config.endpoint}/loss-mitigation/submissions/{tracking_number}/status",
                headers=self._session_headers()
            )
            status = StatusCheckResult.normalize_status(response.get("status"))
            return StatusCheckResult(
                status=status,
                message=STATUS_MESSAGES.get(status, "Status update pending")
            )
        except SubmissionError as e:
            logger.error(f"BofA status check failed: {str(e)}")
            return StatusCheckResult(
                status="pending",
                message="Unable to retrieve status. Please check the portal directly."
            )

    async def test_connection(self) -> ConnectionTestResult:
        if not self.config.get_credential("username") or not self.config.get_credential("password"):
            return ConnectionTestResult(success=False, message="Portal credentials not configured")

        try:
            self.invalidate_session()
            await self.establish_session()
            return ConnectionTestResult(success=True, message="Portal connection successful")
        except SubmissionError as e:
            return ConnectionTestResult(success=False, message=str(e))

    async def establish_session(self):
        """Log into the portal unless the cached session is still valid"""
        now = datetime.now(timezone.utc)
        if self.session_token and self.session_expiry and self.session_expiry > now:
            return

        username = self.config.get_credential("username")
        password = self.config.get_credential("password")
        if not username or not password:
            raise AuthenticationError("BofA portal authentication failed: credentials not configured")

        logger.debug("Establishing BofA portal session")
        response = await self._request_json(
            "POST",
            f"{self.config.endpoint}/session",
            payload={"username": username, "password": password}
        )

        token = response.get("sessionToken") or response.get("session_token") or response.get("token")
        if not token:
            raise AuthenticationError("BofA portal authentication failed: no session token returned")

        timeout_minutes = self.get_requirements().get("session_timeout_minutes", 15)
        self.session_token = token
        self.session_expiry = now + timedelta(minutes=timeout_minutes)

    def invalidate_session(self):
        self.session_token = None
        self.session_expiry = None

    def generate_cover_sheet(self, application: PreparedApplication) -> PreparedDocument:
        """Plain-text cover sheet listing the package contents"""
        contents = "\n".join(
            f"{index}. {doc.type.replace('_', ' ').upper()}"
            for index, doc in enumerate(application.documents, start=1)
        )
        text = (
            "BANK OF AMERICA LOSS MITIGATION COVER SHEET\n\n"
            f"Date: {self.format_date(application.prepared_at, 'MM/DD/YYYY')}\n"
            f"Loan Number: {application.loan_number}\n"
            f"Borrower Name: {application.borrower_name}\n\n"
            "SUBMISSION CONTENTS:\n"
            f"{contents}\n\n"
            "This package contains all required documentation for loss mitigation review.\n"
            "Please contact us if additional information is needed.\n\n"
            "Generated by ReAlign Platform"
        )
        content = text.encode("utf-8")
        return PreparedDocument(
            type="cover_sheet",
            file_name="BofA_Cover_Sheet.txt",
            content=content,
            mime_type="text/plain",
            size=len(content)
        )

    def sanitize_file_name(self, file_name: str) -> str:
        """Portal file names allow [A-Za-z0-9._-] only"""
        max_length = self.get_requirements().get("max_file_name_length", 50)
        cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", file_name)
        cleaned = re.sub(r"__+", "_", cleaned)
        return cleaned[:max_length]

    def _session_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.session_token}"}
