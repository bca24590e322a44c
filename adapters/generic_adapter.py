"""
Generic Adapter
Fallback adapter for servicers without a dedicated integration, driven by conservative
defaults and learned intelligence
"""

import base64
import re

from models.application import PreparedApplication, TransformedApplication
from models.submission_result import SubmissionResult, StatusCheckResult, ConnectionTestResult
from models.validation_result import ValidationResult
from services.email_service import EmailService
from services.exceptions import SubmissionError, SubmissionFailedError
from utils.logger import get_logger
from .base_adapter import ServicerAdapter, MB

logger = get_logger(__name__)

DEFAULT_MAX_FILE_SIZE_MB = 10
DEFAULT_MAX_TOTAL_SIZE_MB = 50


class GenericAdapter(ServicerAdapter):
    """Adapter that submits over whichever channel the servicer config names"""

    def __init__(self, config, email_service=None, intelligence_service=None):
        super().__init__(config, email_service or EmailService(), intelligence_service)

    async def validate_requirements(self, application: PreparedApplication) -> ValidationResult:
        errors = []
        warnings = []
        suggestions = []
        requirements = self.get_requirements()

        missing = self.find_missing_documents(application)
        if missing:
            errors.append(f"Missing commonly required documents: {', '.join(missing)}")

        # Size limits are unknown for this servicer, so they only warn
        max_file_size_mb = requirements.get("max_file_size_mb", DEFAULT_MAX_FILE_SIZE_MB)
        max_total_size_mb = requirements.get("max_total_size_mb", DEFAULT_MAX_TOTAL_SIZE_MB)

        total_size = application.get_total_size()
        if total_size > max_total_size_mb * MB:
            warnings.append(f"Total file size {total_size / MB:.2f}MB may be too large")
            suggestions.append("Consider compressing files or reducing image quality")

        for doc in application.documents:
            if not self.validate_file_size(doc.size, max_file_size_mb):
                warnings.append(f"{doc.file_name} ({doc.get_size_mb():.2f}MB) may be too large")
            if doc.mime_type != "application/pdf":
                suggestions.append(f"Consider converting {doc.file_name} to PDF format")

        suggestions.extend(requirements.get("recommendations", []) or [])

        suggestions.append("Ensure all documents are clearly legible")
        suggestions.append("Include a cover letter summarizing your situation")
        suggestions.append("Keep copies of all submitted documents")

        return ValidationResult.from_findings(errors, warnings, suggestions)

    async def transform(self, application: PreparedApplication) -> TransformedApplication:
        requirements = self.get_requirements()

        generic_data = {
            "servicerId": self.servicer_id,
            "loanNumber": application.loan_number,
            "borrowerInfo": {
                "fullName": application.borrower_name,
                "lastName": application.borrower_last_name
            },
            "submissionType": "loss_mitigation",
            "submissionDate": application.prepared_at.isoformat(),
            "documents": [
                {
                    "id": f"{self.servicer_id}-DOC-{application.case_id}-{index}",
                    "type": doc.type,
                    "fileName": self.standardize_file_name(doc.extension, doc.type, application),
                    "size": doc.size,
                    "mimeType": doc.mime_type,
                    "content": base64.b64encode(doc.content).decode("ascii"),
                    "order": index + 1
                }
                for index, doc in enumerate(application.documents)
            ],
            "metadata": {
                **application.metadata,
                "caseId": application.case_id,
                "source": "realign_generic_adapter",
                "servicerType": self.config.type,
                "hasIntelligence": bool(requirements.get("learned"))
            }
        }

        if requirements.get("learned"):
            logger.info(
                f"Applying learned intelligence to transformation for {self.servicer_id}: "
                f"{len(requirements.get('recommendations', []) or [])} recommendations"
            )

        return TransformedApplication(
            servicer_id=self.servicer_id,
            format=self.config.type or "portal",
            data=generic_data,
            attachments=[
                {
                    "filename": document["fileName"],
                    "content": document["content"],
                    "content_type": document["mimeType"],
                    "size": document["size"]
                }
                for document in generic_data["documents"]
            ],
            headers={"Idempotency-Key": self.idempotency_key(generic_data)}
        )

    async def submit(self, application: TransformedApplication) -> SubmissionResult:
        try:
            logger.info(
                f"Submitting via generic adapter: {self.servicer_id} by {self.config.type}, "
                f"{len(application.data.get('documents', []))} documents"
            )

            if self.config.type == "api":
                return await self._submit_via_api(application)
            if self.config.type == "email":
                return await self._submit_via_email(application)
            if self.config.type == "fax":
                return await self._submit_via_fax(application)
            return await self._submit_via_portal(application)

        except SubmissionError as e:
            logger.error(f"Generic submission to {self.servicer_id} failed: {str(e)}")
            return self.failed_result(
                str(e),
                f"Unable to submit to {self.config.name}",
                "Please verify servicer requirements and try again"
            )

    async def check_status(self, tracking_number: str) -> StatusCheckResult:
        # Most servicers have no real-time status
        return StatusCheckResult(
            status="pending",
            message=f"Please contact {self.config.name} directly for status updates"
        )

    async def test_connection(self) -> ConnectionTestResult:
        if self.config.type == "api":
            if not self.config.endpoint:
                return ConnectionTestResult(success=False, message="API endpoint not configured")
            try:
                await self._request_json("GET", self.config.endpoint, headers=self._auth_headers())
                return ConnectionTestResult(success=True, message="API endpoint reachable")
            except SubmissionError as e:
                return ConnectionTestResult(success=False, message=f"API endpoint unreachable: {str(e)}")

        if self.config.type == "email":
            check = await self.email_service.check_connection()
            if not check.get("success"):
                return ConnectionTestResult(success=False, message=check.get("error") or "Email service unavailable")
            return ConnectionTestResult(success=True, message="Email configuration valid")

        if self.config.type == "fax":
            return ConnectionTestResult(success=True, message="Fax configuration requires manual verification")

        return ConnectionTestResult(success=True, message="Portal access requires manual verification")

    def standardize_file_name(self, extension: str, doc_type: str, application: PreparedApplication) -> str:
        """DOCTYPE_LOANNUMBER_YYYYMMDD.ext"""
        clean_doc_type = re.sub(r"[^a-zA-Z0-9]", "_", doc_type).upper()
        date = self.format_date(application.prepared_at, "YYYYMMDD")
        return f"{clean_doc_type}_{application.loan_number}_{date}.{extension.lower()}"

    async def _submit_via_api(self, application: TransformedApplication) -> SubmissionResult:
        if not self.config.endpoint:
            raise SubmissionFailedError("API endpoint not configured")

        response = await self._request_json(
            "POST",
            self.config.endpoint,
            payload=application.data,
            headers={**application.headers, **self._auth_headers()}
        )

        return SubmissionResult(
            success=True,
            tracking_number=response.get("trackingNumber") or response.get("tracking_number"),
            confirmation_number=response.get("confirmationNumber") or response.get("confirmation_number"),
            estimated_response_time=self.get_estimated_response_ms(72),
            next_steps=[
                "Submission sent via API",
                "Check your email for confirmation",
                "Response typically received within 3-5 business days"
            ],
            raw_response=response
        )

    async def _submit_via_portal(self, application: TransformedApplication) -> SubmissionResult:
        upload_url = self.get_requirements().get("upload_url") or self.config.endpoint
        if not upload_url:
            raise SubmissionFailedError("Portal endpoint not configured")

        response = await self._request_json(
            "POST",
            upload_url,
            payload=application.data,
            headers={**application.headers, **self._auth_headers()}
        )

        return SubmissionResult(
            success=True,
            confirmation_number=response.get("confirmationNumber") or response.get("confirmation_number"),
            tracking_number=response.get("trackingNumber") or response.get("tracking_number"),
            estimated_response_time=self.get_estimated_response_ms(72),
            next_steps=[
                "Documents uploaded to servicer portal",
                "Log into your account to track status",
                "Initial review within 3-5 business days"
            ],
            raw_response=response
        )

    async def _submit_via_email(self, application: TransformedApplication) -> SubmissionResult:
        address = self.get_requirements().get("email_address") or self.config.endpoint
        if not address:
            raise SubmissionFailedError("Email address not configured")

        data = application.data
        result = await self.email_service.send_email(
            to=address,
            subject=f"Loss Mitigation Submission - {data['loanNumber']} - {data['borrowerInfo']['lastName']}",
            body=(
                f"Please find attached the loss mitigation documents for loan {data['loanNumber']} "
                f"({data['borrowerInfo']['fullName']}).\n\n"
                f"Submission ID: {data['metadata'].get('caseId')}"
            ),
            attachments=[
                {
                    "filename": attachment["filename"],
                    "content": base64.b64decode(attachment["content"]),
                    "content_type": attachment["content_type"]
                }
                for attachment in application.attachments
            ],
            headers={"X-Idempotency-Key": application.headers.get("Idempotency-Key", "")}
        )

        if not result.get("success"):
            raise SubmissionFailedError(result.get("error") or "Email submission failed")

        return SubmissionResult(
            success=True,
            tracking_number=result.get("message_id"),
            estimated_response_time=self.get_estimated_response_ms(96),
            next_steps=[
                "Email sent to servicer",
                "Expect acknowledgment within 24-48 hours",
                "Keep email confirmation for reference"
            ],
            warnings=["Check spam folder for servicer responses"],
            raw_response=result
        )

    async def _submit_via_fax(self, application: TransformedApplication) -> SubmissionResult:
        gateway = self.get_requirements().get("fax_gateway") or self.config.endpoint
        fax_number = self.get_requirements().get("fax_number")
        if not gateway:
            raise SubmissionFailedError("Fax endpoint not configured")

        response = await self._request_json(
            "POST",
            gateway,
            payload={
                "to": fax_number,
                "reference": application.data["metadata"].get("caseId"),
                "documents": [
                    {"fileName": doc["fileName"], "mimeType": doc["mimeType"], "content": doc["content"]}
                    for doc in application.data["documents"]
                ]
            },
            headers={**application.headers, **self._auth_headers()}
        )

        return SubmissionResult(
            success=True,
            tracking_number=response.get("faxId") or response.get("trackingNumber") or response.get("tracking_number"),
            estimated_response_time=self.get_estimated_response_ms(120),
            next_steps=[
                "Documents sent via fax",
                "Call servicer to confirm receipt",
                "Response may take 5-7 business days"
            ],
            warnings=[
                "Fax quality may affect document readability",
                "Consider following up with a phone call"
            ],
            raw_response=response
        )

    def _auth_headers(self):
        api_key = self.config.get_credential("api_key")
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}
