"""
Wells Fargo Adapter
Email-based submissions to the Wells Fargo loss mitigation mailbox
"""

import base64

from models.application import PreparedApplication, TransformedApplication
from models.submission_result import SubmissionResult, StatusCheckResult, ConnectionTestResult
from models.validation_result import ValidationResult
from services.email_service import EmailService
from utils.logger import get_logger
from .base_adapter import ServicerAdapter, MB

logger = get_logger(__name__)

DEFAULT_CONTACT_EMAIL = "noreply@realign.com"


class WellsFargoAdapter(ServicerAdapter):
    """Adapter for Wells Fargo email submissions"""

    def __init__(self, config, email_service=None, intelligence_service=None):
        super().__init__(config, email_service or EmailService(), intelligence_service)

    async def validate_requirements(self, application: PreparedApplication) -> ValidationResult:
        errors = []
        warnings = []
        suggestions = []
        requirements = self.get_requirements()

        max_attachment_size_mb = requirements.get("max_attachment_size_mb")
        total_size = application.get_total_size()
        if max_attachment_size_mb and total_size > max_attachment_size_mb * MB:
            errors.append(
                f"Total attachment size {total_size / MB:.2f}MB exceeds "
                f"Wells Fargo limit of {max_attachment_size_mb}MB"
            )
            suggestions.append("Consider compressing PDFs or splitting into multiple emails")

        if requirements.get("requires_pdf_only"):
            non_pdf_docs = [doc for doc in application.documents if doc.mime_type != "application/pdf"]
            if non_pdf_docs:
                errors.append("Wells Fargo requires all documents to be in PDF format")
                for doc in non_pdf_docs:
                    suggestions.append(f"Convert {doc.file_name} to PDF format")

        missing = self.find_missing_documents(application)
        if missing:
            errors.append(f"Missing required documents: {', '.join(missing)}")

        for doc in application.documents:
            expected_name = self._attachment_name(application, doc.type)
            if doc.file_name != expected_name:
                warnings.append(f"Consider renaming {doc.file_name} to {expected_name}")

        if requirements.get("read_receipt_required"):
            suggestions.append("Email will be sent with read receipt requested")
        suggestions.append(f"Keep email size under {max_attachment_size_mb or 20}MB for reliable delivery")

        if len(application.documents) > requirements.get("max_attachments", 10):
            warnings.append("Large number of attachments may trigger spam filters")
            suggestions.append("Consider combining related documents into single PDFs")

        return ValidationResult.from_findings(errors, warnings, suggestions)

    async def transform(self, application: PreparedApplication) -> TransformedApplication:
        requirements = self.get_requirements()

        subject = (
            requirements.get("subject_line_format", "Loss Mit - {LOAN_NUMBER} - {BORROWER_LAST_NAME}")
            .replace("{LOAN_NUMBER}", application.loan_number)
            .replace("{BORROWER_LAST_NAME}", (application.borrower_last_name or "").upper())
        )

        attachments = [
            {
                "filename": self._attachment_name(application, doc.type),
                "content": base64.b64encode(doc.content).decode("ascii"),
                "content_type": doc.mime_type,
                "size": doc.size
            }
            for doc in application.documents
        ]

        email_data = {
            "to": self.config.endpoint,
            "cc": list(requirements.get("cc_addresses", [])),
            "subject": subject,
            "body": self.generate_email_body(application),
            "metadata": {
                "loan_number": application.loan_number,
                "case_id": application.case_id,
                "submission_type": "loss_mitigation",
                "total_attachments": len(attachments),
                "total_size": sum(a["size"] for a in attachments)
            }
        }

        headers = {"X-Idempotency-Key": self.idempotency_key({**email_data, "attachments": attachments})}
        if requirements.get("read_receipt_required"):
            contact_email = application.metadata.get("contact_email") or DEFAULT_CONTACT_EMAIL
            headers.update({
                "Return-Receipt-To": contact_email,
                "Disposition-Notification-To": contact_email,
                "X-Priority": "1",
                "Importance": "high"
            })

        return TransformedApplication(
            servicer_id=self.servicer_id,
            format="email",
            data=email_data,
            attachments=attachments,
            headers=headers
        )

    async def submit(self, application: TransformedApplication) -> SubmissionResult:
        metadata = application.data.get("metadata", {})
        logger.info(
            f"Submitting to Wells Fargo via email: loan {metadata.get('loan_number')}, "
            f"{len(application.attachments)} attachments, {metadata.get('total_size')} bytes"
        )

        result = await self.email_service.send_email(
            to=application.data["to"],
            subject=application.data["subject"],
            body=application.data["body"],
            attachments=[
                {
                    "filename": attachment["filename"],
                    "content": base64.b64decode(attachment["content"]),
                    "content_type": attachment["content_type"]
                }
                for attachment in application.attachments
            ],
            cc=application.data.get("cc"),
            headers=application.headers,
            sender=self.config.get_credential("sender")
        )

        if not result.get("success"):
            logger.error(f"Wells Fargo email submission failed: {result.get('error')}")
            return self.failed_result(
                result.get("error") or "Email submission failed",
                "Check email configuration and try again",
                "Consider calling Wells Fargo directly if issues persist"
            )

        message_id = result.get("message_id")
        sent = "Email sent successfully"
        if self.get_requirements().get("read_receipt_required"):
            sent += " with read receipt requested"
        return SubmissionResult(
            success=True,
            tracking_number=message_id,
            confirmation_number=message_id,
            estimated_response_time=self.get_estimated_response_ms(96),
            next_steps=[
                sent,
                "Wells Fargo typically acknowledges receipt within 24-48 hours",
                "Initial review completed within 4-5 business days",
                "You may receive follow-up requests via email or phone",
                "Check spam folder for any Wells Fargo communications"
            ],
            warnings=[
                "Save the email confirmation for your records",
                "Do not send duplicate submissions"
            ],
            raw_response=result
        )

    async def check_status(self, tracking_number: str) -> StatusCheckResult:
        # Email submissions have no status endpoint
        return StatusCheckResult(
            status="pending",
            message="Email submissions require manual status checks. "
                    "Please call Wells Fargo or check your email for updates."
        )

    async def test_connection(self) -> ConnectionTestResult:
        allowed_domain = self.get_requirements().get("allowed_domain", "wellsfargo.com")
        address = self.config.endpoint or ""
        if not address.lower().endswith(f"@{allowed_domain}"):
            return ConnectionTestResult(success=False, message="Invalid Wells Fargo email address")

        check = await self.email_service.check_connection()
        if not check.get("success"):
            return ConnectionTestResult(success=False, message=check.get("error") or "Email service unavailable")

        return ConnectionTestResult(success=True, message="Email configuration valid")

    def generate_email_body(self, application: PreparedApplication) -> str:
        metadata = application.metadata
        documents = "\n".join(
            f"{index}. {doc.type.replace('_', ' ').upper()} ({doc.file_name})"
            for index, doc in enumerate(application.documents, start=1)
        )

        contact_lines = []
        if metadata.get("contact_email"):
            contact_lines.append(f"Email: {metadata['contact_email']}")
        if metadata.get("contact_phone"):
            contact_lines.append(f"Phone: {metadata['contact_phone']}")
        contact_block = "\n".join(contact_lines)

        return (
            "Dear Wells Fargo Loss Mitigation Department,\n\n"
            "I am submitting the attached documentation for loss mitigation review "
            "on the following account:\n\n"
            f"Loan Number: {application.loan_number}\n"
            f"Borrower Name: {application.borrower_name}\n"
            f"Date: {self.format_date(application.prepared_at, 'MM/DD/YYYY')}\n\n"
            "ATTACHED DOCUMENTS:\n"
            f"{documents}\n\n"
            f"Total Attachments: {len(application.documents)}\n\n"
            "I am experiencing financial hardship and am requesting assistance with my mortgage. "
            "All required documentation is attached for your review.\n\n"
            "Please confirm receipt of this submission and advise if any additional information is needed.\n\n"
            "Contact Information:\n"
            f"{contact_block}\n\n"
            "Thank you for your consideration.\n\n"
            "Sincerely,\n"
            f"{application.borrower_name}\n\n"
            "---\n"
            "This submission was prepared and sent via ReAlign Platform\n"
            f"Submission ID: {application.case_id}"
        )

    def _attachment_name(self, application: PreparedApplication, doc_type: str) -> str:
        return self.format_file_name(
            self.get_requirements().get("attachment_naming", "{DOCTYPE}_{LOAN_NUMBER}_{DATE}.pdf"),
            doc_type,
            application.borrower_last_name,
            application.loan_number,
            "pdf",
            application.prepared_at
        )
