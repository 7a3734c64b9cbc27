"""
Outbound email with PDF attachments
"""

import base64
import logging
from abc import ABC, abstractmethod
from typing import List

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    Disposition,
    FileContent,
    FileName,
    FileType,
    Mail,
)

from .exceptions import ExternalServiceException
from .models import Registration

logger = logging.getLogger(__name__)


class EmailSender(ABC):
    """Abstract email delivery"""

    @abstractmethod
    def send_with_attachment(
        self, recipient: str, subject: str, body: str, attachment: bytes, filename: str
    ) -> None:
        """
        Send an email carrying one PDF attachment

        Raises:
            ExternalServiceException: If delivery fails
        """


class SendGridEmailSender(EmailSender):
    """Email delivery through SendGrid"""

    def __init__(self, api_key: str, from_email: str):
        self.client = SendGridAPIClient(api_key=api_key)
        self.from_email = from_email

    def send_with_attachment(
        self, recipient: str, subject: str, body: str, attachment: bytes, filename: str
    ) -> None:
        message = Mail(
            from_email=self.from_email,
            to_emails=recipient,
            subject=subject,
            plain_text_content=body,
        )
        message.attachment = Attachment(
            FileContent(base64.b64encode(attachment).decode("ascii")),
            FileName(filename),
            FileType("application/pdf"),
            Disposition("attachment"),
        )

        try:
            response = self.client.send(message)
        except Exception as e:
            logger.exception("Failed to send email to %s", recipient)
            raise ExternalServiceException("email", str(e)) from e

        if response.status_code not in (200, 201, 202):
            raise ExternalServiceException("email", f"SendGrid returned {response.status_code}")
        logger.info("Email sent: to=%s, subject='%s'", recipient, subject)


class EmailService:
    """
    Builds and sends the conference's transactional emails
    """

    def __init__(self, sender: EmailSender, conference_name: str):
        self.sender = sender
        self.conference_name = conference_name

    def send_assignment(
        self,
        record: Registration,
        seat_labels: List[str],
        pdf: bytes,
        filename: str,
        notes: str,
    ) -> None:
        """
        Send a seat assignment receipt

        Args:
            record: Registration-like record of the recipient
            seat_labels: Labels of the assigned seats
            pdf: Rendered receipt
            filename: Attachment file name
            notes: Operator notes included in the body
        """
        lines = [
            f"Hello {record.full_name},",
            "",
            f"The following seats have been assigned to you for {self.conference_name}:",
        ]
        lines.extend(f"  - {label}" for label in seat_labels)
        lines.extend(["", notes, ""])
        if record.receipt_url:
            lines.append(f"Your receipt is attached and also available at {record.receipt_url}")
        else:
            lines.append("Your receipt is attached.")

        self.sender.send_with_attachment(
            recipient=record.email,
            subject=f"{self.conference_name} - Seat assignment",
            body="\n".join(lines),
            attachment=pdf,
            filename=filename.rsplit("/", 1)[-1],
        )


class DisabledEmailSender(EmailSender):
    """Used when SendGrid isn't configured; every send fails"""

    def send_with_attachment(
        self, recipient: str, subject: str, body: str, attachment: bytes, filename: str
    ) -> None:
        logger.warning("Email not sent (SendGrid disabled): %s", subject)
        raise ExternalServiceException("email", "SendGrid is not configured")
