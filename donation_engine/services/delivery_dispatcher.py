"""Deliver rendered receipts to donors"""

from abc import ABC, abstractmethod
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.message import Message
from typing import Optional
from xml.sax.saxutils import escape
from donation_engine.constants import DELIVERY_TIMEOUT_SECONDS
from donation_engine.models.donor import Donor
from donation_engine.models.receipt import Receipt
from donation_engine.models.settings import OrganizationSettings
from donation_engine.orchestrator.retry_handler import call_with_timeout
from donation_engine.tools.artifact_store import ArtifactStore
from donation_engine.tools.currency import format_amount
from donation_engine.utils.errors import ChannelUnavailableError, DeliveryError
from donation_engine.utils.logging import get_logger
from donation_engine.utils.metrics import receipt_deliveries

logger = get_logger(__name__)


class DeliveryChannel(ABC):
    """Transport that carries a prepared message to the donor"""

    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @abstractmethod
    def send(self, message: Message) -> str:
        """
        Returns:
            Transport response or message ID

        Raises:
            DeliveryError: On transport failure
        """


def attachment_name(prefix: str, receipt: Receipt) -> str:
    return f"{prefix}-Tax-Receipt-{receipt.tax_year}-{receipt.receipt_number}.pdf"


class DeliveryDispatcher:
    """Builds receipt e-mails and hands them to a delivery channel"""

    def __init__(
        self,
        channel: DeliveryChannel,
        organization: OrganizationSettings,
        artifact_store: ArtifactStore,
        sender_address: Optional[str] = None,
        timeout_seconds: float = DELIVERY_TIMEOUT_SECONDS
    ):
        self.channel = channel
        self.organization = organization
        self.artifact_store = artifact_store
        self.sender_address = sender_address or organization.email
        self.timeout_seconds = timeout_seconds

    def deliver_receipt(self, donor: Donor, receipt: Receipt, artifact_reference: Optional[str] = None) -> None:
        """
        Send the receipt document to the donor's contact address.

        Raises:
            ChannelUnavailableError: Channel failed its readiness check
            DeliveryError: Transport failure or timeout
        """
        reference = artifact_reference or receipt.artifact_reference
        if not reference:
            raise DeliveryError(f"Receipt {receipt.receipt_number} has no document to deliver")

        if not self.channel.is_ready():
            receipt_deliveries.labels(outcome='channel_unavailable').inc()
            logger.error("Delivery channel not ready", receipt_number=receipt.receipt_number)
            raise ChannelUnavailableError("Delivery channel failed its readiness check")

        try:
            message = self.build_message(donor, receipt, self.artifact_store.read_bytes(reference))
            response = call_with_timeout(
                self.channel.send,
                self.timeout_seconds,
                message,
                timeout_error=DeliveryError
            )
        except DeliveryError as e:
            receipt_deliveries.labels(outcome='failed').inc()
            logger.error(
                "Receipt delivery failed",
                receipt_number=receipt.receipt_number,
                donor_id=donor.donor_id,
                error=str(e)
            )
            raise
        except Exception as e:
            receipt_deliveries.labels(outcome='failed').inc()
            logger.error(
                "Receipt delivery failed",
                receipt_number=receipt.receipt_number,
                donor_id=donor.donor_id,
                error=str(e)
            )
            raise DeliveryError(f"Failed to deliver receipt {receipt.receipt_number}: {e}") from e

        receipt_deliveries.labels(outcome='sent').inc()
        logger.info(
            "Receipt delivered",
            receipt_number=receipt.receipt_number,
            donor_id=donor.donor_id,
            recipient=donor.contact_address,
            response=response
        )

    def build_message(self, donor: Donor, receipt: Receipt, artifact_bytes: bytes) -> MIMEMultipart:
        """Compose the receipt e-mail with the PDF attached"""
        org = self.organization
        amount = format_amount(receipt.total_eligible_amount, receipt.currency)

        message = MIMEMultipart("mixed")
        message["From"] = f"{org.name} <{self.sender_address}>" if self.sender_address else org.name
        message["To"] = donor.contact_address
        message["Subject"] = f"Your {receipt.tax_year} Tax Receipt - {receipt.receipt_number}"

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(self._text_body(donor, receipt, amount), "plain"))
        body.attach(MIMEText(self._html_body(donor, receipt, amount), "html"))
        message.attach(body)

        attachment = MIMEApplication(artifact_bytes, _subtype="pdf")
        attachment.add_header(
            "Content-Disposition",
            "attachment",
            filename=attachment_name(org.receipt_prefix, receipt)
        )
        message.attach(attachment)
        return message

    def _text_body(self, donor: Donor, receipt: Receipt, amount: str) -> str:
        org = self.organization
        return (
            f"Dear {donor.name},\n\n"
            f"Thank you for your generous support of {org.name} during {receipt.tax_year}.\n\n"
            f"Your official tax receipt is attached.\n"
            f"Receipt Number: {receipt.receipt_number}\n"
            f"Tax Year: {receipt.tax_year}\n"
            f"Total Eligible Amount: {amount}\n\n"
            f"Please keep this receipt for your tax records.\n\n"
            f"{org.name}\n"
            f"Registration Number: {org.registration_number}\n"
        )

    def _html_body(self, donor: Donor, receipt: Receipt, amount: str) -> str:
        org = self.organization
        return f"""<html>
  <body style="font-family: Arial, sans-serif; color: #333;">
    <h2>Your {receipt.tax_year} Tax Receipt</h2>
    <p>Dear {escape(donor.name)},</p>
    <p>Thank you for your generous support of {escape(org.name)} during {receipt.tax_year}.</p>
    <p>Your official tax receipt is attached.</p>
    <table cellpadding="4">
      <tr><td><strong>Receipt Number:</strong></td><td>{escape(receipt.receipt_number)}</td></tr>
      <tr><td><strong>Tax Year:</strong></td><td>{receipt.tax_year}</td></tr>
      <tr><td><strong>Total Eligible Amount:</strong></td><td>{escape(amount)}</td></tr>
    </table>
    <p>Please keep this receipt for your tax records.</p>
    <p>{escape(org.name)}<br>Registration Number: {escape(org.registration_number)}</p>
  </body>
</html>
"""
