"""Render annual tax receipt PDFs with reportlab"""

import io
import time
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence
from xml.sax.saxutils import escape
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.lib.enums import TA_CENTER
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, PageBreak
from donation_engine.constants import (
    ADDRESS_PLACEHOLDER,
    DOCUMENT_RENDER_TIMEOUT_SECONDS,
    DEFAULT_ROWS_PER_PAGE,
    DonationClassification,
    NAME_PLACEHOLDER,
    TRANSACTION_ID_DISPLAY_LENGTH,
)
from donation_engine.models.donation import Donation, utc_now
from donation_engine.models.donor import Donor
from donation_engine.models.settings import OrganizationSettings
from donation_engine.orchestrator.retry_handler import call_with_timeout
from donation_engine.tools.artifact_store import ArtifactStore
from donation_engine.tools.currency import CurrencyConverter, format_amount, round_amount
from donation_engine.utils.errors import DocumentRenderError
from donation_engine.utils.logging import get_logger
from donation_engine.utils.metrics import document_render_time

logger = get_logger(__name__)

TABLE_HEADER = ["Date", "Type", "Amount", "Currency", "Transaction ID"]

CLASSIFICATION_LABELS = {
    DonationClassification.GENERAL: "General Donation",
    DonationClassification.CASE_SPONSORSHIP: "Case Sponsorship",
}

LEGAL_NOTICE = (
    "Official receipt for income tax purposes. No goods or services were provided "
    "in exchange for these donations. This receipt covers all eligible donations "
    "made during the period shown. Please retain it for your tax records."
)


def donation_period(year: int) -> str:
    return f"January 1 - December 31, {year}"


def truncate_transaction_id(transaction_id: str, length: int = TRANSACTION_ID_DISPLAY_LENGTH) -> str:
    if len(transaction_id) <= length:
        return transaction_id
    return transaction_id[:length] + "..."


def paginate_rows(rows: Sequence, rows_per_page: int) -> List[list]:
    """Split table rows into page-sized chunks"""
    if rows_per_page <= 0:
        raise ValueError("rows_per_page must be positive")
    return [list(rows[i:i + rows_per_page]) for i in range(0, len(rows), rows_per_page)]


class ReceiptDocumentGenerator:
    """
    Renders one receipt PDF per (donor, tax year) and stores it.

    Identical inputs produce identical bytes: the document is built with
    reportlab's invariant mode and every date comes from the arguments.
    """

    def __init__(
        self,
        organization: OrganizationSettings,
        artifact_store: ArtifactStore,
        converter: Optional[CurrencyConverter] = None,
        receipt_currency: str = "CAD",
        rows_per_page: int = DEFAULT_ROWS_PER_PAGE,
        timeout_seconds: float = DOCUMENT_RENDER_TIMEOUT_SECONDS
    ):
        if rows_per_page <= 0:
            raise ValueError("rows_per_page must be positive")

        self.organization = organization
        self.artifact_store = artifact_store
        self.converter = converter or CurrencyConverter()
        self.receipt_currency = receipt_currency.upper()
        self.rows_per_page = rows_per_page
        self.timeout_seconds = timeout_seconds
        self.styles = self._build_styles()

    def compute_eligible_amount(self, donations: Sequence[Donation]) -> Decimal:
        """
        Sum completed donations converted to the receipt currency.

        Each converted donation is rounded to cents before summing.
        """
        total = Decimal("0")
        for donation in donations:
            if not donation.is_completed:
                continue
            total += round_amount(self.converter.convert(donation.amount, donation.currency, self.receipt_currency))
        return round_amount(total)

    def generate_receipt_document(
        self,
        donor: Donor,
        donations: Sequence[Donation],
        year: int,
        receipt_number: str,
        issued_at: Optional[datetime] = None
    ) -> str:
        """
        Render and store the receipt document.

        Returns:
            Artifact reference

        Raises:
            DocumentRenderError: On any rendering or storage failure, or timeout
        """
        start_time = time.time()
        try:
            content = call_with_timeout(
                self.render_pdf,
                self.timeout_seconds,
                donor,
                donations,
                year,
                receipt_number,
                issued_at,
                timeout_error=DocumentRenderError
            )
            reference = self.artifact_store.save(receipt_number, content)
        except Exception as e:
            logger.error(
                "Receipt document generation failed",
                receipt_number=receipt_number,
                donor_id=donor.donor_id,
                error=str(e),
                error_type=type(e).__name__
            )
            if isinstance(e, DocumentRenderError):
                raise
            raise DocumentRenderError(f"Failed to generate receipt {receipt_number}: {e}") from e

        elapsed = time.time() - start_time
        document_render_time.observe(elapsed)
        logger.info(
            "Receipt document generated",
            receipt_number=receipt_number,
            donor_id=donor.donor_id,
            artifact_reference=reference,
            duration_seconds=round(elapsed, 3)
        )
        return reference

    def render_pdf(
        self,
        donor: Donor,
        donations: Sequence[Donation],
        year: int,
        receipt_number: str,
        issued_at: Optional[datetime] = None
    ) -> bytes:
        """Render the receipt to PDF bytes without storing it"""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=0.75 * inch,
            leftMargin=0.75 * inch,
            topMargin=0.75 * inch,
            bottomMargin=0.75 * inch,
            title=f"Tax Receipt {receipt_number}",
            author=self.organization.name,
            invariant=1
        )
        story = self.build_story(donor, donations, year, receipt_number, issued_at)
        doc.build(story, onFirstPage=self._draw_page_number, onLaterPages=self._draw_page_number)
        return buffer.getvalue()

    def build_story(
        self,
        donor: Donor,
        donations: Sequence[Donation],
        year: int,
        receipt_number: str,
        issued_at: Optional[datetime] = None
    ) -> list:
        """Assemble the flowables; one donation table chunk per page"""
        eligible = [d for d in donations if d.is_completed]
        eligible_amount = self.compute_eligible_amount(eligible)
        issued_at = issued_at or utc_now()

        story = []
        story.extend(self._organization_header())
        story.append(Paragraph("OFFICIAL DONATION RECEIPT FOR INCOME TAX PURPOSES", self.styles['ReceiptTitle']))
        story.append(Spacer(1, 0.15 * inch))

        story.append(self._box([
            ["Receipt Number:", receipt_number],
            ["Date Issued:", issued_at.strftime("%B %d, %Y")],
            ["Tax Year:", str(year)],
            ["Donation Period:", donation_period(year)],
            ["Total Eligible Amount:", format_amount(eligible_amount, self.receipt_currency)],
        ]))
        story.append(Spacer(1, 0.15 * inch))

        story.append(Paragraph("Donor Information", self.styles['SectionHeading']))
        story.append(self._box([
            ["Name:", donor.name or NAME_PLACEHOLDER],
            ["Address:", donor.address or ADDRESS_PLACEHOLDER],
        ]))
        story.append(Spacer(1, 0.2 * inch))

        story.append(Paragraph("Donation Details", self.styles['SectionHeading']))
        chunks = paginate_rows([self._donation_row(d) for d in eligible], self.rows_per_page)
        if not chunks:
            story.append(Paragraph("No eligible donations in this period.", self.styles['Body']))
        for index, chunk in enumerate(chunks):
            if index > 0:
                story.append(PageBreak())
                story.append(Paragraph(f"Donation Details (continued) - {receipt_number}", self.styles['SectionHeading']))
            story.append(self._donation_table(chunk))

        story.append(Spacer(1, 0.3 * inch))
        story.append(Paragraph(escape(LEGAL_NOTICE), self.styles['Legal']))
        story.append(Spacer(1, 0.2 * inch))
        story.append(Paragraph(
            f"Registration Number: {escape(self.organization.registration_number)}",
            self.styles['Legal']
        ))
        story.append(Spacer(1, 0.5 * inch))
        story.append(Paragraph("_______________________________", self.styles['Body']))
        story.append(Paragraph("Authorized Signature", self.styles['Body']))
        story.append(Paragraph(escape(self.organization.name), self.styles['Body']))
        return story

    def _organization_header(self) -> list:
        org = self.organization
        lines = [org.address]
        contact = " | ".join(value for value in (org.phone, org.email) if value)
        if contact:
            lines.append(contact)
        lines.append(f"Charitable Registration No. {org.registration_number}")

        header = [Paragraph(escape(org.name), self.styles['OrgName'])]
        header.extend(Paragraph(escape(line), self.styles['OrgDetail']) for line in lines)
        header.append(Spacer(1, 0.25 * inch))
        return header

    def _box(self, rows: List[List[str]]) -> Table:
        data = [[label, Paragraph(escape(value), self.styles['Body'])] for label, value in rows]
        table = Table(data, colWidths=[1.9 * inch, 5.0 * inch])
        table.setStyle(TableStyle([
            ('BOX', (0, 0), (-1, -1), 1, colors.black),
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LEFTPADDING', (0, 0), (-1, -1), 8),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
        ]))
        return table

    def _donation_row(self, donation: Donation) -> List[str]:
        return [
            donation.occurred_at.strftime("%Y-%m-%d"),
            CLASSIFICATION_LABELS.get(donation.classification, donation.classification.value),
            f"${round_amount(donation.amount):,.2f}",
            donation.currency.value,
            truncate_transaction_id(donation.external_transaction_id),
        ]

    def _donation_table(self, rows: List[List[str]]) -> Table:
        table = Table(
            [TABLE_HEADER] + rows,
            colWidths=[1.0 * inch, 1.5 * inch, 1.2 * inch, 0.8 * inch, 2.4 * inch],
            repeatRows=1
        )
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#e8e8e8')),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('ALIGN', (2, 1), (2, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ]))
        return table

    def _draw_page_number(self, canvas, doc):
        canvas.saveState()
        canvas.setFont('Helvetica', 8)
        canvas.drawRightString(letter[0] - 0.75 * inch, 0.5 * inch, f"Page {doc.page}")
        canvas.restoreState()

    @staticmethod
    def _build_styles():
        styles = getSampleStyleSheet()
        styles.add(ParagraphStyle('OrgName', parent=styles['Heading1'], alignment=TA_CENTER, fontSize=18, spaceAfter=4))
        styles.add(ParagraphStyle('OrgDetail', parent=styles['Normal'], alignment=TA_CENTER, fontSize=9))
        styles.add(ParagraphStyle('ReceiptTitle', parent=styles['Heading2'], alignment=TA_CENTER, fontSize=13))
        styles.add(ParagraphStyle('SectionHeading', parent=styles['Heading3'], fontSize=11, spaceAfter=4))
        styles.add(ParagraphStyle('Body', parent=styles['Normal'], fontSize=10))
        styles.add(ParagraphStyle('Legal', parent=styles['Normal'], fontSize=8, textColor=colors.HexColor('#444444')))
        return styles
