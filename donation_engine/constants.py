"""Constants and enums for the donation engine"""

from decimal import Decimal
from enum import Enum


class Currency(str, Enum):
    """Supported donation currencies"""
    USD = "USD"
    CAD = "CAD"


class DonationClassification(str, Enum):
    """What a donation is for"""
    GENERAL = "general"
    CASE_SPONSORSHIP = "case-sponsorship"


class PaymentChannel(str, Enum):
    """Payment providers that confirm donations"""
    STRIPE = "stripe"
    PAYPAL = "paypal"


class DonationStatus(str, Enum):
    """Donation ledger status"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CaseStatus(str, Enum):
    """Case lifecycle status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ASSIGNED = "assigned"


class JobStatus(str, Enum):
    """Reconciliation run status"""
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"  # setup failures only; per-donor problems still complete


class DonorOutcome(str, Enum):
    """Result of processing one donor group"""
    ISSUED = "issued"
    SKIPPED = "skipped"
    GENERATION_FAILED = "generation_failed"
    ERROR = "error"


class DeliveryStatus(str, Enum):
    """Receipt delivery attempt status"""
    SENT = "sent"
    FAILED = "failed"


# Provider classification names seen in confirmation payloads
LEGACY_CASE_CLASSIFICATIONS = ("sponsorship", "20kids20", "case-sponsorship")

# Default rate table; CAD->USD is the reciprocal so round trips stay within a cent
DEFAULT_EXCHANGE_RATES = {
    "USD": {"CAD": Decimal("1.35")},
    "CAD": {"USD": Decimal("0.7407407407")},
}

CENT = Decimal("0.01")

# Receipt defaults
DEFAULT_MIN_TAX_YEAR = 2020
DEFAULT_ROWS_PER_PAGE = 25
TRANSACTION_ID_DISPLAY_LENGTH = 20
ADDRESS_PLACEHOLDER = "Address not provided"
NAME_PLACEHOLDER = "Name not provided"
ARTIFACT_SUBDIR = "receipts"

# Timeouts
DOCUMENT_RENDER_TIMEOUT_SECONDS = 60
DELIVERY_TIMEOUT_SECONDS = 30

# Annual trigger: January 1st at 02:00
ANNUAL_RUN_MONTH = 1
ANNUAL_RUN_DAY = 1
ANNUAL_RUN_HOUR = 2
DEFAULT_SCHEDULE_TIMEZONE = "America/Toronto"

# Job state TTL in Redis
JOB_STATE_TTL_SECONDS = 86400
