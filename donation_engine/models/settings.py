"""Engine settings data models"""

from decimal import Decimal
from typing import Dict, Optional
from pydantic import BaseModel, Field
from donation_engine.constants import (
    DEFAULT_EXCHANGE_RATES,
    DEFAULT_MIN_TAX_YEAR,
    DEFAULT_ROWS_PER_PAGE,
    DEFAULT_SCHEDULE_TIMEZONE,
    DELIVERY_TIMEOUT_SECONDS,
    DOCUMENT_RENDER_TIMEOUT_SECONDS,
)


class OrganizationSettings(BaseModel):
    """Issuing organization printed on every receipt"""

    name: str = Field(..., description="Organization legal name")
    address: str = Field(..., description="Organization mailing address")
    registration_number: str = Field(..., description="Charity registration number")
    phone: Optional[str] = Field(None, description="Contact phone")
    email: Optional[str] = Field(None, description="Contact e-mail")
    receipt_prefix: str = Field("JKVIS", description="Prefix for receipt numbers and attachments")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "name": "JKVIS Foundation",
                "address": "123 Charity Street, Toronto, ON, M1A 1A1",
                "registration_number": "123456789RR0001",
                "phone": "+1-416-555-0123",
                "email": "info@jkvis.org",
                "receipt_prefix": "JKVIS"
            }
        }


class CurrencySettings(BaseModel):
    """Static conversion table and receipt currency"""

    receipt_currency: str = Field("CAD", description="Currency receipts are normalized to")
    rates: Dict[str, Dict[str, Decimal]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_EXCHANGE_RATES.items()},
        description="rate[from][to]"
    )

    class Config:
        frozen = True


class ReceiptSettings(BaseModel):
    """Receipt issuance and document layout settings"""

    min_tax_year: int = Field(DEFAULT_MIN_TAX_YEAR, description="Oldest tax year a receipt may cover")
    rows_per_page: int = Field(DEFAULT_ROWS_PER_PAGE, gt=0, description="Donation rows per document page")
    artifact_dir: str = Field("uploads", description="Root directory for rendered artifacts")
    render_timeout_seconds: float = Field(DOCUMENT_RENDER_TIMEOUT_SECONDS, gt=0)

    class Config:
        frozen = True


class DeliverySettings(BaseModel):
    """SMTP delivery channel settings"""

    smtp_host: Optional[str] = Field(None, description="SMTP server host")
    smtp_port: int = Field(587, description="SMTP server port")
    smtp_user: Optional[str] = Field(None, description="SMTP username")
    smtp_password: Optional[str] = Field(None, description="SMTP password")
    start_tls: bool = Field(True, description="Upgrade the connection with STARTTLS")
    sender_address: Optional[str] = Field(None, description="From address for receipt e-mails")
    timeout_seconds: float = Field(DELIVERY_TIMEOUT_SECONDS, gt=0)

    class Config:
        frozen = True


class ReconciliationSettings(BaseModel):
    """Annual reconciliation job settings"""

    max_workers: int = Field(1, ge=1, description="Donor groups processed concurrently")
    ledger_query_retries: int = Field(3, ge=1, description="Attempts to query the ledger")
    retry_base_delay_seconds: float = Field(2, ge=0)
    retry_max_delay_seconds: float = Field(30, ge=0)
    schedule_timezone: str = Field(DEFAULT_SCHEDULE_TIMEZONE, description="Timezone of the annual trigger")

    class Config:
        frozen = True


class StorageSettings(BaseModel):
    """Ledger and receipt store settings"""

    database_path: str = Field(":memory:", description="SQLite database file")

    class Config:
        frozen = True


class EngineSettings(BaseModel):
    """Complete engine configuration"""

    version: str = Field(..., description="Configuration schema version")
    organization: OrganizationSettings
    currency: CurrencySettings = Field(default_factory=CurrencySettings)
    receipts: ReceiptSettings = Field(default_factory=ReceiptSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    class Config:
        frozen = True
