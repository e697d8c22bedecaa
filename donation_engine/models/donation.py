"""Donation and confirmed payment data models"""

from decimal import Decimal
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from donation_engine.constants import (
    Currency,
    DonationClassification,
    DonationStatus,
    PaymentChannel,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a timestamp to aware UTC; naive values are taken as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ConfirmedPayment(BaseModel):
    """Trusted payment confirmation, provider-neutral"""

    channel: PaymentChannel = Field(..., description="Payment provider that confirmed the payment")
    external_transaction_id: str = Field(..., min_length=1, description="Provider transaction ID")
    donor_id: str = Field(..., description="Paying donor")
    amount: Decimal = Field(..., description="Confirmed amount in major units")
    currency: Currency = Field(..., description="Payment currency")
    classification: DonationClassification = Field(..., description="Donation purpose")
    case_id: Optional[str] = Field(None, description="Sponsored case, if any")
    occurred_at: Optional[datetime] = Field(None, description="When the provider confirmed the payment")

    class Config:
        frozen = True


class Donation(BaseModel):
    """Ledger entry for one confirmed payment"""

    donation_id: str = Field(..., description="Unique donation ID (UUID)")
    donor_id: str = Field(..., description="Donor reference")
    amount: Decimal = Field(..., gt=0, description="Donated amount")
    currency: Currency = Field(..., description="Donation currency")
    classification: DonationClassification = Field(..., description="Donation purpose")
    case_id: Optional[str] = Field(None, description="Sponsored case reference")
    channel: PaymentChannel = Field(..., description="Payment provider")
    external_transaction_id: str = Field(..., description="Provider transaction ID, unique per channel")
    occurred_at: datetime = Field(..., description="Occurrence timestamp (UTC)")
    status: DonationStatus = Field(DonationStatus.COMPLETED, description="Ledger status")
    created_at: datetime = Field(default_factory=utc_now, description="Ledger write timestamp")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "donation_id": "0b9f3d2e-6a55-4b7c-9f0e-1d2c3b4a5968",
                "donor_id": "665f1c2ab34d7e0012a4c9f1",
                "amount": "250.50",
                "currency": "CAD",
                "classification": "case-sponsorship",
                "case_id": "case_0042",
                "channel": "stripe",
                "external_transaction_id": "pi_3OqY2bJx1234567890",
                "occurred_at": "2024-06-14T15:20:00Z",
                "status": "completed"
            }
        }

    @property
    def is_completed(self) -> bool:
        return self.status == DonationStatus.COMPLETED

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Donation":
        """Build a donation from a ledger row"""
        return cls(
            donation_id=row['donation_id'],
            donor_id=row['donor_id'],
            amount=Decimal(str(row['amount'])),
            currency=row['currency'],
            classification=row['classification'],
            case_id=row.get('case_id') or None,
            channel=row['channel'],
            external_transaction_id=row['external_transaction_id'],
            occurred_at=as_utc(datetime.fromisoformat(row['occurred_at'])),
            status=row['status'],
            created_at=as_utc(datetime.fromisoformat(row['created_at'])),
        )
