"""Receipt data model"""

import json
from decimal import Decimal
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from donation_engine.models.donation import as_utc, utc_now


class ComplianceData(BaseModel):
    """Fields a tax authority requires on an official donation receipt"""

    donor_name: str = Field(..., description="Donor name at issuance")
    donor_address: str = Field(..., description="Donor address at issuance, or placeholder")
    receipt_number: str = Field(..., description="Receipt number")
    donation_period: str = Field(..., description="Period the receipt covers")
    eligible_amount: Decimal = Field(..., ge=0, description="Eligible amount")
    currency: str = Field(..., description="Currency of the eligible amount")
    organization_name: str = Field(..., description="Issuing organization")
    organization_address: str = Field(..., description="Issuing organization address")
    organization_registration_number: str = Field(..., description="Charity registration number")

    class Config:
        frozen = True


class Receipt(BaseModel):
    """Annual tax receipt, one per donor and tax year"""

    receipt_id: str = Field(..., description="Unique receipt ID (UUID)")
    receipt_number: str = Field(..., description="Printed receipt number, unique system-wide")
    donor_id: str = Field(..., description="Donor reference")
    tax_year: int = Field(..., description="Tax year covered")
    donation_ids: List[str] = Field(default_factory=list, description="Donations covered, in ledger order")
    total_eligible_amount: Decimal = Field(..., ge=0, description="Currency-normalized eligible total")
    currency: str = Field(..., description="Currency of the eligible total")
    compliance_data: ComplianceData
    artifact_reference: Optional[str] = Field(None, description="Rendered document reference")
    issued_at: datetime = Field(default_factory=utc_now, description="Issuance timestamp")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "receipt_id": "8c1e6f1a-33a2-4e55-bb8b-2f0f6f1b2c3d",
                "receipt_number": "JKVIS-2024-3F9A1C-1735718400000",
                "donor_id": "665f1c2ab34d7e0012a4c9f1",
                "tax_year": 2024,
                "donation_ids": ["0b9f3d2e-6a55-4b7c-9f0e-1d2c3b4a5968"],
                "total_eligible_amount": "500.00",
                "currency": "CAD",
                "artifact_reference": "receipts/receipt-JKVIS-2024-3F9A1C-1735718400000.pdf"
            }
        }

    @property
    def is_documented(self) -> bool:
        """True once a rendered artifact is attached"""
        return self.artifact_reference is not None

    def with_artifact(self, artifact_reference: str) -> "Receipt":
        return self.model_copy(update={'artifact_reference': artifact_reference})

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Receipt":
        """Build a receipt from a receipt-store row"""
        return cls(
            receipt_id=row['receipt_id'],
            receipt_number=row['receipt_number'],
            donor_id=row['donor_id'],
            tax_year=int(row['tax_year']),
            donation_ids=json.loads(row['donation_ids']),
            total_eligible_amount=Decimal(str(row['total_eligible_amount'])),
            currency=row['currency'],
            compliance_data=ComplianceData.model_validate_json(row['compliance_data']),
            artifact_reference=row.get('artifact_reference'),
            issued_at=as_utc(datetime.fromisoformat(row['issued_at'])),
        )
