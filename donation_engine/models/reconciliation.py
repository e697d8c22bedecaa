"""Reconciliation run data models"""

from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List
from donation_engine.constants import JobStatus
from donation_engine.models.donation import Donation


class DonorGroup(BaseModel):
    """All completed donations of one donor in a tax year"""

    donor_id: str = Field(..., description="Donor reference")
    donations: List[Donation] = Field(default_factory=list, description="Donations in ledger order")
    running_total: Decimal = Field(Decimal("0"), description="Raw sum of donation amounts")


class ReconciliationSummary(BaseModel):
    """Aggregated outcome of one annual reconciliation run"""

    run_id: str = Field(..., description="Run ID (UUID)")
    tax_year: int = Field(..., description="Tax year reconciled")
    status: JobStatus = Field(JobStatus.COMPLETED, description="Run status")
    total_donor_groups: int = Field(0, ge=0)
    success_count: int = Field(0, ge=0, description="Receipts issued with a document")
    skip_count: int = Field(0, ge=0, description="Donors that already had a receipt")
    generation_failures: int = Field(0, ge=0, description="Receipts left without a document")
    delivery_failures: int = Field(0, ge=0, description="Documented receipts not delivered")
    error_count: int = Field(0, ge=0, description="Donors that failed before issuance")
    failed_donor_ids: List[str] = Field(default_factory=list)
    duration_seconds: float = Field(0.0, ge=0)

    class Config:
        json_schema_extra = {
            "example": {
                "run_id": "4f0c2d1e-9b8a-4c7d-8e6f-5a4b3c2d1e0f",
                "tax_year": 2024,
                "status": "completed",
                "total_donor_groups": 3,
                "success_count": 2,
                "skip_count": 0,
                "generation_failures": 1,
                "delivery_failures": 0,
                "error_count": 0,
                "failed_donor_ids": ["donor_b"],
                "duration_seconds": 4.2
            }
        }
