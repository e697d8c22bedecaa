"""Case data model"""

from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional
from donation_engine.constants import CaseStatus, Currency


class Case(BaseModel):
    """Fundable case report"""

    case_id: str = Field(..., description="Case ID")
    funding_target: Decimal = Field(..., gt=0, description="Amount needed to fund the case")
    currency: Currency = Field(Currency.CAD, description="Currency of the funding target")
    status: CaseStatus = Field(CaseStatus.PENDING, description="Lifecycle status")
    assigned_donor_id: Optional[str] = Field(None, description="Sponsoring donor, once assigned")

    class Config:
        frozen = True

    @property
    def is_available(self) -> bool:
        """Approved and not yet sponsored"""
        return self.status == CaseStatus.APPROVED and self.assigned_donor_id is None
