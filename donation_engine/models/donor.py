"""Donor profile data model"""

from pydantic import BaseModel, Field
from typing import Optional


class Donor(BaseModel):
    """Donor profile as returned by the user directory"""

    donor_id: str = Field(..., description="Donor ID")
    name: str = Field(..., description="Display name")
    address: Optional[str] = Field(None, description="Postal address")
    contact_address: str = Field(..., description="E-mail address receipts are delivered to")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "donor_id": "665f1c2ab34d7e0012a4c9f1",
                "name": "Priya Raman",
                "address": "42 Maple Ave, Toronto, ON, M4B 1B3",
                "contact_address": "priya@example.org"
            }
        }
