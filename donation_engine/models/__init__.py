"""Data models for the donation engine"""

from .donor import Donor
from .case import Case
from .donation import ConfirmedPayment, Donation
from .receipt import ComplianceData, Receipt
from .reconciliation import DonorGroup, ReconciliationSummary
from .settings import EngineSettings, OrganizationSettings

__all__ = [
    "Donor",
    "Case",
    "ConfirmedPayment",
    "Donation",
    "ComplianceData",
    "Receipt",
    "DonorGroup",
    "ReconciliationSummary",
    "EngineSettings",
    "OrganizationSettings",
]
