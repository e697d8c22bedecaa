"""Donation reconciliation and tax-receipt engine"""

__version__ = "1.0.0"
