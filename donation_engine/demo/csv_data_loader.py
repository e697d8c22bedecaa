"""Demo data loader - replays CSV exports through the ledger writer"""

import pandas as pd
from pathlib import Path
from typing import Dict, Optional
from datetime import datetime
import os
from donation_engine.constants import CaseStatus, DonationClassification
from donation_engine.models.case import Case
from donation_engine.models.donor import Donor
from donation_engine.tools.collaborators import InMemoryCaseRegistry, InMemoryDonorDirectory
from donation_engine.tools.payment_adapters import normalize_classification
from donation_engine.utils.errors import DonationEngineError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)

DONORS_FILE = "donors.csv"
CASES_FILE = "cases.csv"
PAYMENTS_FILE = "payments.csv"


class DemoDataLoader:
    """
    Loads demo data from CSV files in place of the user and case services.

    Donors and cases fill the in-memory collaborator directories; payments
    are replayed through LedgerWriter exactly as provider confirmations
    would arrive, duplicates included.
    """

    def __init__(self, data_dir: Optional[str] = None):
        """
        Initialize demo data loader

        Args:
            data_dir: Directory containing donors.csv, cases.csv and payments.csv
        """
        if data_dir is None:
            data_dir = os.getenv("DEMO_DATA_DIR", "demo_data")

        self.data_dir = Path(data_dir)
        if not self.data_dir.exists():
            raise FileNotFoundError(f"Demo data directory not found: {data_dir}")

        self._donors = None
        self._cases = None
        self._payments = None

        logger.info(f"Demo data loader initialized with data from: {self.data_dir}")

    def _load_csv(self, filename: str) -> pd.DataFrame:
        """Load CSV file as strings; missing files yield an empty frame"""
        filepath = self.data_dir / filename
        if not filepath.exists():
            logger.warning(f"File not found: {filepath}")
            return pd.DataFrame()

        df = pd.read_csv(filepath, dtype=str, keep_default_na=False)
        logger.info(f"Loaded {len(df)} records from {filename}")
        return df

    @property
    def donors(self) -> pd.DataFrame:
        if self._donors is None:
            self._donors = self._load_csv(DONORS_FILE)
        return self._donors

    @property
    def cases(self) -> pd.DataFrame:
        if self._cases is None:
            self._cases = self._load_csv(CASES_FILE)
        return self._cases

    @property
    def payments(self) -> pd.DataFrame:
        """Payments ordered by confirmation time"""
        if self._payments is None:
            df = self._load_csv(PAYMENTS_FILE)
            if not df.empty and 'occurred_at' in df.columns:
                df['occurred_at'] = pd.to_datetime(df['occurred_at'], utc=True)
                df = df.sort_values('occurred_at', kind='stable').reset_index(drop=True)
            self._payments = df
        return self._payments

    def build_donor_directory(self) -> InMemoryDonorDirectory:
        directory = InMemoryDonorDirectory()
        for row in self.donors.to_dict('records'):
            directory.add(Donor(
                donor_id=row['donor_id'],
                name=row['name'],
                address=row.get('address') or None,
                contact_address=row['email']
            ))
        return directory

    def build_case_registry(self) -> InMemoryCaseRegistry:
        registry = InMemoryCaseRegistry()
        for row in self.cases.to_dict('records'):
            registry.add(Case(
                case_id=row['case_id'],
                funding_target=row['funding_target'],
                currency=row.get('currency') or 'CAD',
                status=row.get('status') or CaseStatus.PENDING.value,
                assigned_donor_id=row.get('assigned_donor_id') or None
            ))
        return registry

    def replay_payments(self, writer) -> Dict[str, int]:
        """
        Record every payment row; rejected payments are logged and counted.

        Returns:
            Counts of recorded and rejected rows
        """
        counts = {'recorded': 0, 'rejected': 0}
        for row in self.payments.to_dict('records'):
            occurred_at = row.get('occurred_at')
            try:
                writer.record_confirmed_payment(
                    channel=row['channel'],
                    external_transaction_id=row['transaction_id'],
                    donor_id=row['donor_id'],
                    amount=row['amount'],
                    currency=row['currency'],
                    classification=normalize_classification(row.get('type') or DonationClassification.GENERAL.value),
                    case_id=row.get('case_id') or None,
                    occurred_at=occurred_at.to_pydatetime() if isinstance(occurred_at, pd.Timestamp) else None
                )
                counts['recorded'] += 1
            except DonationEngineError as e:
                logger.warning(
                    "Demo payment rejected",
                    transaction_id=row.get('transaction_id'),
                    error=str(e),
                    error_type=type(e).__name__
                )
                counts['rejected'] += 1

        logger.info("Demo payments replayed", **counts)
        return counts

    def summary(self) -> Dict[str, int]:
        return {
            'donors': len(self.donors),
            'cases': len(self.cases),
            'payments': len(self.payments),
        }


def demo_clock(year: int) -> datetime:
    """A fixed moment early in the year after the demo tax year"""
    return datetime.fromisoformat(f"{year + 1}-01-01T07:00:00+00:00")
