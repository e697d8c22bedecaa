"""SQLite-backed ledger and receipt store"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional
import pandas as pd
from donation_engine.constants import DeliveryStatus, DonationStatus, PaymentChannel
from donation_engine.db.schemas import create_all_tables
from donation_engine.models.donation import Donation, as_utc, utc_now
from donation_engine.models.receipt import Receipt
from donation_engine.utils.errors import DuplicateRecordError, PersistenceError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)

DONATION_COLUMNS = [
    'donation_id', 'donor_id', 'amount', 'currency', 'classification', 'case_id',
    'channel', 'external_transaction_id', 'occurred_at', 'status', 'created_at'
]


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC timestamp so text ordering matches time ordering"""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def year_bounds(year: int):
    """[Jan 1 year, Jan 1 year+1) as stored timestamps"""
    return (
        format_timestamp(datetime(year, 1, 1)),
        format_timestamp(datetime(year + 1, 1, 1)),
    )


class LedgerStore:
    """
    Persists donations, receipts and delivery attempts.

    A single connection is shared between worker threads; every statement
    runs under an internal lock that is released before returning, so no
    lock is held across document rendering or delivery.
    """

    def __init__(self, database_path: str = ":memory:"):
        if database_path != ":memory:":
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)

        self.database_path = database_path
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(database_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            with self._lock, self._conn:
                create_all_tables(self._conn.cursor())
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open ledger store {database_path}: {e}")

        logger.info("Ledger store ready", database_path=database_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Donations
    # ------------------------------------------------------------------

    def find_donation(self, channel: PaymentChannel, external_transaction_id: str) -> Optional[Donation]:
        row = self._fetch_one(
            "SELECT * FROM donations WHERE channel = ? AND external_transaction_id = ?",
            (PaymentChannel(channel).value, external_transaction_id)
        )
        return Donation.from_row(dict(row)) if row else None

    def get_donations(self, donation_ids: Iterable[str]) -> List[Donation]:
        """Fetch donations preserving the order of the given IDs"""
        ids = list(donation_ids)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = self._fetch_all(f"SELECT * FROM donations WHERE donation_id IN ({placeholders})", tuple(ids))
        by_id = {row['donation_id']: Donation.from_row(dict(row)) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    def insert_donation(self, donation: Donation) -> Donation:
        """
        Insert a new ledger entry.

        Raises:
            DuplicateRecordError: If (channel, external_transaction_id) already exists
            PersistenceError: On any other storage error
        """
        self._execute(
            """
            INSERT INTO donations (donation_id, donor_id, amount, currency, classification, case_id,
                                   channel, external_transaction_id, occurred_at, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                donation.donation_id,
                donation.donor_id,
                str(donation.amount),
                donation.currency.value,
                donation.classification.value,
                donation.case_id,
                donation.channel.value,
                donation.external_transaction_id,
                format_timestamp(donation.occurred_at),
                donation.status.value,
                format_timestamp(donation.created_at),
            )
        )
        return donation

    def update_donation_status(self, donation_id: str, status: DonationStatus) -> None:
        self._execute(
            "UPDATE donations SET status = ? WHERE donation_id = ?",
            (DonationStatus(status).value, donation_id)
        )

    def donations_for_year(self, year: int, donor_id: Optional[str] = None,
                           status: DonationStatus = DonationStatus.COMPLETED) -> pd.DataFrame:
        """
        Query donations with occurred_at in [year-start, year-end)

        Returns:
            DataFrame ordered by donor, occurrence time and ID; NULLs as None
        """
        start, end = year_bounds(year)
        sql = """
            SELECT * FROM donations
            WHERE status = ?
              AND occurred_at >= ?
              AND occurred_at < ?
        """
        params = [DonationStatus(status).value, start, end]
        if donor_id is not None:
            sql += " AND donor_id = ?"
            params.append(donor_id)
        sql += " ORDER BY donor_id, occurred_at, donation_id"

        try:
            with self._lock:
                frame = pd.read_sql_query(sql, self._conn, params=tuple(params))
        except Exception as e:
            raise PersistenceError(f"Ledger query failed for {year}: {e}")

        if frame.empty:
            return pd.DataFrame(columns=DONATION_COLUMNS)
        return frame.astype(object).where(frame.notna(), None)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def find_receipt(self, donor_id: str, tax_year: int) -> Optional[Receipt]:
        row = self._fetch_one(
            "SELECT * FROM receipts WHERE donor_id = ? AND tax_year = ?",
            (donor_id, int(tax_year))
        )
        return Receipt.from_row(dict(row)) if row else None

    def get_receipt(self, receipt_number: str) -> Optional[Receipt]:
        row = self._fetch_one("SELECT * FROM receipts WHERE receipt_number = ?", (receipt_number,))
        return Receipt.from_row(dict(row)) if row else None

    def list_receipts(self, tax_year: Optional[int] = None, undocumented_only: bool = False) -> List[Receipt]:
        sql = "SELECT * FROM receipts WHERE 1 = 1"
        params = []
        if tax_year is not None:
            sql += " AND tax_year = ?"
            params.append(int(tax_year))
        if undocumented_only:
            sql += " AND artifact_reference IS NULL"
        sql += " ORDER BY tax_year, issued_at, receipt_number"
        return [Receipt.from_row(dict(row)) for row in self._fetch_all(sql, tuple(params))]

    def insert_receipt(self, receipt: Receipt) -> Receipt:
        """
        Insert a receipt; becomes visible to find_receipt immediately.

        Raises:
            DuplicateRecordError: If the donor already has a receipt for the year,
                or the receipt number is taken
        """
        self._execute(
            """
            INSERT INTO receipts (receipt_id, receipt_number, donor_id, tax_year, donation_ids,
                                  total_eligible_amount, currency, compliance_data,
                                  artifact_reference, issued_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                receipt.receipt_id,
                receipt.receipt_number,
                receipt.donor_id,
                receipt.tax_year,
                json.dumps(receipt.donation_ids),
                str(receipt.total_eligible_amount),
                receipt.currency,
                receipt.compliance_data.model_dump_json(),
                receipt.artifact_reference,
                format_timestamp(receipt.issued_at),
            )
        )
        return receipt

    def attach_artifact(self, receipt_number: str, artifact_reference: str) -> bool:
        """
        Attach an artifact to a receipt that has none.

        Returns:
            True if attached, False if the receipt already had one
        """
        updated = self._execute(
            "UPDATE receipts SET artifact_reference = ? WHERE receipt_number = ? AND artifact_reference IS NULL",
            (artifact_reference, receipt_number)
        )
        return updated == 1

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    def record_delivery(self, receipt_number: str, status: DeliveryStatus, detail: Optional[str] = None) -> None:
        self._execute(
            "INSERT INTO receipt_deliveries (receipt_number, status, detail, attempted_at) VALUES (?, ?, ?, ?)",
            (receipt_number, DeliveryStatus(status).value, detail, format_timestamp(utc_now()))
        )

    def last_delivery_status(self, receipt_number: str) -> Optional[DeliveryStatus]:
        row = self._fetch_one(
            "SELECT status FROM receipt_deliveries WHERE receipt_number = ? "
            "ORDER BY attempted_at DESC, delivery_id DESC LIMIT 1",
            (receipt_number,)
        )
        return DeliveryStatus(row['status']) if row else None

    def list_undelivered_receipts(self, tax_year: Optional[int] = None) -> List[Receipt]:
        """Documented receipts whose most recent delivery attempt is not 'sent'"""
        return [
            receipt for receipt in self.list_receipts(tax_year)
            if receipt.is_documented and self.last_delivery_status(receipt.receipt_number) != DeliveryStatus.SENT
        ]

    # ------------------------------------------------------------------
    # Statement helpers
    # ------------------------------------------------------------------

    def _execute(self, sql: str, params: tuple) -> int:
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(sql, params)
                return cursor.rowcount
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e).upper():
                raise DuplicateRecordError(str(e))
            raise PersistenceError(f"Integrity error: {e}")
        except sqlite3.Error as e:
            raise PersistenceError(f"Storage error: {e}")

    def _fetch_one(self, sql: str, params: tuple):
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Storage error: {e}")

    def _fetch_all(self, sql: str, params: tuple):
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Storage error: {e}")
