"""Annual reconciliation: one receipt per donor and tax year"""

import hashlib
import threading
import time
import uuid
from contextlib import contextmanager
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple
import pandas as pd
from donation_engine.constants import (
    ADDRESS_PLACEHOLDER,
    DEFAULT_MIN_TAX_YEAR,
    DeliveryStatus,
    DonorOutcome,
    JobStatus,
    NAME_PLACEHOLDER,
)
from donation_engine.models.donation import Donation, utc_now
from donation_engine.models.donor import Donor
from donation_engine.models.receipt import ComplianceData, Receipt
from donation_engine.models.reconciliation import DonorGroup, ReconciliationSummary
from donation_engine.models.settings import OrganizationSettings, ReconciliationSettings
from donation_engine.orchestrator import state_manager
from donation_engine.orchestrator.retry_handler import retry_with_exponential_backoff
from donation_engine.services.delivery_dispatcher import DeliveryDispatcher
from donation_engine.services.document_generator import ReceiptDocumentGenerator, donation_period
from donation_engine.tools.collaborators import DonorDirectory
from donation_engine.tools.ledger_store import LedgerStore
from donation_engine.utils.errors import (
    DeliveryError,
    DocumentRenderError,
    DonationEngineError,
    DuplicateRecordError,
    InvalidTaxYearError,
    LedgerUnavailableError,
    NoEligibleDonationsError,
    PersistenceError,
    ReceiptNotFoundError,
)
from donation_engine.utils.logging import get_logger
from donation_engine.utils.metrics import (
    receipts_processed,
    reconciliation_donor_groups,
    reconciliation_job_duration,
)

logger = get_logger(__name__)


def group_donations(frame: pd.DataFrame) -> List[DonorGroup]:
    """
    Group ledger rows by donor, keeping ledger order within each group.

    Args:
        frame: Rows from LedgerStore.donations_for_year

    Returns:
        DonorGroups ordered by donor ID
    """
    groups = []
    if frame.empty:
        return groups

    for donor_id, rows in frame.groupby('donor_id', sort=True):
        donations = [Donation.from_row(row) for row in rows.to_dict('records')]
        groups.append(DonorGroup(
            donor_id=str(donor_id),
            donations=donations,
            running_total=sum((d.amount for d in donations), Decimal("0"))
        ))
    return groups


class AnnualReconciliationJob:
    """
    Issues, documents and delivers annual receipts.

    Per-donor pipelines are failure-isolated: a donor that cannot be
    processed is counted and the run continues. Only setup failures (invalid
    year, ledger unreachable) raise out of a run.
    """

    def __init__(
        self,
        store: LedgerStore,
        donors: DonorDirectory,
        document_generator: ReceiptDocumentGenerator,
        dispatcher: DeliveryDispatcher,
        organization: OrganizationSettings,
        settings: Optional[ReconciliationSettings] = None,
        min_tax_year: int = DEFAULT_MIN_TAX_YEAR,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.donors = donors
        self.document_generator = document_generator
        self.dispatcher = dispatcher
        self.organization = organization
        self.settings = settings or ReconciliationSettings()
        self.min_tax_year = min_tax_year
        self.clock = clock or utc_now
        self.sleep = sleep

        # (donor_id, year) -> [lock, holders]; entries are dropped when unused
        self._issue_locks: Dict[Tuple[str, int], list] = {}
        self._issue_locks_guard = threading.Lock()
        self._background: Dict[str, threading.Thread] = {}

    # ------------------------------------------------------------------
    # Batch run
    # ------------------------------------------------------------------

    def run_annual_reconciliation(self, year: Optional[int] = None,
                                  run_id: Optional[str] = None) -> ReconciliationSummary:
        """
        Reconcile one tax year.

        Args:
            year: Tax year; defaults to the previous calendar year
            run_id: Run ID; generated if omitted

        Returns:
            ReconciliationSummary

        Raises:
            InvalidTaxYearError: Year outside [min_tax_year, current year]
            LedgerUnavailableError: Ledger query failed after retries
        """
        run_id = run_id or str(uuid.uuid4())
        start_time = time.time()

        try:
            year = self._resolve_year(year)
            state_manager.update_job_state(run_id, status=JobStatus.RUNNING.value, tax_year=year,
                                           started_at=self.clock().isoformat())
            logger.info("Reconciliation run started", run_id=run_id, tax_year=year)

            groups = group_donations(self._query_ledger(year))
        except DonationEngineError as e:
            state_manager.update_job_state(run_id, status=JobStatus.FAILED.value, error=str(e))
            logger.error("Reconciliation run failed during setup", run_id=run_id, tax_year=year, error=str(e))
            raise

        reconciliation_donor_groups.labels(tax_year=str(year)).set(len(groups))
        logger.info("Donor groups built", run_id=run_id, tax_year=year, donor_groups=len(groups))

        if self.settings.max_workers > 1 and len(groups) > 1:
            with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
                results = list(executor.map(lambda g: self._process_group(g, year, run_id), groups))
        else:
            results = [self._process_group(group, year, run_id) for group in groups]

        summary = ReconciliationSummary(run_id=run_id, tax_year=year, total_donor_groups=len(groups))
        for donor_id, outcome, delivered in results:
            if outcome == DonorOutcome.ISSUED:
                summary.success_count += 1
                if delivered is False:
                    summary.delivery_failures += 1
            elif outcome == DonorOutcome.SKIPPED:
                summary.skip_count += 1
            elif outcome == DonorOutcome.GENERATION_FAILED:
                summary.generation_failures += 1
                summary.failed_donor_ids.append(donor_id)
            else:
                summary.error_count += 1
                summary.failed_donor_ids.append(donor_id)

        summary.duration_seconds = round(time.time() - start_time, 3)
        reconciliation_job_duration.observe(summary.duration_seconds)
        state_manager.mark_job_complete(run_id, summary.model_dump(mode='json'))

        logger.info(
            "Reconciliation run completed",
            run_id=run_id,
            tax_year=year,
            total_donor_groups=summary.total_donor_groups,
            success_count=summary.success_count,
            skip_count=summary.skip_count,
            generation_failures=summary.generation_failures,
            delivery_failures=summary.delivery_failures,
            error_count=summary.error_count,
            duration_seconds=summary.duration_seconds
        )
        return summary

    def _process_group(self, group: DonorGroup, year: int,
                       run_id: str) -> Tuple[str, DonorOutcome, Optional[bool]]:
        """Returns (donor_id, outcome, delivered); delivered is None when not attempted"""
        donor_id = group.donor_id
        try:
            if self.store.find_receipt(donor_id, year):
                logger.info("Receipt already issued, skipping", run_id=run_id, donor_id=donor_id, tax_year=year)
                receipts_processed.labels(outcome=DonorOutcome.SKIPPED.value).inc()
                return donor_id, DonorOutcome.SKIPPED, None

            donor = self.donors.get_donor(donor_id)
            receipt, created = self._issue_receipt(donor, group.donations, year)
            if not created:
                logger.info("Receipt issued concurrently, skipping", run_id=run_id, donor_id=donor_id)
                receipts_processed.labels(outcome=DonorOutcome.SKIPPED.value).inc()
                return donor_id, DonorOutcome.SKIPPED, None

            try:
                receipt = self._attach_document(donor, receipt, group.donations)
            except DocumentRenderError as e:
                logger.error(
                    "Receipt left without document",
                    run_id=run_id,
                    donor_id=donor_id,
                    receipt_number=receipt.receipt_number,
                    error=str(e)
                )
                receipts_processed.labels(outcome=DonorOutcome.GENERATION_FAILED.value).inc()
                return donor_id, DonorOutcome.GENERATION_FAILED, None

            receipts_processed.labels(outcome=DonorOutcome.ISSUED.value).inc()
            try:
                self._deliver(donor, receipt)
            except DeliveryError:
                return donor_id, DonorOutcome.ISSUED, False
            return donor_id, DonorOutcome.ISSUED, True

        except Exception as e:
            logger.error("Donor processing failed", run_id=run_id, donor_id=donor_id, tax_year=year,
                         error=str(e), error_type=type(e).__name__)
            receipts_processed.labels(outcome=DonorOutcome.ERROR.value).inc()
            return donor_id, DonorOutcome.ERROR, None

    # ------------------------------------------------------------------
    # Single donor (admin)
    # ------------------------------------------------------------------

    def generate_receipt_for_donor(self, donor_id: str, year: int) -> Receipt:
        """
        Issue, document and deliver one donor's receipt synchronously.

        Returns:
            The issued receipt, or the existing one unchanged

        Raises:
            InvalidTaxYearError, DonorNotFoundError, NoEligibleDonationsError,
            DocumentRenderError, ChannelUnavailableError, DeliveryError,
            PersistenceError
        """
        year = self._resolve_year(year)
        existing = self.store.find_receipt(donor_id, year)
        if existing:
            logger.info("Receipt already issued", donor_id=donor_id, tax_year=year,
                        receipt_number=existing.receipt_number)
            return existing

        donor = self.donors.get_donor(donor_id)
        donations = group_donations(self._query_ledger(year, donor_id=donor_id))
        if not donations:
            raise NoEligibleDonationsError(f"No completed donations for {donor_id} in {year}")

        receipt, created = self._issue_receipt(donor, donations[0].donations, year)
        if not created:
            return receipt

        receipt = self._attach_document(donor, receipt, donations[0].donations)
        receipts_processed.labels(outcome=DonorOutcome.ISSUED.value).inc()
        self._deliver(donor, receipt)
        return receipt

    # ------------------------------------------------------------------
    # Background trigger and status
    # ------------------------------------------------------------------

    def trigger_annual_reconciliation(self, year: Optional[int] = None) -> str:
        """Start a run on a background thread and return its run ID"""
        run_id = str(uuid.uuid4())
        state_manager.save_job_state(run_id, {
            'status': JobStatus.SCHEDULED.value,
            'tax_year': year,
            'scheduled_at': self.clock().isoformat()
        })

        thread = threading.Thread(
            target=self._run_in_background,
            args=(year, run_id),
            name=f"reconciliation-{run_id[:8]}",
            daemon=True
        )
        self._background[run_id] = thread
        thread.start()
        logger.info("Reconciliation run triggered", run_id=run_id, tax_year=year)
        return run_id

    def _run_in_background(self, year: Optional[int], run_id: str) -> None:
        try:
            self.run_annual_reconciliation(year, run_id=run_id)
        except DonationEngineError:
            # Already logged and recorded in job state
            pass
        finally:
            self._background.pop(run_id, None)

    def wait_for_run(self, run_id: str, timeout: Optional[float] = None) -> Dict:
        """Block until a triggered run finishes, then return its state"""
        thread = self._background.get(run_id)
        if thread:
            thread.join(timeout)
        return self.get_run_status(run_id)

    def get_run_status(self, run_id: str) -> Dict:
        return state_manager.restore_job_state(run_id)

    # ------------------------------------------------------------------
    # Out-of-band recovery
    # ------------------------------------------------------------------

    def retry_receipt_document(self, receipt_number: str) -> Receipt:
        """
        Render the document for a receipt left undocumented.

        The receipt number and amounts are kept; documented receipts are
        returned unchanged.

        Raises:
            DocumentRenderError: Rendering failed, or a listed donation was
                reversed after issuance
        """
        receipt = self._get_receipt(receipt_number)
        if receipt.is_documented:
            return receipt

        donor = self.donors.get_donor(receipt.donor_id)
        donations = self.store.get_donations(receipt.donation_ids)
        if len(donations) != len(receipt.donation_ids):
            raise DocumentRenderError(f"Receipt {receipt_number} references missing donations")
        receipt = self._attach_document(donor, receipt, donations)
        logger.info("Receipt document regenerated", receipt_number=receipt_number)
        return receipt

    def redeliver_receipt(self, receipt_number: str) -> None:
        receipt = self._get_receipt(receipt_number)
        if not receipt.is_documented:
            raise DeliveryError(f"Receipt {receipt_number} has no document to deliver")
        self._deliver(self.donors.get_donor(receipt.donor_id), receipt)

    def list_undocumented_receipts(self, year: Optional[int] = None) -> List[Receipt]:
        return self.store.list_receipts(year, undocumented_only=True)

    def list_undelivered_receipts(self, year: Optional[int] = None) -> List[Receipt]:
        return self.store.list_undelivered_receipts(year)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_year(self, year: Optional[int]) -> int:
        current_year = self.clock().year
        if year is None:
            year = current_year - 1
        if not isinstance(year, int) or not self.min_tax_year <= year <= current_year:
            raise InvalidTaxYearError(
                f"Tax year must be between {self.min_tax_year} and {current_year}: {year!r}"
            )
        return year

    def _query_ledger(self, year: int, donor_id: Optional[str] = None) -> pd.DataFrame:
        return retry_with_exponential_backoff(
            self.store.donations_for_year,
            year,
            donor_id=donor_id,
            max_retries=self.settings.ledger_query_retries,
            base_delay=self.settings.retry_base_delay_seconds,
            max_delay=self.settings.retry_max_delay_seconds,
            retry_on=(PersistenceError,),
            exhausted_error=LedgerUnavailableError,
            sleep=self.sleep
        )

    def receipt_number(self, donor_id: str, year: int) -> str:
        donor_hash = hashlib.sha1(donor_id.encode("utf-8")).hexdigest()[:6].upper()
        millis = int(self.clock().timestamp() * 1000)
        return f"{self.organization.receipt_prefix}-{year}-{donor_hash}-{millis}"

    @contextmanager
    def _issue_lock(self, donor_id: str, year: int):
        key = (donor_id, year)
        with self._issue_locks_guard:
            entry = self._issue_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._issue_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._issue_locks[key]

    def _issue_receipt(self, donor: Donor, donations: List[Donation], year: int) -> Tuple[Receipt, bool]:
        """
        Persist a new receipt without artifact.

        Returns:
            (receipt, created); created is False when another caller won
        """
        eligible = [d for d in donations if d.is_completed]
        eligible_amount = self.document_generator.compute_eligible_amount(eligible)
        currency = self.document_generator.receipt_currency
        number = self.receipt_number(donor.donor_id, year)

        receipt = Receipt(
            receipt_id=str(uuid.uuid4()),
            receipt_number=number,
            donor_id=donor.donor_id,
            tax_year=year,
            donation_ids=[d.donation_id for d in eligible],
            total_eligible_amount=eligible_amount,
            currency=currency,
            compliance_data=ComplianceData(
                donor_name=donor.name or NAME_PLACEHOLDER,
                donor_address=donor.address or ADDRESS_PLACEHOLDER,
                receipt_number=number,
                donation_period=donation_period(year),
                eligible_amount=eligible_amount,
                currency=currency,
                organization_name=self.organization.name,
                organization_address=self.organization.address,
                organization_registration_number=self.organization.registration_number
            ),
            issued_at=self.clock()
        )

        with self._issue_lock(donor.donor_id, year):
            existing = self.store.find_receipt(donor.donor_id, year)
            if existing:
                return existing, False
            try:
                self.store.insert_receipt(receipt)
            except DuplicateRecordError:
                existing = self.store.find_receipt(donor.donor_id, year)
                if existing:
                    return existing, False
                raise PersistenceError(f"Receipt number collision: {number}")

        logger.info(
            "Receipt issued",
            receipt_number=number,
            donor_id=donor.donor_id,
            tax_year=year,
            eligible_amount=eligible_amount,
            currency=currency,
            donations=len(eligible)
        )
        return receipt, True

    def _attach_document(self, donor: Donor, receipt: Receipt, donations: List[Donation]) -> Receipt:
        """
        Render and attach the receipt document.

        The donations must still add up to the issued total; a receipt whose
        donations changed since issuance is left undocumented.
        """
        current_amount = self.document_generator.compute_eligible_amount(donations)
        if current_amount != receipt.total_eligible_amount:
            logger.error(
                "Receipt donations changed since issuance",
                receipt_number=receipt.receipt_number,
                issued_amount=receipt.total_eligible_amount,
                current_amount=current_amount
            )
            raise DocumentRenderError(
                f"Receipt {receipt.receipt_number} was issued for {receipt.total_eligible_amount} "
                f"but its donations now total {current_amount}"
            )

        reference = self.document_generator.generate_receipt_document(
            donor,
            donations,
            receipt.tax_year,
            receipt.receipt_number,
            issued_at=receipt.issued_at
        )
        if not self.store.attach_artifact(receipt.receipt_number, reference):
            current = self.store.get_receipt(receipt.receipt_number)
            logger.warning("Receipt already had a document", receipt_number=receipt.receipt_number)
            return current
        return receipt.with_artifact(reference)

    def _deliver(self, donor: Donor, receipt: Receipt) -> None:
        try:
            self.dispatcher.deliver_receipt(donor, receipt, receipt.artifact_reference)
        except DeliveryError as e:
            self.store.record_delivery(receipt.receipt_number, DeliveryStatus.FAILED, str(e))
            raise
        self.store.record_delivery(receipt.receipt_number, DeliveryStatus.SENT)

    def _get_receipt(self, receipt_number: str) -> Receipt:
        receipt = self.store.get_receipt(receipt_number)
        if receipt is None:
            raise ReceiptNotFoundError(f"Receipt not found: {receipt_number}")
        return receipt
