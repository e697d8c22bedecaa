"""Wires settings, storage, collaborators and services into one engine"""

import time
from datetime import datetime
from typing import Callable, Optional
from donation_engine.models.settings import EngineSettings
from donation_engine.orchestrator.reconciliation_job import AnnualReconciliationJob
from donation_engine.orchestrator.scheduler import AnnualScheduler
from donation_engine.services.delivery_dispatcher import DeliveryChannel, DeliveryDispatcher
from donation_engine.services.document_generator import ReceiptDocumentGenerator
from donation_engine.services.ledger_writer import LedgerWriter
from donation_engine.tools.artifact_store import ArtifactStore
from donation_engine.tools.collaborators import CaseRegistry, DonorDirectory
from donation_engine.tools.currency import CurrencyConverter
from donation_engine.tools.ledger_store import LedgerStore
from donation_engine.tools.smtp_channel import SmtpDeliveryChannel
from donation_engine.models.donation import utc_now
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)


class DonationEngine:
    """Composition root; every component receives its settings here"""

    def __init__(
        self,
        settings: EngineSettings,
        donors: DonorDirectory,
        cases: CaseRegistry,
        channel: Optional[DeliveryChannel] = None,
        store: Optional[LedgerStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.settings = settings
        self.clock = clock or utc_now
        self.donors = donors
        self.cases = cases

        self.store = store or LedgerStore(settings.storage.database_path)
        self.converter = CurrencyConverter(settings.currency.rates)
        self.artifact_store = ArtifactStore(settings.receipts.artifact_dir)

        self.ledger_writer = LedgerWriter(self.store, donors, cases, clock=self.clock)
        self.document_generator = ReceiptDocumentGenerator(
            organization=settings.organization,
            artifact_store=self.artifact_store,
            converter=self.converter,
            receipt_currency=settings.currency.receipt_currency,
            rows_per_page=settings.receipts.rows_per_page,
            timeout_seconds=settings.receipts.render_timeout_seconds
        )
        self.dispatcher = DeliveryDispatcher(
            channel=channel or SmtpDeliveryChannel(settings.delivery),
            organization=settings.organization,
            artifact_store=self.artifact_store,
            sender_address=settings.delivery.sender_address,
            timeout_seconds=settings.delivery.timeout_seconds
        )
        self.job = AnnualReconciliationJob(
            store=self.store,
            donors=donors,
            document_generator=self.document_generator,
            dispatcher=self.dispatcher,
            organization=settings.organization,
            settings=settings.reconciliation,
            min_tax_year=settings.receipts.min_tax_year,
            clock=self.clock,
            sleep=sleep
        )

        logger.info(
            "Donation engine ready",
            organization=settings.organization.name,
            receipt_currency=settings.currency.receipt_currency,
            database_path=settings.storage.database_path
        )

    def scheduler(self) -> AnnualScheduler:
        return AnnualScheduler(
            self.job.run_annual_reconciliation,
            tz_name=self.settings.reconciliation.schedule_timezone
        )

    def close(self) -> None:
        self.store.close()
