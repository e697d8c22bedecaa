"""Idempotent donation ledger writes from confirmed payments"""

import uuid
from datetime import datetime
from typing import Callable, Optional
from donation_engine.constants import (
    Currency,
    DonationClassification,
    DonationStatus,
    PaymentChannel,
)
from donation_engine.models.donation import ConfirmedPayment, Donation, as_utc, utc_now
from donation_engine.tools.collaborators import CaseRegistry, DonorDirectory
from donation_engine.tools.currency import AmountLike, to_decimal
from donation_engine.tools.ledger_store import LedgerStore
from donation_engine.utils.errors import (
    CaseNotEligibleError,
    DuplicateRecordError,
    InvalidAmountError,
    InvalidPaymentError,
    PersistenceError,
)
from donation_engine.utils.logging import get_logger
from donation_engine.utils.metrics import case_assignments, donations_marked_failed, donations_recorded

logger = get_logger(__name__)


def _enum(enum_cls, value, field: str):
    try:
        return enum_cls(getattr(value, 'value', value))
    except ValueError:
        raise InvalidPaymentError(f"Unknown {field}: {value!r}")


class LedgerWriter:
    """
    Turns trusted payment confirmations into ledger entries.

    Repeated confirmations of one (channel, transaction id) return the
    stored donation; sponsorship donations assign their case only after the
    donation has been persisted.
    """

    def __init__(self, store: LedgerStore, donors: DonorDirectory, cases: CaseRegistry,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.donors = donors
        self.cases = cases
        self.clock = clock or utc_now

    def record_payment(self, payment: ConfirmedPayment) -> Donation:
        return self.record_confirmed_payment(
            channel=payment.channel,
            external_transaction_id=payment.external_transaction_id,
            donor_id=payment.donor_id,
            amount=payment.amount,
            currency=payment.currency,
            classification=payment.classification,
            case_id=payment.case_id,
            occurred_at=payment.occurred_at,
        )

    def record_confirmed_payment(
        self,
        channel,
        external_transaction_id: str,
        donor_id: str,
        amount: AmountLike,
        currency,
        classification,
        case_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None
    ) -> Donation:
        """
        Record a confirmed payment exactly once.

        Args:
            channel: Payment provider
            external_transaction_id: Provider transaction ID
            donor_id: Paying donor
            amount: Amount in major units, > 0
            currency: USD or CAD
            classification: general or case-sponsorship
            case_id: Required for case-sponsorship, rejected for general
            occurred_at: Confirmation time; defaults to the clock

        Returns:
            The new donation, or the existing one for a repeated confirmation

        Raises:
            InvalidAmountError: Amount missing, malformed or not positive
            InvalidPaymentError: Unknown channel/currency/classification
            DonorNotFoundError: Donor profile does not exist
            CaseNotEligibleError: Case missing, not approved or already assigned
            PersistenceError: Storage failure
        """
        # 1. Validate
        if amount is None:
            raise InvalidAmountError("Amount is required")
        value = to_decimal(amount)
        if value <= 0:
            raise InvalidAmountError(f"Amount must be positive: {value}")

        channel = _enum(PaymentChannel, channel, "channel")
        currency = _enum(Currency, currency, "currency")
        classification = _enum(DonationClassification, classification, "classification")
        if not external_transaction_id:
            raise InvalidPaymentError("External transaction ID is required")
        if classification == DonationClassification.GENERAL and case_id:
            raise InvalidPaymentError("General donations cannot reference a case")

        # 2. Idempotency before any case check
        existing = self.store.find_donation(channel, external_transaction_id)
        if existing:
            logger.info(
                "Duplicate confirmation, returning existing donation",
                donation_id=existing.donation_id,
                channel=channel.value,
                external_transaction_id=external_transaction_id
            )
            donations_recorded.labels(channel=channel.value, outcome='duplicate').inc()
            return existing

        # 3. Donor must exist
        self.donors.get_donor(donor_id)

        # 4. Case eligibility
        if classification == DonationClassification.CASE_SPONSORSHIP:
            if not case_id:
                raise CaseNotEligibleError("Case sponsorship requires a case ID")
            case = self.cases.get_case(case_id)
            if case is None:
                raise CaseNotEligibleError(f"Case not found: {case_id}")
            if not case.is_available:
                raise CaseNotEligibleError(f"Case {case_id} is not available for sponsorship")

        # 5. Persist
        donation = Donation(
            donation_id=str(uuid.uuid4()),
            donor_id=donor_id,
            amount=value,
            currency=currency,
            classification=classification,
            case_id=case_id or None,
            channel=channel,
            external_transaction_id=external_transaction_id,
            occurred_at=as_utc(occurred_at or self.clock()),
            status=DonationStatus.COMPLETED,
            created_at=as_utc(self.clock()),
        )
        try:
            self.store.insert_donation(donation)
        except DuplicateRecordError:
            existing = self.store.find_donation(channel, external_transaction_id)
            if existing is None:
                raise PersistenceError(
                    f"Duplicate rejected but no donation found for {channel.value}/{external_transaction_id}"
                )
            logger.info("Concurrent duplicate confirmation resolved", donation_id=existing.donation_id)
            donations_recorded.labels(channel=channel.value, outcome='duplicate').inc()
            return existing

        donations_recorded.labels(channel=channel.value, outcome='created').inc()
        logger.info(
            "Donation recorded",
            donation_id=donation.donation_id,
            donor_id=donor_id,
            amount=donation.amount,
            currency=currency.value,
            classification=classification.value,
            channel=channel.value
        )

        # 6. Assign the case after the write
        if classification == DonationClassification.CASE_SPONSORSHIP:
            self._assign_case(donation)

        return donation

    def _assign_case(self, donation: Donation) -> None:
        try:
            self.cases.assign_donor(donation.case_id, donation.donor_id)
        except CaseNotEligibleError as e:
            # The donation stands; reconciliation treats it like a general gift
            logger.warning(
                "Case assignment lost to a concurrent sponsor",
                donation_id=donation.donation_id,
                case_id=donation.case_id,
                donor_id=donation.donor_id,
                error=str(e)
            )
            case_assignments.labels(outcome='lost_race').inc()
            return

        case_assignments.labels(outcome='assigned').inc()

    def mark_transaction_failed(self, channel, external_transaction_id: str) -> Optional[Donation]:
        """
        Move a completed donation to failed after a provider reversal.

        Returns:
            The updated donation, or None if the transaction is unknown
        """
        channel = _enum(PaymentChannel, channel, "channel")
        if not external_transaction_id:
            logger.warning("Failure event without transaction ID ignored", channel=channel.value)
            return None

        donation = self.store.find_donation(channel, external_transaction_id)
        if donation is None:
            logger.warning(
                "Failure event for unknown transaction ignored",
                channel=channel.value,
                external_transaction_id=external_transaction_id
            )
            return None

        if donation.status == DonationStatus.FAILED:
            return donation

        self.store.update_donation_status(donation.donation_id, DonationStatus.FAILED)
        donations_marked_failed.labels(channel=channel.value).inc()
        logger.warning(
            "Donation marked failed",
            donation_id=donation.donation_id,
            channel=channel.value,
            external_transaction_id=external_transaction_id
        )
        return donation.model_copy(update={'status': DonationStatus.FAILED})
