"""Shared fixtures: in-memory ledger, directories, fake delivery channel, fixed clock"""

import os
import itertools
from datetime import datetime, timezone
from decimal import Decimal

os.environ["STATE_BACKEND"] = "memory"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from donation_engine.constants import CaseStatus
from donation_engine.models.case import Case
from donation_engine.models.donor import Donor
from donation_engine.models.settings import (
    CurrencySettings,
    EngineSettings,
    OrganizationSettings,
    ReceiptSettings,
    ReconciliationSettings,
)
from donation_engine.orchestrator.engine import DonationEngine
from donation_engine.services.delivery_dispatcher import DeliveryChannel
from donation_engine.services.ledger_writer import LedgerWriter
from donation_engine.tools.collaborators import InMemoryCaseRegistry, InMemoryDonorDirectory
from donation_engine.tools.ledger_store import LedgerStore
from donation_engine.utils.errors import DeliveryError


class FixedClock:
    """Callable clock; tests move it explicitly"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeChannel(DeliveryChannel):
    """Records messages instead of sending them"""

    def __init__(self):
        self.ready = True
        self.fail = False
        self.sent = []

    def is_ready(self) -> bool:
        return self.ready

    def send(self, message) -> str:
        if self.fail:
            raise DeliveryError("relay rejected message")
        self.sent.append(message)
        return f"queued-{len(self.sent)}"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FixedClock(utc(2025, 1, 1, 7, 0))


@pytest.fixture
def organization():
    return OrganizationSettings(
        name="JKVIS Foundation",
        address="123 Charity Street, Toronto, ON, M1A 1A1",
        registration_number="123456789RR0001",
        phone="+1-416-555-0123",
        email="info@jkvis.org",
    )


@pytest.fixture
def donors():
    return InMemoryDonorDirectory([
        Donor(donor_id="donor_a", name="Alice Martin", address="1 King St, Toronto, ON",
              contact_address="alice@example.org"),
        Donor(donor_id="donor_b", name="Bob Singh", address="2 Queen St, Ottawa, ON",
              contact_address="bob@example.org"),
        Donor(donor_id="donor_c", name="Chloe Wu", contact_address="chloe@example.org"),
    ])


@pytest.fixture
def cases():
    return InMemoryCaseRegistry([
        Case(case_id="case_1", funding_target=Decimal("500.00"), status=CaseStatus.APPROVED),
        Case(case_id="case_2", funding_target=Decimal("300.00"), status=CaseStatus.PENDING),
        Case(case_id="case_3", funding_target=Decimal("800.00"), status=CaseStatus.APPROVED),
    ])


@pytest.fixture
def store():
    ledger = LedgerStore(":memory:")
    yield ledger
    ledger.close()


@pytest.fixture
def writer(store, donors, cases, clock):
    return LedgerWriter(store, donors, cases, clock=clock)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def settings(organization, tmp_path):
    return EngineSettings(
        version="1.0",
        organization=organization,
        currency=CurrencySettings(receipt_currency="USD"),
        receipts=ReceiptSettings(artifact_dir=str(tmp_path / "uploads"), rows_per_page=3),
        reconciliation=ReconciliationSettings(retry_base_delay_seconds=0),
    )


@pytest.fixture
def engine(settings, donors, cases, channel, clock, store):
    return DonationEngine(settings, donors, cases, channel=channel, store=store,
                          clock=clock, sleep=lambda seconds: None)


@pytest.fixture
def pay(writer):
    """Record a confirmed payment with a generated transaction ID"""
    counter = itertools.count(1)

    def _pay(donor_id, amount, when, currency="USD", classification="general",
             case_id=None, channel="stripe", txn=None):
        return writer.record_confirmed_payment(
            channel=channel,
            external_transaction_id=txn or f"pi_test_{next(counter):06d}",
            donor_id=donor_id,
            amount=amount,
            currency=currency,
            classification=classification,
            case_id=case_id,
            occurred_at=when,
        )

    return _pay
