"""Tests for receipt e-mail construction and delivery"""

import pytest
from decimal import Decimal
from donation_engine.models.receipt import ComplianceData, Receipt
from donation_engine.services.delivery_dispatcher import DeliveryDispatcher
from donation_engine.tools.artifact_store import ArtifactStore
from donation_engine.utils.errors import ChannelUnavailableError, DeliveryError
from conftest import FakeChannel, utc

RECEIPT_NUMBER = "JKVIS-2024-ABCDEF-1735714800000"


@pytest.fixture
def artifact_store(tmp_path):
    store = ArtifactStore(str(tmp_path))
    store.save(RECEIPT_NUMBER, b"%PDF-1.4 fake receipt")
    return store


@pytest.fixture
def receipt():
    return Receipt(
        receipt_id="r-1",
        receipt_number=RECEIPT_NUMBER,
        donor_id="donor_a",
        tax_year=2024,
        donation_ids=["d-1"],
        total_eligible_amount=Decimal("500.00"),
        currency="USD",
        compliance_data=ComplianceData(
            donor_name="Alice Martin",
            donor_address="1 King St, Toronto, ON",
            receipt_number=RECEIPT_NUMBER,
            donation_period="January 1 - December 31, 2024",
            eligible_amount=Decimal("500.00"),
            currency="USD",
            organization_name="JKVIS Foundation",
            organization_address="123 Charity Street",
            organization_registration_number="123456789RR0001",
        ),
        artifact_reference=ArtifactStore.reference_for(RECEIPT_NUMBER),
        issued_at=utc(2025, 1, 1, 7),
    )


@pytest.fixture
def dispatcher(organization, artifact_store):
    return DeliveryDispatcher(FakeChannel(), organization, artifact_store,
                              sender_address="receipts@jkvis.org", timeout_seconds=5)


def test_build_message(dispatcher, donors, receipt):
    message = dispatcher.build_message(donors.get_donor("donor_a"), receipt, b"%PDF-1.4")

    assert message["Subject"] == f"Your 2024 Tax Receipt - {RECEIPT_NUMBER}"
    assert message["To"] == "alice@example.org"
    assert "receipts@jkvis.org" in message["From"]

    attachments = [part for part in message.walk() if part.get_filename()]
    assert len(attachments) == 1
    assert attachments[0].get_filename() == f"JKVIS-Tax-Receipt-2024-{RECEIPT_NUMBER}.pdf"
    assert attachments[0].get_payload(decode=True) == b"%PDF-1.4"

    bodies = [part.get_content_type() for part in message.walk() if part.get_content_maintype() == "text"]
    assert bodies == ["text/plain", "text/html"]


def test_deliver_receipt_sends_once(dispatcher, donors, receipt):
    dispatcher.deliver_receipt(donors.get_donor("donor_a"), receipt)
    assert len(dispatcher.channel.sent) == 1


def test_unready_channel_fails_fast(dispatcher, donors, receipt):
    dispatcher.channel.ready = False
    with pytest.raises(ChannelUnavailableError):
        dispatcher.deliver_receipt(donors.get_donor("donor_a"), receipt)
    assert dispatcher.channel.sent == []


def test_transport_failure_raises_delivery_error(dispatcher, donors, receipt):
    dispatcher.channel.fail = True
    with pytest.raises(DeliveryError):
        dispatcher.deliver_receipt(donors.get_donor("donor_a"), receipt)


def test_unexpected_transport_error_wrapped(dispatcher, donors, receipt, monkeypatch):
    def explode(message):
        raise ConnectionResetError("peer reset")

    monkeypatch.setattr(dispatcher.channel, "send", explode)
    with pytest.raises(DeliveryError):
        dispatcher.deliver_receipt(donors.get_donor("donor_a"), receipt)


def test_undocumented_receipt_not_delivered(dispatcher, donors, receipt):
    with pytest.raises(DeliveryError):
        dispatcher.deliver_receipt(donors.get_donor("donor_a"), receipt.model_copy(update={'artifact_reference': None}))
    assert dispatcher.channel.sent == []


def test_smtp_channel_without_host_is_not_ready():
    from email.message import EmailMessage
    from donation_engine.models.settings import DeliverySettings
    from donation_engine.tools.smtp_channel import SmtpDeliveryChannel

    channel = SmtpDeliveryChannel(DeliverySettings(smtp_host=None))
    assert channel.is_ready() is False
    with pytest.raises(ChannelUnavailableError):
        channel.send(EmailMessage())
