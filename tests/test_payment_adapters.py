"""Tests for provider payload adapters"""

import pytest
from decimal import Decimal
from donation_engine.constants import Currency, DonationClassification, DonationStatus, PaymentChannel
from donation_engine.tools.payment_adapters import (
    from_paypal_payment,
    from_stripe_payment_intent,
    handle_stripe_event,
)
from donation_engine.utils.errors import InvalidPaymentError


def stripe_intent(**overrides):
    intent = {
        "id": "pi_3OqY2bJx1234567890",
        "amount": 12345,
        "currency": "cad",
        "status": "succeeded",
        "created": 1718378400,
        "metadata": {"userId": "donor_a", "type": "sponsorship", "caseReportId": "case_1"},
    }
    intent.update(overrides)
    return intent


def test_stripe_intent_mapping():
    payment = from_stripe_payment_intent(stripe_intent())

    assert payment.channel == PaymentChannel.STRIPE
    assert payment.external_transaction_id == "pi_3OqY2bJx1234567890"
    assert payment.amount == Decimal("123.45")
    assert payment.currency == Currency.CAD
    assert payment.classification == DonationClassification.CASE_SPONSORSHIP
    assert payment.case_id == "case_1"
    assert payment.donor_id == "donor_a"
    assert payment.occurred_at.year == 2024


@pytest.mark.parametrize("legacy", ["sponsorship", "20kids20", "case-sponsorship", "20KIDS20"])
def test_legacy_sponsorship_names(legacy):
    payment = from_stripe_payment_intent(stripe_intent(metadata={"userId": "d", "type": legacy,
                                                                 "caseReportId": "c"}))
    assert payment.classification == DonationClassification.CASE_SPONSORSHIP


def test_stripe_intent_not_succeeded_rejected():
    with pytest.raises(InvalidPaymentError):
        from_stripe_payment_intent(stripe_intent(status="requires_payment_method"))


def test_stripe_intent_unknown_type_rejected():
    with pytest.raises(InvalidPaymentError):
        from_stripe_payment_intent(stripe_intent(metadata={"userId": "d", "type": "raffle"}))


@pytest.mark.parametrize("amount", [12345.5, "12345.5", "abc", None, "Infinity"])
def test_stripe_intent_fractional_or_bad_amount_rejected(amount):
    with pytest.raises(InvalidPaymentError):
        from_stripe_payment_intent(stripe_intent(amount=amount))


def test_stripe_intent_whole_string_amount_accepted():
    assert from_stripe_payment_intent(stripe_intent(amount="5000")).amount == Decimal("50.00")


@pytest.mark.parametrize("created", ["yesterday", [1718378400], 10 ** 20])
def test_stripe_intent_bad_timestamp_rejected(created):
    with pytest.raises(InvalidPaymentError):
        from_stripe_payment_intent(stripe_intent(created=created))


def test_paypal_payment_mapping():
    payment = from_paypal_payment(
        {
            "id": "PAYID-M123",
            "state": "approved",
            "transactions": [{"amount": {"total": "25.00", "currency": "USD"}}],
        },
        donor_id="donor_b",
        classification="general",
    )

    assert payment.channel == PaymentChannel.PAYPAL
    assert payment.amount == Decimal("25.00")
    assert payment.currency == Currency.USD
    assert payment.case_id is None


def test_paypal_payment_not_approved_rejected():
    with pytest.raises(InvalidPaymentError):
        from_paypal_payment({"id": "PAYID-X", "state": "failed", "transactions": []}, "donor_b", "general")


def test_stripe_events_route_to_writer(writer, store):
    intent = stripe_intent(metadata={"userId": "donor_a", "type": "general"})

    recorded = handle_stripe_event(writer, {"type": "payment_intent.succeeded", "data": {"object": intent}})
    assert recorded.amount == Decimal("123.45")

    failed = handle_stripe_event(writer, {"type": "payment_intent.payment_failed",
                                          "data": {"object": intent}})
    assert failed.status == DonationStatus.FAILED
    assert store.find_donation("stripe", intent["id"]).status == DonationStatus.FAILED


def test_unhandled_stripe_event_ignored(writer):
    assert handle_stripe_event(writer, {"type": "charge.refunded", "data": {"object": {}}}) is None
