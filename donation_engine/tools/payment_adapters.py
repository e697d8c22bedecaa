"""Map provider confirmation payloads into ConfirmedPayment"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from donation_engine.constants import (
    Currency,
    DonationClassification,
    LEGACY_CASE_CLASSIFICATIONS,
    PaymentChannel,
)
from donation_engine.models.donation import ConfirmedPayment
from donation_engine.tools.currency import to_decimal
from donation_engine.utils.errors import InvalidPaymentError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)

STRIPE_SUCCEEDED = "payment_intent.succeeded"
STRIPE_FAILED = "payment_intent.payment_failed"


def normalize_classification(raw: Optional[str]) -> DonationClassification:
    """Provider metadata uses several names for case sponsorship"""
    value = (raw or "").strip().lower()
    if value == DonationClassification.GENERAL.value:
        return DonationClassification.GENERAL
    if value in LEGACY_CASE_CLASSIFICATIONS:
        return DonationClassification.CASE_SPONSORSHIP
    raise InvalidPaymentError(f"Unknown donation type: {raw!r}")


def normalize_currency(raw: Optional[str]) -> Currency:
    try:
        return Currency((raw or "").upper())
    except ValueError:
        raise InvalidPaymentError(f"Unsupported currency: {raw!r}")


def from_stripe_payment_intent(intent: Dict[str, Any]) -> ConfirmedPayment:
    """
    Map a succeeded Stripe-style payment intent.

    Args:
        intent: Payment intent object (amount in minor units, metadata carries
            donorId/userId, type and caseReportId)

    Returns:
        ConfirmedPayment

    Raises:
        InvalidPaymentError: If the intent did not succeed or is incomplete
    """
    if intent.get("status") != "succeeded":
        raise InvalidPaymentError(f"Payment intent {intent.get('id')} has status {intent.get('status')!r}")

    metadata = intent.get("metadata") or {}
    donor_id = metadata.get("donorId") or metadata.get("userId")
    if not intent.get("id") or not donor_id:
        raise InvalidPaymentError("Payment intent is missing its id or donor metadata")

    try:
        minor_units = Decimal(str(intent["amount"]))
    except (KeyError, InvalidOperation):
        raise InvalidPaymentError(f"Payment intent {intent.get('id')} has no amount")
    if not minor_units.is_finite() or minor_units != minor_units.to_integral_value():
        raise InvalidPaymentError(
            f"Payment intent {intent.get('id')} amount is not whole minor units: {intent['amount']!r}"
        )

    occurred_at = _parse_created(intent)

    return ConfirmedPayment(
        channel=PaymentChannel.STRIPE,
        external_transaction_id=intent["id"],
        donor_id=donor_id,
        amount=minor_units / Decimal(100),
        currency=normalize_currency(intent.get("currency")),
        classification=normalize_classification(metadata.get("type")),
        case_id=metadata.get("caseReportId") or None,
        occurred_at=occurred_at,
    )


def _parse_created(intent: Dict[str, Any]) -> Optional[datetime]:
    created = intent.get("created")
    if not created:
        return None
    try:
        return datetime.fromtimestamp(int(created), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        raise InvalidPaymentError(f"Payment intent {intent.get('id')} has an invalid created timestamp: {created!r}")


def from_paypal_payment(payment: Dict[str, Any], donor_id: str, classification: str,
                        case_id: Optional[str] = None) -> ConfirmedPayment:
    """
    Map an executed PayPal-style payment.

    PayPal does not echo our metadata, so the confirmation handler passes the
    donor, donation type and case it captured when the payment was created.
    """
    if payment.get("state") != "approved":
        raise InvalidPaymentError(f"PayPal payment {payment.get('id')} has state {payment.get('state')!r}")
    if not payment.get("id"):
        raise InvalidPaymentError("PayPal payment is missing its id")

    transactions = payment.get("transactions") or []
    amount_block = (transactions[0].get("amount") or {}) if transactions else {}
    if "total" not in amount_block:
        raise InvalidPaymentError(f"PayPal payment {payment['id']} has no transaction amount")

    return ConfirmedPayment(
        channel=PaymentChannel.PAYPAL,
        external_transaction_id=payment["id"],
        donor_id=donor_id,
        amount=to_decimal(amount_block["total"]),
        currency=normalize_currency(amount_block.get("currency") or "USD"),
        classification=normalize_classification(classification),
        case_id=case_id or None,
    )


def handle_stripe_event(writer, event: Dict[str, Any]):
    """
    Route a verified Stripe-style webhook event to the ledger writer.

    Returns:
        The recorded or updated Donation, or None for ignored events
    """
    event_type = event.get("type")
    intent = (event.get("data") or {}).get("object") or {}

    if event_type == STRIPE_SUCCEEDED:
        return writer.record_payment(from_stripe_payment_intent(intent))

    if event_type == STRIPE_FAILED:
        logger.warning("Payment intent failed", payment_intent_id=intent.get("id"))
        return writer.mark_transaction_failed(PaymentChannel.STRIPE, intent.get("id"))

    logger.info("Unhandled Stripe webhook event", event_type=event_type)
    return None
