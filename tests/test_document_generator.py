"""Tests for receipt document rendering and the artifact store"""

import json
import time
import uuid
import pytest
from decimal import Decimal
from reportlab.platypus import PageBreak
from donation_engine.constants import DonationStatus
from donation_engine.models.donation import Donation
from donation_engine.services.document_generator import (
    ReceiptDocumentGenerator,
    donation_period,
    paginate_rows,
    truncate_transaction_id,
)
from donation_engine.tools.artifact_store import ArtifactStore
from donation_engine.tools.currency import CurrencyConverter
from donation_engine.utils.errors import DocumentRenderError, PersistenceError
from conftest import utc


def make_donation(amount, currency="USD", status=DonationStatus.COMPLETED, month=3, txn=None):
    return Donation(
        donation_id=str(uuid.uuid4()),
        donor_id="donor_a",
        amount=Decimal(amount),
        currency=currency,
        classification="general",
        channel="stripe",
        external_transaction_id=txn or f"pi_{uuid.uuid4().hex}",
        occurred_at=utc(2024, month, 1),
        status=status,
    )


@pytest.fixture
def artifact_store(tmp_path):
    return ArtifactStore(str(tmp_path / "uploads"))


@pytest.fixture
def generator(organization, artifact_store):
    return ReceiptDocumentGenerator(
        organization=organization,
        artifact_store=artifact_store,
        converter=CurrencyConverter(),
        receipt_currency="USD",
        rows_per_page=3,
        timeout_seconds=10,
    )


def test_eligible_amount_excludes_non_completed(generator):
    donations = [
        make_donation("150.25"),
        make_donation("250.25"),
        make_donation("999.00", status=DonationStatus.FAILED),
        make_donation("10.00", status=DonationStatus.PENDING),
    ]
    assert generator.compute_eligible_amount(donations) == Decimal("400.50")


def test_eligible_amount_converts_each_donation(generator):
    donations = [make_donation("100.00", currency="CAD"), make_donation("10.00")]
    # 100 CAD -> 74.07 USD
    assert generator.compute_eligible_amount(donations) == Decimal("84.07")


def test_eligible_amount_rounds_each_donation(generator):
    """Listed rows show $50.00 twice, so the total must be 100.00"""
    donations = [make_donation("49.995"), make_donation("49.995")]
    assert generator.compute_eligible_amount(donations) == Decimal("100.00")


def test_paginate_rows():
    assert paginate_rows(list(range(7)), 3) == [[0, 1, 2], [3, 4, 5], [6]]
    assert paginate_rows(list(range(3)), 3) == [[0, 1, 2]]
    assert paginate_rows([], 3) == []
    with pytest.raises(ValueError):
        paginate_rows([1], 0)


def test_long_donation_list_spans_pages(generator, donors):
    donations = [make_donation("10.00", month=(i % 12) + 1) for i in range(7)]
    story = generator.build_story(donors.get_donor("donor_a"), donations, 2024, "JKVIS-2024-ABCDEF-1")
    assert sum(isinstance(flowable, PageBreak) for flowable in story) == 2


def test_truncate_transaction_id():
    long_id = "pi_" + "x" * 30
    assert truncate_transaction_id(long_id) == long_id[:20] + "..."
    assert truncate_transaction_id("pi_short") == "pi_short"


def test_donation_period():
    assert donation_period(2024) == "January 1 - December 31, 2024"


def test_generate_receipt_document_writes_pdf(generator, artifact_store, donors):
    reference = generator.generate_receipt_document(
        donors.get_donor("donor_c"),
        [make_donation("42.00"), make_donation("8.00")],
        2024,
        "JKVIS-2024-ABCDEF-1735714800000",
        issued_at=utc(2025, 1, 1, 7),
    )

    assert reference == "receipts/receipt-JKVIS-2024-ABCDEF-1735714800000.pdf"
    assert artifact_store.exists(reference)
    assert artifact_store.read_bytes(reference).startswith(b"%PDF")


def test_rendering_is_deterministic(generator, donors):
    donor = donors.get_donor("donor_a")
    donations = [make_donation("20.00", txn="pi_fixed_1"), make_donation("30.00", txn="pi_fixed_2")]
    first = generator.render_pdf(donor, donations, 2024, "JKVIS-2024-ABCDEF-1", issued_at=utc(2025, 1, 1))
    second = generator.render_pdf(donor, donations, 2024, "JKVIS-2024-ABCDEF-1", issued_at=utc(2025, 1, 1))
    assert first == second


def test_render_failure_raises_document_render_error(generator, donors, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise ValueError("font missing")

    monkeypatch.setattr(generator, "render_pdf", broken)
    with pytest.raises(DocumentRenderError):
        generator.generate_receipt_document(donors.get_donor("donor_a"), [make_donation("5.00")],
                                            2024, "JKVIS-2024-ABCDEF-2")

    logged = [json.loads(r.getMessage()) for r in caplog.records if r.levelname == "ERROR"]
    assert logged[-1]["message"] == "Receipt document generation failed"
    assert logged[-1]["error"] == "font missing"
    assert logged[-1]["error_type"] == "ValueError"


def test_render_timeout_raises_document_render_error(generator, donors, monkeypatch, caplog):
    def slow(*args, **kwargs):
        time.sleep(0.5)
        return b"%PDF-late"

    generator.timeout_seconds = 0.05
    monkeypatch.setattr(generator, "render_pdf", slow)
    with pytest.raises(DocumentRenderError):
        generator.generate_receipt_document(donors.get_donor("donor_a"), [make_donation("5.00")],
                                            2024, "JKVIS-2024-ABCDEF-3")

    logged = [json.loads(r.getMessage()) for r in caplog.records if r.name.endswith("document_generator")]
    assert "did not finish" in logged[-1]["error"]
    assert logged[-1]["error_type"] == "DocumentRenderError"


def test_artifact_store_streams_in_chunks(artifact_store):
    content = b"%PDF-1.4\n" + b"0" * 1000
    reference = artifact_store.save("R-1", content)

    chunks = list(artifact_store.open_stream(reference, chunk_size=256))
    assert len(chunks) > 1
    assert b"".join(chunks) == content


def test_artifact_store_rejects_escaping_reference(artifact_store):
    with pytest.raises(PersistenceError):
        artifact_store.resolve("../outside.pdf")
