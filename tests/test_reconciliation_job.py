"""Tests for the annual reconciliation job"""

import hashlib
import re
import threading
import pytest
from decimal import Decimal
from donation_engine.constants import JobStatus
from donation_engine.models.settings import ReconciliationSettings
from donation_engine.orchestrator.reconciliation_job import AnnualReconciliationJob
from donation_engine.utils.errors import (
    ChannelUnavailableError,
    DocumentRenderError,
    DonorNotFoundError,
    InvalidTaxYearError,
    LedgerUnavailableError,
    NoEligibleDonationsError,
    PersistenceError,
)
from conftest import utc


def fail_rendering_for(engine, monkeypatch, donor_id):
    """Make document rendering fail for one donor only"""
    original = engine.document_generator.render_pdf

    def render(donor, *args, **kwargs):
        if donor.donor_id == donor_id:
            raise RuntimeError("renderer crashed")
        return original(donor, *args, **kwargs)

    monkeypatch.setattr(engine.document_generator, "render_pdf", render)
    return original


@pytest.fixture
def three_donors(pay):
    pay("donor_a", "100.00", utc(2024, 2, 1))
    pay("donor_b", "200.00", utc(2024, 3, 1))
    pay("donor_c", "300.00", utc(2024, 4, 1))


def test_receipt_covers_only_the_tax_year(engine, pay, store):
    pay("donor_a", "200.00", utc(2024, 1, 15))
    pay("donor_a", "300.00", utc(2024, 12, 31, 23, 59))
    pay("donor_a", "50.00", utc(2023, 12, 31, 23, 59))
    pay("donor_a", "75.00", utc(2025, 1, 1, 0, 0))

    summary = engine.job.run_annual_reconciliation(2024)

    assert summary.total_donor_groups == 1
    assert summary.success_count == 1
    receipt = store.find_receipt("donor_a", 2024)
    assert receipt.total_eligible_amount == Decimal("500.00")
    assert len(receipt.donation_ids) == 2
    assert receipt.is_documented
    assert receipt.compliance_data.donation_period == "January 1 - December 31, 2024"


def test_rerun_skips_issued_receipts(engine, pay, store, channel):
    pay("donor_a", "200.00", utc(2024, 1, 15))
    pay("donor_a", "300.00", utc(2024, 6, 15))

    first = engine.job.run_annual_reconciliation(2024)
    second = engine.job.run_annual_reconciliation(2024)

    assert first.success_count == 1
    assert second.success_count == 0
    assert second.skip_count == 1
    assert len(store.list_receipts(2024)) == 1
    assert len(channel.sent) == 1


def test_failed_donations_are_not_eligible(engine, pay, writer, store):
    pay("donor_a", "150.25", utc(2024, 2, 1))
    pay("donor_a", "250.25", utc(2024, 3, 1))
    reversed_donation = pay("donor_a", "999.00", utc(2024, 4, 1))
    writer.mark_transaction_failed("stripe", reversed_donation.external_transaction_id)

    engine.job.run_annual_reconciliation(2024)

    receipt = store.find_receipt("donor_a", 2024)
    assert receipt.total_eligible_amount == Decimal("400.50")
    assert reversed_donation.donation_id not in receipt.donation_ids


def test_mixed_currencies_normalized(engine, pay, store):
    pay("donor_b", "100.00", utc(2024, 5, 1), currency="CAD")
    pay("donor_b", "10.00", utc(2024, 5, 2), currency="USD")

    engine.job.run_annual_reconciliation(2024)

    receipt = store.find_receipt("donor_b", 2024)
    assert receipt.currency == "USD"
    assert receipt.total_eligible_amount == Decimal("84.07")


def test_generation_failure_is_isolated(engine, three_donors, store, monkeypatch):
    fail_rendering_for(engine, monkeypatch, "donor_b")

    summary = engine.job.run_annual_reconciliation(2024)

    assert summary.success_count == 2
    assert summary.generation_failures == 1
    assert summary.failed_donor_ids == ["donor_b"]
    assert len(store.list_receipts(2024)) == 3
    assert not store.find_receipt("donor_b", 2024).is_documented
    assert [r.donor_id for r in engine.job.list_undocumented_receipts(2024)] == ["donor_b"]


def test_retry_receipt_document_keeps_receipt_number(engine, three_donors, store, monkeypatch, channel):
    original = fail_rendering_for(engine, monkeypatch, "donor_b")
    engine.job.run_annual_reconciliation(2024)
    pending = store.find_receipt("donor_b", 2024)

    monkeypatch.setattr(engine.document_generator, "render_pdf", original)
    documented = engine.job.retry_receipt_document(pending.receipt_number)

    assert documented.receipt_number == pending.receipt_number
    assert documented.artifact_reference == f"receipts/receipt-{pending.receipt_number}.pdf"
    assert store.find_receipt("donor_b", 2024).is_documented
    assert engine.job.list_undocumented_receipts(2024) == []


def test_retry_refuses_receipt_with_reversed_donation(engine, pay, writer, store, monkeypatch):
    """The document must never print a total its listed donations do not cover"""
    original = fail_rendering_for(engine, monkeypatch, "donor_a")
    pay("donor_a", "300.00", utc(2024, 2, 1), txn="pi_kept")
    pay("donor_a", "200.00", utc(2024, 3, 1), txn="pi_reversed")
    engine.job.run_annual_reconciliation(2024)
    pending = store.find_receipt("donor_a", 2024)
    assert pending.total_eligible_amount == Decimal("500.00")

    writer.mark_transaction_failed("stripe", "pi_reversed")
    monkeypatch.setattr(engine.document_generator, "render_pdf", original)

    with pytest.raises(DocumentRenderError):
        engine.job.retry_receipt_document(pending.receipt_number)
    assert not store.get_receipt(pending.receipt_number).is_documented
    assert [r.receipt_number for r in engine.job.list_undocumented_receipts(2024)] == [pending.receipt_number]


def test_total_matches_rounded_rows(engine, pay, store):
    pay("donor_a", "49.995", utc(2024, 2, 1))
    pay("donor_a", "49.995", utc(2024, 3, 1))

    summary = engine.job.run_annual_reconciliation(2024)

    assert summary.success_count == 1
    receipt = store.find_receipt("donor_a", 2024)
    assert receipt.total_eligible_amount == Decimal("100.00")
    assert receipt.compliance_data.eligible_amount == Decimal("100.00")


def test_issue_locks_released_after_run(engine, three_donors):
    engine.job.run_annual_reconciliation(2024)
    assert engine.job._issue_locks == {}


def test_delivery_failure_does_not_change_receipt(engine, three_donors, store, channel):
    channel.fail = True

    summary = engine.job.run_annual_reconciliation(2024)

    assert summary.success_count == 3
    assert summary.delivery_failures == 3
    assert all(r.is_documented for r in store.list_receipts(2024))
    assert len(engine.job.list_undelivered_receipts(2024)) == 3

    channel.fail = False
    for receipt in engine.job.list_undelivered_receipts(2024):
        engine.job.redeliver_receipt(receipt.receipt_number)
    assert engine.job.list_undelivered_receipts(2024) == []


def test_unready_channel_counts_delivery_failures(engine, three_donors, channel):
    channel.ready = False
    summary = engine.job.run_annual_reconciliation(2024)
    assert summary.success_count == 3
    assert summary.delivery_failures == 3
    assert channel.sent == []


def test_missing_donor_counted_as_error(engine, pay, donors, three_donors):
    donors._donors.pop("donor_c")

    summary = engine.job.run_annual_reconciliation(2024)

    assert summary.success_count == 2
    assert summary.error_count == 1
    assert "donor_c" in summary.failed_donor_ids


def test_receipt_number_format(engine, pay, store, clock):
    pay("donor_a", "10.00", utc(2024, 8, 1))
    engine.job.run_annual_reconciliation(2024)

    number = store.find_receipt("donor_a", 2024).receipt_number
    donor_hash = hashlib.sha1(b"donor_a").hexdigest()[:6].upper()
    assert re.fullmatch(r"JKVIS-2024-[0-9A-F]{6}-\d+", number)
    assert number == f"JKVIS-2024-{donor_hash}-{int(clock.now.timestamp() * 1000)}"


def test_missing_address_uses_placeholder(engine, pay, store):
    pay("donor_c", "10.00", utc(2024, 8, 1))
    engine.job.run_annual_reconciliation(2024)
    assert store.find_receipt("donor_c", 2024).compliance_data.donor_address == "Address not provided"


def test_default_year_is_previous_calendar_year(engine, pay):
    pay("donor_a", "10.00", utc(2024, 8, 1))
    summary = engine.job.run_annual_reconciliation()
    assert summary.tax_year == 2024
    assert summary.success_count == 1


@pytest.mark.parametrize("year", [2019, 2026])
def test_year_out_of_range_rejected(engine, year):
    with pytest.raises(InvalidTaxYearError):
        engine.job.run_annual_reconciliation(year)


def test_empty_year_completes_with_zero_groups(engine):
    summary = engine.job.run_annual_reconciliation(2024)
    assert summary.total_donor_groups == 0
    assert summary.status == JobStatus.COMPLETED


def test_concurrent_runs_issue_one_receipt_per_donor(engine, three_donors, store):
    summaries = []

    def run():
        summaries.append(engine.job.run_annual_reconciliation(2024))

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store.list_receipts(2024)) == 3
    assert sum(s.success_count for s in summaries) == 3
    assert sum(s.skip_count for s in summaries) == 3


def test_separate_jobs_sharing_a_store_issue_once(engine, three_donors, store, donors, organization):
    other = AnnualReconciliationJob(
        store=store,
        donors=donors,
        document_generator=engine.document_generator,
        dispatcher=engine.dispatcher,
        organization=organization,
        clock=engine.clock,
    )

    engine.job.run_annual_reconciliation(2024)
    summary = other.run_annual_reconciliation(2024)

    assert summary.skip_count == 3
    assert len(store.list_receipts(2024)) == 3


def test_worker_pool_processes_all_groups(engine, three_donors, store):
    engine.job.settings = ReconciliationSettings(max_workers=4, retry_base_delay_seconds=0)
    summary = engine.job.run_annual_reconciliation(2024)
    assert summary.success_count == 3
    assert len(store.list_receipts(2024)) == 3


def test_ledger_unavailable_after_retries(engine, store, monkeypatch):
    calls = []

    def down(*args, **kwargs):
        calls.append(1)
        raise PersistenceError("database is locked")

    monkeypatch.setattr(store, "donations_for_year", down)
    with pytest.raises(LedgerUnavailableError):
        engine.job.run_annual_reconciliation(2024, run_id="run-down")

    assert len(calls) == engine.job.settings.ledger_query_retries
    assert engine.job.get_run_status("run-down")['status'] == JobStatus.FAILED.value


def test_run_state_records_summary(engine, three_donors):
    summary = engine.job.run_annual_reconciliation(2024, run_id="run-1")
    state = engine.job.get_run_status("run-1")
    assert state['status'] == JobStatus.COMPLETED.value
    assert state['summary']['success_count'] == summary.success_count


def test_trigger_runs_in_background(engine, three_donors):
    run_id = engine.job.trigger_annual_reconciliation(2024)
    state = engine.job.wait_for_run(run_id, timeout=30)

    assert state['status'] == JobStatus.COMPLETED.value
    assert state['summary']['success_count'] == 3
    assert run_id not in engine.job._background
    assert engine.job.wait_for_run(run_id)['status'] == JobStatus.COMPLETED.value


def test_admin_receipt_for_donor(engine, pay, channel):
    pay("donor_a", "20.00", utc(2024, 2, 2))
    receipt = engine.job.generate_receipt_for_donor("donor_a", 2024)

    assert receipt.is_documented
    assert receipt.total_eligible_amount == Decimal("20.00")
    assert len(channel.sent) == 1
    assert engine.job.generate_receipt_for_donor("donor_a", 2024).receipt_number == receipt.receipt_number


def test_admin_receipt_unknown_donor(engine):
    with pytest.raises(DonorNotFoundError):
        engine.job.generate_receipt_for_donor("ghost", 2024)


def test_admin_receipt_without_donations(engine):
    with pytest.raises(NoEligibleDonationsError):
        engine.job.generate_receipt_for_donor("donor_b", 2024)


def test_admin_receipt_render_failure_propagates(engine, pay, store, monkeypatch):
    pay("donor_a", "20.00", utc(2024, 2, 2))
    fail_rendering_for(engine, monkeypatch, "donor_a")

    with pytest.raises(DocumentRenderError):
        engine.job.generate_receipt_for_donor("donor_a", 2024)
    assert not store.find_receipt("donor_a", 2024).is_documented


def test_admin_receipt_unready_channel_propagates(engine, pay, store, channel):
    pay("donor_a", "20.00", utc(2024, 2, 2))
    channel.ready = False

    with pytest.raises(ChannelUnavailableError):
        engine.job.generate_receipt_for_donor("donor_a", 2024)
    assert store.find_receipt("donor_a", 2024).is_documented
