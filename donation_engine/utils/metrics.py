"""Prometheus metrics definitions"""

from prometheus_client import Counter, Histogram, Gauge


# Ledger metrics
donations_recorded = Counter(
    'donations_recorded_total',
    'Confirmed payments written to the ledger',
    labelnames=['channel', 'outcome']  # created, duplicate
)

donations_marked_failed = Counter(
    'donations_marked_failed_total',
    'Donations moved to failed after a provider reversal',
    labelnames=['channel']
)

case_assignments = Counter(
    'case_assignments_total',
    'Case transitions attempted after a sponsorship donation',
    labelnames=['outcome']  # assigned, lost_race
)

# Receipt metrics
receipts_processed = Counter(
    'receipts_processed_total',
    'Donor groups processed by outcome',
    labelnames=['outcome']  # issued, skipped, generation_failed, error
)

receipt_deliveries = Counter(
    'receipt_deliveries_total',
    'Receipt delivery attempts',
    labelnames=['outcome']  # sent, failed, channel_unavailable
)

document_render_time = Histogram(
    'receipt_document_render_seconds',
    'Time to render and store one receipt document',
    buckets=[0.1, 0.5, 1, 2, 5, 15, 60]
)

# Job metrics
reconciliation_job_duration = Histogram(
    'reconciliation_job_duration_seconds',
    'Time to complete an annual reconciliation run',
    buckets=[1, 10, 60, 300, 900, 3600]
)

reconciliation_donor_groups = Gauge(
    'reconciliation_donor_groups',
    'Donor groups found by the latest run',
    labelnames=['tax_year']
)
