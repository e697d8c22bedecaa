"""SQL schemas for the ledger and receipt store."""

# Donations table - one row per confirmed payment
DONATIONS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS donations (
    donation_id VARCHAR(36) PRIMARY KEY,
    donor_id VARCHAR(255) NOT NULL,
    amount TEXT NOT NULL,  -- Decimal stored as text
    currency VARCHAR(3) NOT NULL CHECK (currency IN ('USD', 'CAD')),
    classification VARCHAR(30) NOT NULL CHECK (classification IN ('general', 'case-sponsorship')),
    case_id VARCHAR(255),
    channel VARCHAR(20) NOT NULL CHECK (channel IN ('stripe', 'paypal')),
    external_transaction_id VARCHAR(255) NOT NULL,
    occurred_at TIMESTAMP NOT NULL,  -- UTC ISO-8601
    status VARCHAR(20) NOT NULL CHECK (status IN ('pending', 'completed', 'failed')),
    created_at TIMESTAMP NOT NULL,
    UNIQUE (channel, external_transaction_id)
);

CREATE INDEX IF NOT EXISTS idx_donations_donor_date ON donations(donor_id, occurred_at);
CREATE INDEX IF NOT EXISTS idx_donations_status_date ON donations(status, occurred_at);
"""

# Receipts table - one row per (donor, tax year)
RECEIPTS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS receipts (
    receipt_id VARCHAR(36) PRIMARY KEY,
    receipt_number VARCHAR(100) NOT NULL UNIQUE,
    donor_id VARCHAR(255) NOT NULL,
    tax_year INTEGER NOT NULL,
    donation_ids TEXT NOT NULL,  -- JSON array
    total_eligible_amount TEXT NOT NULL,
    currency VARCHAR(3) NOT NULL,
    compliance_data TEXT NOT NULL,  -- JSON object
    artifact_reference TEXT,
    issued_at TIMESTAMP NOT NULL,
    UNIQUE (donor_id, tax_year)
);

CREATE INDEX IF NOT EXISTS idx_receipts_year ON receipts(tax_year);
"""

# Delivery attempts - append-only, keeps receipts immutable
RECEIPT_DELIVERIES_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS receipt_deliveries (
    delivery_id INTEGER PRIMARY KEY AUTOINCREMENT,
    receipt_number VARCHAR(100) NOT NULL REFERENCES receipts(receipt_number),
    status VARCHAR(20) NOT NULL CHECK (status IN ('sent', 'failed')),
    detail TEXT,
    attempted_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_deliveries_receipt ON receipt_deliveries(receipt_number, attempted_at DESC);
"""


def create_all_tables(cursor):
    """
    Execute all CREATE TABLE statements.

    Args:
        cursor: Database cursor object
    """
    cursor.executescript(DONATIONS_TABLE_SCHEMA)
    cursor.executescript(RECEIPTS_TABLE_SCHEMA)
    cursor.executescript(RECEIPT_DELIVERIES_TABLE_SCHEMA)
