#!/usr/bin/env python
"""
Demo runner script for the donation engine

Replays the demo CSV payments into an in-memory ledger, runs the annual
reconciliation and writes receipt PDFs and outgoing e-mails under
demo_output/.

Usage:
    python scripts/run_demo.py              # Replay payments and reconcile 2024
    python scripts/run_demo.py --dry-run    # Preview data only
    python scripts/run_demo.py --year 2024  # Reconcile a specific year
"""

import os
import sys
import argparse
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set demo mode environment variables
os.environ["STATE_BACKEND"] = "memory"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from donation_engine.demo.csv_data_loader import DemoDataLoader, DONORS_FILE, CASES_FILE, PAYMENTS_FILE
from donation_engine.demo.demo_config import get_demo_output_dir
from donation_engine.main import run_demo
from donation_engine.utils.errors import DonationEngineError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)


def print_header(title: str):
    """Print formatted section header"""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def validate_demo_data(data_dir: str) -> bool:
    """
    Validate that demo data files exist

    Args:
        data_dir: Path to demo data directory

    Returns:
        True if all required files exist
    """
    data_path = Path(data_dir)
    print_header("Demo Data Validation")

    if not data_path.exists():
        print(f"❌ Demo data directory not found: {data_dir}")
        return False

    print(f"✅ Demo data directory found: {data_path.absolute()}")

    missing_files = []
    for filename in (DONORS_FILE, CASES_FILE, PAYMENTS_FILE):
        filepath = data_path / filename
        if filepath.exists():
            print(f"  ✅ {filename} ({filepath.stat().st_size / 1024:.1f} KB)")
        else:
            print(f"  ❌ {filename} (missing)")
            missing_files.append(filename)

    if missing_files:
        print(f"\n❌ Missing required files: {missing_files}")
        return False
    return True


def show_data_summary(data_dir: str):
    """Display summary statistics of demo data"""
    print_header("Demo Data Summary")

    loader = DemoDataLoader(data_dir)
    stats = loader.summary()
    print(f"  • Donors: {stats['donors']:,}")
    print(f"  • Cases: {stats['cases']:,}")
    print(f"  • Payments: {stats['payments']:,}")

    payments = loader.payments
    if not payments.empty:
        dates = payments['occurred_at']
        print(f"\n📅 Payments: {dates.min().date()} to {dates.max().date()}")
        by_currency = payments.groupby('currency')['amount'].count()
        for currency, count in by_currency.items():
            print(f"  • {currency}: {count} payments")


def run_demo_reconciliation(data_dir: str, year: int, config: str = None):
    print_header(f"Reconciling Tax Year {year}")

    try:
        result = run_demo(argparse.Namespace(config=config, data_dir=data_dir, year=year))
    except DonationEngineError as e:
        print(f"\n❌ Reconciliation failed: {e}")
        logger.error(f"Demo reconciliation failed: {e}")
        sys.exit(1)

    payments = result['payments']
    summary = result['summary']
    print(f"📥 Payments recorded: {payments['recorded']}, rejected: {payments['rejected']}")
    print(f"\n📊 Donor groups: {summary['total_donor_groups']}")
    print(f"  • Receipts issued: {summary['success_count']}")
    print(f"  • Skipped (already issued): {summary['skip_count']}")
    print(f"  • Document failures: {summary['generation_failures']}")
    print(f"  • Delivery failures: {summary['delivery_failures']}")
    print(f"  • Errors: {summary['error_count']}")
    print(f"\n📂 Output: {Path(get_demo_output_dir()).absolute()}")
    print(f"🆔 Run ID: {summary['run_id']}")
    return result


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Run the donation engine demo with CSV data")
    parser.add_argument('--dry-run', action='store_true', help="Preview demo data without reconciling")
    parser.add_argument('--year', type=int, default=2024, help="Tax year to reconcile (default: 2024)")
    parser.add_argument('--data-dir', default=str(project_root / "demo_data"), help="Path to demo data directory")
    parser.add_argument('--config', default=str(project_root / "config" / "settings.yaml"))
    args = parser.parse_args()

    print_header("Donation Engine - Demo Mode")
    if not validate_demo_data(args.data_dir):
        sys.exit(1)

    show_data_summary(args.data_dir)

    if args.dry_run:
        print_header("Dry Run Complete")
        print("💡 Run without --dry-run to issue receipts")
    else:
        run_demo_reconciliation(args.data_dir, args.year, args.config)


if __name__ == "__main__":
    main()
