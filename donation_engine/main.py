"""Main entry point for the donation engine"""

import argparse
import os
import signal
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables FIRST, before any other imports
# Find the .env file in the project root
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

from donation_engine.demo.csv_data_loader import DemoDataLoader, demo_clock
from donation_engine.demo.demo_config import apply_demo_overrides, get_demo_data_dir, get_demo_output_dir
from donation_engine.demo.outbox_channel import OutboxDeliveryChannel
from donation_engine.models.settings import EngineSettings
from donation_engine.orchestrator.engine import DonationEngine
from donation_engine.orchestrator import state_manager
from donation_engine.utils.config_loader import apply_env_overrides, load_config, load_settings
from donation_engine.utils.errors import DonationEngineError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="donation-engine", description="Donation reconciliation and tax receipts")
    parser.add_argument("--config", help="Path to settings.yaml (defaults to $CONFIG_PATH)")
    parser.add_argument("--data-dir", help="Directory with donors.csv and cases.csv")
    sub = parser.add_subparsers(dest="command", required=True)

    reconcile = sub.add_parser("reconcile", help="Run the annual reconciliation now")
    reconcile.add_argument("--year", type=int, help="Tax year (defaults to last year)")

    receipt = sub.add_parser("receipt", help="Issue one donor's receipt")
    receipt.add_argument("--donor", required=True)
    receipt.add_argument("--year", type=int, required=True)

    retry = sub.add_parser("retry-document", help="Render the document for an undocumented receipt")
    retry.add_argument("--receipt", required=True)

    redeliver = sub.add_parser("redeliver", help="Resend a documented receipt")
    redeliver.add_argument("--receipt", required=True)

    pending = sub.add_parser("pending", help="List undocumented and undelivered receipts")
    pending.add_argument("--year", type=int)

    sub.add_parser("schedule", help="Run the annual trigger until interrupted")
    sub.add_parser("health", help="Check the state backend and delivery channel")

    demo = sub.add_parser("demo", help="Replay demo CSV payments and reconcile them")
    demo.add_argument("--year", type=int, default=2024)
    return parser


def build_engine(settings: EngineSettings, data_dir: str) -> DonationEngine:
    loader = DemoDataLoader(data_dir)
    return DonationEngine(settings, loader.build_donor_directory(), loader.build_case_registry())


def check_health(engine: DonationEngine) -> dict:
    redis_ok = state_manager.check_redis_health() if state_manager.STATE_BACKEND == "redis" else None
    return {
        'state_backend': state_manager.STATE_BACKEND,
        'redis_healthy': redis_ok,
        'delivery_channel_ready': engine.dispatcher.channel.is_ready(),
    }


def run_demo(args) -> dict:
    """Replay the demo payments into an in-memory ledger and reconcile"""
    config = apply_demo_overrides(apply_env_overrides(load_config(args.config)))
    settings = EngineSettings.model_validate(config)
    loader = DemoDataLoader(args.data_dir or get_demo_data_dir())

    engine = DonationEngine(
        settings,
        loader.build_donor_directory(),
        loader.build_case_registry(),
        channel=OutboxDeliveryChannel(os.path.join(get_demo_output_dir(), "outbox")),
        clock=lambda: demo_clock(args.year)
    )
    replayed = loader.replay_payments(engine.ledger_writer)
    summary = engine.job.run_annual_reconciliation(args.year)
    return {'payments': replayed, 'summary': summary.model_dump(mode='json')}


def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    logger.info("=" * 60)
    logger.info("DONATION ENGINE - Reconciliation & Tax Receipts", command=args.command)
    logger.info("=" * 60)

    try:
        if args.command == "demo":
            result = run_demo(args)
            logger.info("DEMO SUMMARY", **result)
            return result

        settings = load_settings(args.config)
        engine = build_engine(settings, args.data_dir or get_demo_data_dir())

        if args.command == "reconcile":
            summary = engine.job.run_annual_reconciliation(args.year)
            logger.info("RECONCILIATION SUMMARY", **summary.model_dump(mode='json'))
            return summary

        if args.command == "receipt":
            receipt = engine.job.generate_receipt_for_donor(args.donor, args.year)
            logger.info("Receipt ready", receipt_number=receipt.receipt_number,
                        artifact_reference=receipt.artifact_reference)
            return receipt

        if args.command == "retry-document":
            receipt = engine.job.retry_receipt_document(args.receipt)
            logger.info("Receipt documented", receipt_number=receipt.receipt_number,
                        artifact_reference=receipt.artifact_reference)
            return receipt

        if args.command == "redeliver":
            engine.job.redeliver_receipt(args.receipt)
            logger.info("Receipt redelivered", receipt_number=args.receipt)
            return None

        if args.command == "pending":
            pending = {
                'undocumented': [r.receipt_number for r in engine.job.list_undocumented_receipts(args.year)],
                'undelivered': [r.receipt_number for r in engine.job.list_undelivered_receipts(args.year)],
            }
            logger.info("Pending receipts", **pending)
            return pending

        if args.command == "health":
            health = check_health(engine)
            logger.info("Health check", **health)
            return health

        if args.command == "schedule":
            scheduler = engine.scheduler()
            fire_at = scheduler.start()
            logger.info("Scheduler running, press Ctrl+C to stop", next_run=fire_at.isoformat())
            try:
                signal.pause()
            except KeyboardInterrupt:
                scheduler.stop()
            return None

    except DonationEngineError as e:
        logger.error(f"Command failed: {e}", command=args.command, error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    main()
