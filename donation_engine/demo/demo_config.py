"""Demo-specific configuration helpers"""

import copy
import os
from typing import Dict, Any


def get_demo_config_overrides() -> Dict[str, Any]:
    """
    Get demo-specific configuration overrides

    The demo runs against an in-memory ledger, writes documents and
    outgoing mail under demo_output/ and paginates early so multi-page
    receipts show up with a small dataset.

    Returns:
        Dictionary of config overrides
    """
    return {
        'receipts': {
            'rows_per_page': 5,
            'artifact_dir': os.path.join(get_demo_output_dir(), 'uploads'),
        },
        'reconciliation': {
            'max_workers': 2,
            'retry_base_delay_seconds': 0,
        },
        'storage': {
            'database_path': ':memory:',
        },
    }


def apply_demo_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Merge the demo overrides into a loaded configuration"""
    merged = copy.deepcopy(config)
    for section, values in get_demo_config_overrides().items():
        merged.setdefault(section, {}).update(values)
    return merged


def get_demo_data_dir() -> str:
    """
    Get demo data directory path

    Returns:
        Path to demo data directory
    """
    return os.getenv("DEMO_DATA_DIR", "demo_data")


def get_demo_output_dir() -> str:
    return os.getenv("DEMO_OUTPUT_DIR", "demo_output")
