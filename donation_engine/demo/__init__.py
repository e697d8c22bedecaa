"""Demo module for running reconciliation with local CSV data"""

from .csv_data_loader import DemoDataLoader
from .outbox_channel import OutboxDeliveryChannel

__all__ = ['DemoDataLoader', 'OutboxDeliveryChannel']
