"""Delivery channel that writes messages to an outbox directory"""

import threading
from email.message import Message
from pathlib import Path
from donation_engine.services.delivery_dispatcher import DeliveryChannel
from donation_engine.utils.errors import DeliveryError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)


class OutboxDeliveryChannel(DeliveryChannel):
    """Stands in for SMTP in the demo: one .eml file per message"""

    def __init__(self, outbox_dir: str):
        self.outbox = Path(outbox_dir)
        self.outbox.mkdir(parents=True, exist_ok=True)
        self._sequence = 0
        self._lock = threading.Lock()

    def is_ready(self) -> bool:
        return self.outbox.is_dir()

    def send(self, message: Message) -> str:
        with self._lock:
            self._sequence += 1
            sequence = self._sequence
        subject = str(message.get("Subject", "message")).split(" - ")[-1]
        path = self.outbox / f"{sequence:04d}-{subject}.eml"
        try:
            path.write_bytes(message.as_bytes())
        except OSError as e:
            raise DeliveryError(f"Failed to write {path}: {e}")
        logger.info("Message written to outbox", path=str(path), recipient=message.get("To"))
        return str(path)
