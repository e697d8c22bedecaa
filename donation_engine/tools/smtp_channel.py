"""SMTP delivery channel using aiosmtplib"""

import asyncio
from email.message import Message
import aiosmtplib
from donation_engine.models.settings import DeliverySettings
from donation_engine.services.delivery_dispatcher import DeliveryChannel
from donation_engine.utils.errors import ChannelUnavailableError, DeliveryError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)


class SmtpDeliveryChannel(DeliveryChannel):
    """
    Sends receipt e-mails through an SMTP relay.

    aiosmtplib is async; each call runs its own event loop so the channel can
    be used from the reconciliation job's worker threads.
    """

    def __init__(self, settings: DeliverySettings):
        self.hostname = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_user
        self.password = settings.smtp_password
        self.start_tls = settings.start_tls
        self.timeout = settings.timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.hostname)

    def is_ready(self) -> bool:
        """Connect, authenticate and NOOP; False on any SMTP failure"""
        if not self.is_configured:
            logger.warning("SMTP host not configured")
            return False
        try:
            return asyncio.run(self._probe())
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
            logger.warning("SMTP readiness check failed", host=self.hostname, port=self.port, error=str(e))
            return False

    def send(self, message: Message) -> str:
        """
        Send a prepared message.

        Returns:
            Server response text

        Raises:
            ChannelUnavailableError: If no SMTP host is configured
            DeliveryError: On any transport failure
        """
        if not self.is_configured:
            raise ChannelUnavailableError("SMTP host not configured")
        try:
            _, response = asyncio.run(self._send(message))
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
            raise DeliveryError(f"SMTP send failed: {e}") from e
        return response

    async def _probe(self) -> bool:
        client = aiosmtplib.SMTP(
            hostname=self.hostname,
            port=self.port,
            start_tls=self.start_tls,
            timeout=self.timeout
        )
        await client.connect()
        try:
            if self.username and self.password:
                await client.login(self.username, self.password)
            await client.noop()
        finally:
            await client.quit()
        return True

    async def _send(self, message: Message):
        return await aiosmtplib.send(
            message,
            hostname=self.hostname,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.start_tls,
            timeout=self.timeout
        )
