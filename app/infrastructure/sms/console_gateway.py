import logging
import uuid

from ...application.ports.sms_gateway import SmsGateway
from ...utils import mask_phone

logger = logging.getLogger(__name__)


class ConsoleSmsGateway(SmsGateway):
    """Development gateway used when Twilio is not configured: the message is only logged."""

    def send(self, phone: str, message: str) -> str:
        message_id = f"console-{uuid.uuid4().hex[:12]}"
        logger.info(f"Mock SMS to {mask_phone(phone)}: {message}")
        return message_id
