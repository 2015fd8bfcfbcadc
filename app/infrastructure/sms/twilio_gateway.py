import logging
from typing import Optional

from requests.exceptions import RequestException
from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from ...config import settings
from ...exceptions import DeliveryFailed
from ...utils import mask_phone
from ...application.ports.sms_gateway import SmsGateway

logger = logging.getLogger(__name__)


class TwilioSmsGateway(SmsGateway):
    def __init__(self, client: Optional[Client] = None, from_number: Optional[str] = None):
        self.client = client or Client(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            http_client=TwilioHttpClient(timeout=15, max_retries=3),
        )
        self.from_number = from_number or settings.TWILIO_PHONE_NUMBER

    def send(self, phone: str, message: str) -> str:
        if not self.from_number:
            raise RuntimeError("Twilio sender phone number not configured")
        try:
            sent = self.client.messages.create(body=message, from_=self.from_number, to=phone)
        except TwilioException as e:
            logger.error(f"Twilio error sending SMS to {mask_phone(phone)}: {e}")
            raise DeliveryFailed(details={"provider": "twilio"}) from e
        except RequestException as e:
            # Timeouts and connection errors from the HTTP transport
            logger.error(f"Twilio unreachable sending SMS to {mask_phone(phone)}: {e}")
            raise DeliveryFailed(details={"provider": "twilio", "reason": "transport"}) from e
        logger.info(f"SMS sent to {mask_phone(phone)}, SID: {sent.sid}")
        return sent.sid
