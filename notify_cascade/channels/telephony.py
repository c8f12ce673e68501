"""
Twilio SMS and voice adapters
"""
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from .base import ChannelAdapter, DeliveryResult

logger = logging.getLogger("twilio-adapter")

# HTTP statuses from Twilio worth retrying
RETRYABLE_HTTP_STATUSES = {408, 429}


def classify_twilio_error(error: Exception) -> DeliveryResult:
    """
    Turn a Twilio client exception into a DeliveryResult

    Rate limiting, timeouts, 5xx responses and network errors are transient.
    Other REST errors (invalid number, unsubscribed recipient, ...) are permanent.
    """
    if isinstance(error, TwilioRestException):
        message = f"Twilio error {error.code} (HTTP {error.status}): {error.msg}"
        if error.status in RETRYABLE_HTTP_STATUSES or (error.status or 0) >= 500:
            return DeliveryResult.transient(message)
        return DeliveryResult.permanent(message)
    return DeliveryResult.transient(f"Twilio request failed: {error}")


def create_twilio_client(account_sid: Optional[str], auth_token: Optional[str]) -> Client:
    """Create a Twilio REST client"""
    if not account_sid or not auth_token:
        raise ValueError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be set")
    return Client(account_sid, auth_token)


class TwilioSMSAdapter(ChannelAdapter):
    """Sends text messages through Twilio"""

    name = "sms"

    def __init__(self, client: Client, from_number: str):
        self.client = client
        self.from_number = from_number

    def send(self, recipient: str, content: str) -> DeliveryResult:
        if not recipient:
            return DeliveryResult.permanent("No phone number provided")

        try:
            message = self.client.messages.create(
                to=recipient,
                from_=self.from_number,
                body=content
            )
        except (TwilioException, OSError) as e:
            result = classify_twilio_error(e)
            logger.error(f"[SMS] Send to {recipient} failed: {result.error_message}")
            return result

        logger.info(f"[SMS] Sent to {recipient}: {message.sid}")
        return DeliveryResult.sent(message.sid)


class TwilioVoiceAdapter(ChannelAdapter):
    """
    Places outbound calls through Twilio.

    ``content`` is the URL Twilio fetches the call script from once the call
    connects.
    """

    name = "voice"

    def __init__(self, client: Client, from_number: str):
        self.client = client
        self.from_number = from_number

    def send(self, recipient: str, content: str) -> DeliveryResult:
        if not recipient:
            return DeliveryResult.permanent("No phone number provided")

        try:
            call = self.client.calls.create(
                to=recipient,
                from_=self.from_number,
                url=content
            )
        except (TwilioException, OSError) as e:
            result = classify_twilio_error(e)
            logger.error(f"[VOICE] Call to {recipient} failed: {result.error_message}")
            return result

        logger.info(f"[VOICE] Called {recipient}: {call.sid}")
        return DeliveryResult.sent(call.sid)
