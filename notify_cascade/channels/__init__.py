"""
Delivery channels for the notification cascade

- base: DeliveryResult, ChannelAdapter interface and MockChannelAdapter
- telephony: Twilio SMS and voice adapters
- email_service: SMTP email adapter
- chatbot: proactive chatbot message generation
- templates: message templates and template data
"""

from .base import ChannelAdapter, DeliveryResult, EmailContent, MockChannelAdapter

__all__ = [
    "ChannelAdapter",
    "DeliveryResult",
    "EmailContent",
    "MockChannelAdapter"
]
