"""
RQ tasks for delivering scheduled appointment notifications
"""
import logging
from typing import Dict, Optional

import redis
from rq import get_current_job

from ..channels.base import ChannelAdapter, MockChannelAdapter
from ..channels.chatbot import ChatbotClient, StaticChatbot
from ..channels.email_service import SMTPEmailAdapter
from ..channels.telephony import TwilioSMSAdapter, TwilioVoiceAdapter, create_twilio_client
from ..channels.templates import TemplateResolver
from ..config.redis import create_redis_connection
from ..config.settings import Settings, load_settings
from ..shared.appointments import AppointmentStore
from .dispatcher import MessageDispatcher
from .models import Channel
from .queue import DelayedQueue
from .tracker import MessageTracker

logger = logging.getLogger("cascade-tasks")


def build_adapters(settings: Settings) -> Dict[Channel, ChannelAdapter]:
    """Create the SMS, voice and email adapters for the configured providers"""
    if settings.channels_dry_run:
        return {
            Channel.SMS: MockChannelAdapter("sms"),
            Channel.VOICE: MockChannelAdapter("voice"),
            Channel.EMAIL: MockChannelAdapter("email"),
        }

    twilio_client = create_twilio_client(settings.twilio_account_sid, settings.twilio_auth_token)
    return {
        Channel.SMS: TwilioSMSAdapter(twilio_client, settings.twilio_phone_number),
        Channel.VOICE: TwilioVoiceAdapter(twilio_client, settings.twilio_phone_number),
        Channel.EMAIL: SMTPEmailAdapter(
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.email_from,
            from_name=settings.email_from_name,
            smtp_server=settings.smtp_host,
            smtp_port=settings.smtp_port
        ),
    }


def build_chatbot(settings: Settings):
    if settings.channels_dry_run:
        return StaticChatbot(settings.clinic_name)
    return ChatbotClient(settings.openai_api_key, settings.clinic_name, model=settings.chatbot_model)


def build_dispatcher(
    settings: Optional[Settings] = None,
    queue_connection: Optional[redis.Redis] = None,
    store_connection: Optional[redis.Redis] = None
) -> MessageDispatcher:
    """
    Wire a MessageDispatcher from settings and Redis connections

    Args:
        settings: Runtime settings (loaded from the environment if omitted)
        queue_connection: Undecoded connection for RQ
        store_connection: Decoded connection for the tracker and read model
    """
    settings = settings or load_settings()
    queue_connection = queue_connection or create_redis_connection(decode_responses=False)
    store_connection = store_connection or create_redis_connection(decode_responses=True)

    return MessageDispatcher(
        tracker=MessageTracker(store_connection),
        appointments=AppointmentStore(store_connection),
        queue=DelayedQueue(queue_connection, settings.queue_name),
        adapters=build_adapters(settings),
        chatbot=build_chatbot(settings),
        templates=TemplateResolver(settings.clinic_name),
        settings=settings
    )


def dispatch_message(payload: dict) -> str:
    """
    RQ task to deliver one scheduled notification

    Args:
        payload: Job data with message_id, appointment_id, patient_id,
            message_type, channel and attempt

    Returns:
        The dispatch outcome
    """
    current_job = get_current_job()
    queue_connection = current_job.connection if current_job else None

    logger.info(
        f"Dispatching {payload.get('message_type')} {payload.get('message_id')} "
        f"for appointment {payload.get('appointment_id')}"
    )

    try:
        dispatcher = build_dispatcher(queue_connection=queue_connection)
        outcome = dispatcher.dispatch(payload)
    except Exception as e:
        # Re-raised so RQ keeps the job in its failed registry
        logger.error(f"Exception dispatching message {payload.get('message_id')}: {e}", exc_info=True)
        raise

    logger.info(f"Message {payload.get('message_id')}: {outcome.value}")
    return outcome.value
