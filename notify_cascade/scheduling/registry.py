"""
Dispatch table: how each message type is delivered

Every MessageType maps to exactly one MessageSpec. ``validate_registry`` runs
at import time so a new type without a spec fails loudly instead of being
dropped by the worker.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .models import Channel, MessageType


class Recipient(Enum):
    PATIENT = "patient"
    OPERATOR = "operator"


class ContentSource(Enum):
    TEMPLATE = "template"
    CHATBOT = "chatbot"
    VOICE_SCRIPT = "voice_script"
    ESCALATION = "escalation"


class PostEffect(Enum):
    NONE = "none"
    MARK_NO_SHOW = "mark_no_show"


@dataclass(frozen=True)
class MessageSpec:
    channel: Channel
    content: ContentSource = ContentSource.TEMPLATE
    recipient: Recipient = Recipient.PATIENT
    post_effect: PostEffect = PostEffect.NONE
    # Chatbot conversation context or voice script name
    context: Optional[str] = None


MESSAGE_SPECS: Dict[MessageType, MessageSpec] = {
    MessageType.CONFIRMATION_SMS: MessageSpec(Channel.SMS),
    MessageType.CHATBOT_INTRO_SMS: MessageSpec(Channel.CHATBOT),
    MessageType.CONFIRMATION_EMAIL: MessageSpec(Channel.EMAIL),
    MessageType.PRE_CONSULT_REMINDER_SMS: MessageSpec(Channel.SMS),
    MessageType.DAY_OF_VOICE_CALL: MessageSpec(
        Channel.VOICE, ContentSource.VOICE_SCRIPT, context="confirmation"
    ),
    MessageType.TWO_HOUR_REMINDER_SMS: MessageSpec(Channel.SMS),
    MessageType.TWO_HOUR_REMINDER_EMAIL: MessageSpec(Channel.EMAIL),
    MessageType.TEN_MIN_REMINDER_SMS: MessageSpec(Channel.SMS),
    MessageType.POST_CONSULT_THANK_YOU_SMS: MessageSpec(Channel.SMS),
    MessageType.POST_CONSULT_SUMMARY_EMAIL: MessageSpec(Channel.EMAIL),
    MessageType.POST_CONSULT_CHATBOT_SMS: MessageSpec(
        Channel.CHATBOT, ContentSource.CHATBOT, context="post_consult"
    ),
    MessageType.NO_SHOW_INITIAL_SMS: MessageSpec(
        Channel.SMS, post_effect=PostEffect.MARK_NO_SHOW
    ),
    MessageType.NO_SHOW_INITIAL_EMAIL: MessageSpec(Channel.EMAIL),
    MessageType.NO_SHOW_VOICE_CALL: MessageSpec(
        Channel.VOICE, ContentSource.VOICE_SCRIPT, context="no-show"
    ),
    MessageType.NO_SHOW_NEXT_DAY_SMS: MessageSpec(Channel.SMS),
    MessageType.NO_SHOW_NEXT_DAY_EMAIL: MessageSpec(Channel.EMAIL),
    MessageType.NO_SHOW_CHATBOT_SMS: MessageSpec(
        Channel.CHATBOT, ContentSource.CHATBOT, context="no_show_recovery"
    ),
    MessageType.NO_SHOW_ESCALATION: MessageSpec(
        Channel.INTERNAL, ContentSource.ESCALATION, recipient=Recipient.OPERATOR
    ),
}


def validate_registry(specs: Dict[MessageType, MessageSpec] = MESSAGE_SPECS) -> None:
    """Raise if any message type lacks a spec"""
    missing = set(MessageType) - set(specs)
    if missing:
        names = ", ".join(sorted(m.value for m in missing))
        raise RuntimeError(f"Message types without a dispatch spec: {names}")


def get_spec(message_type: MessageType) -> MessageSpec:
    return MESSAGE_SPECS[message_type]


validate_registry()
