"""
Runtime settings for the notification cascade

All values come from environment variables (optionally loaded from a .env file
by the entry point) and are passed explicitly into the scheduler, cancellation
engine and dispatcher rather than read from module globals.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Configuration shared by every cascade component"""
    # Queue and worker
    queue_name: str = "messages"
    worker_concurrency: int = 5
    max_attempts: int = 3
    backoff_base_seconds: int = 60
    orphan_grace_seconds: int = 900

    # Clinic
    clinic_name: str = "Valley Clinic"
    clinic_timezone: str = "US/Eastern"
    base_url: str = "http://localhost:3000"
    consult_link: str = ""
    reschedule_link: str = ""

    # Internal operator contact for escalations
    escalation_phone: str = ""
    escalation_email: str = ""

    # Twilio
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None

    # SMTP
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    email_from: Optional[str] = None
    email_from_name: str = "Valley Clinic"

    # Chatbot
    openai_api_key: Optional[str] = None
    chatbot_model: str = "gpt-4o-mini"

    # Use mock channel adapters instead of real providers
    channels_dry_run: bool = False

    def retry_delay_seconds(self, attempt: int) -> int:
        """Exponential backoff before the given (1-based) retry attempt"""
        return self.backoff_base_seconds * (2 ** max(attempt - 1, 0))


def load_settings() -> Settings:
    """Build Settings from the current environment"""
    clinic_name = os.getenv("CLINIC_NAME", "Valley Clinic")
    return Settings(
        queue_name=os.getenv("MESSAGE_QUEUE_NAME", "messages"),
        worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "5")),
        max_attempts=int(os.getenv("DELIVERY_MAX_ATTEMPTS", "3")),
        backoff_base_seconds=int(os.getenv("DELIVERY_BACKOFF_BASE_SECONDS", "60")),
        orphan_grace_seconds=int(os.getenv("ORPHAN_GRACE_SECONDS", "900")),
        clinic_name=clinic_name,
        clinic_timezone=os.getenv("CLINIC_TIMEZONE", "US/Eastern"),
        base_url=os.getenv("BASE_URL", "http://localhost:3000").rstrip("/"),
        consult_link=os.getenv("CONSULT_LINK", ""),
        reschedule_link=os.getenv("RESCHEDULE_LINK", ""),
        escalation_phone=os.getenv("ESCALATION_PHONE", ""),
        escalation_email=os.getenv("ESCALATION_EMAIL", ""),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
        twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER"),
        smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_username=os.getenv("SMTP_USERNAME"),
        smtp_password=os.getenv("SMTP_PASSWORD"),
        email_from=os.getenv("EMAIL_FROM") or os.getenv("SMTP_USERNAME"),
        email_from_name=os.getenv("EMAIL_FROM_NAME", clinic_name),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        chatbot_model=os.getenv("CHATBOT_MODEL", "gpt-4o-mini"),
        channels_dry_run=_env_bool("CHANNELS_DRY_RUN"),
    )
