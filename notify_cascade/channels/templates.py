"""
Message templates for the appointment notification cascade

SMS templates return plain strings; email templates return EmailContent.
Keep SMS close to a single 160-character segment where possible.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Union

from ..scheduling.models import Appointment, MessageType, Patient
from ..utils.time_utils import format_consult_date, format_consult_time
from .base import EmailContent


@dataclass
class TemplateData:
    patient_name: str     # first name only
    consult_date: str     # e.g. "Tuesday, March 4"
    consult_time: str     # e.g. "2:00 PM"
    consult_link: str
    reschedule_link: str


def build_template_data(
    appointment: Appointment,
    patient: Patient,
    clinic_timezone: str,
    default_consult_link: str = "",
    default_reschedule_link: str = ""
) -> TemplateData:
    """Fill the template fields from the current appointment and patient"""
    return TemplateData(
        patient_name=patient.first_name or "there",
        consult_date=format_consult_date(appointment.scheduled_at, clinic_timezone),
        consult_time=format_consult_time(appointment.scheduled_at, clinic_timezone),
        consult_link=appointment.consult_link or default_consult_link,
        reschedule_link=appointment.reschedule_link or default_reschedule_link,
    )


def _email_body(heading: str, paragraphs, button_text: str = None, button_link: str = None) -> str:
    parts = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">',
        f'<h2 style="color: #2c5282;">{heading}</h2>',
    ]
    parts += [f"<p>{p}</p>" for p in paragraphs[:-1]]
    if button_text and button_link:
        parts.append(
            '<div style="text-align: center; margin: 24px 0;">'
            f'<a href="{button_link}" style="background: #2c5282; color: white; padding: 12px 32px; '
            f'text-decoration: none; border-radius: 6px;">{button_text}</a></div>'
        )
    parts.append(f"<p>{paragraphs[-1]}</p>")
    parts.append("</div>")
    return "\n".join(parts)


class TemplateResolver:
    """Renders the content for a message type"""

    def __init__(self, clinic_name: str):
        self.clinic_name = clinic_name
        self._renderers: Dict[MessageType, Callable[[TemplateData], Union[str, EmailContent]]] = {
            MessageType.CONFIRMATION_SMS: self.confirmation_sms,
            MessageType.CHATBOT_INTRO_SMS: self.chatbot_intro_sms,
            MessageType.CONFIRMATION_EMAIL: self.confirmation_email,
            MessageType.PRE_CONSULT_REMINDER_SMS: self.pre_consult_reminder_sms,
            MessageType.TWO_HOUR_REMINDER_SMS: self.two_hour_reminder_sms,
            MessageType.TWO_HOUR_REMINDER_EMAIL: self.two_hour_reminder_email,
            MessageType.TEN_MIN_REMINDER_SMS: self.ten_min_reminder_sms,
            MessageType.POST_CONSULT_THANK_YOU_SMS: self.post_consult_thank_you_sms,
            MessageType.POST_CONSULT_SUMMARY_EMAIL: self.post_consult_summary_email,
            MessageType.NO_SHOW_INITIAL_SMS: self.no_show_initial_sms,
            MessageType.NO_SHOW_INITIAL_EMAIL: self.no_show_initial_email,
            MessageType.NO_SHOW_NEXT_DAY_SMS: self.no_show_next_day_sms,
            MessageType.NO_SHOW_NEXT_DAY_EMAIL: self.no_show_next_day_email,
        }

    def supports(self, message_type: MessageType) -> bool:
        return message_type in self._renderers

    def render(self, message_type: MessageType, data: TemplateData) -> Union[str, EmailContent]:
        """
        Render content for a templated message type

        Raises:
            KeyError: If the type has no template (voice, chatbot and
                escalation content is produced elsewhere)
        """
        return self._renderers[message_type](data)

    # Immediately after booking

    def confirmation_sms(self, d: TemplateData) -> str:
        return (
            f"Hi {d.patient_name}! Your consultation with {self.clinic_name} is confirmed for "
            f"{d.consult_date} at {d.consult_time}. Questions? Just reply to this text."
        )

    def chatbot_intro_sms(self, d: TemplateData) -> str:
        return (
            f"Hi {d.patient_name}, this is the {self.clinic_name} assistant. I'm here 24/7 to "
            "answer questions before your consultation: medications, pricing, what to expect. "
            "Just text me here!"
        )

    def confirmation_email(self, d: TemplateData) -> EmailContent:
        return EmailContent(
            subject=f"Your {self.clinic_name} consultation: {d.consult_date} at {d.consult_time}",
            html=_email_body(
                "Your Consultation is Confirmed",
                [
                    f"Hi {d.patient_name},",
                    f"Thank you for scheduling with {self.clinic_name}. "
                    f"<strong>Date:</strong> {d.consult_date}<br><strong>Time:</strong> {d.consult_time}",
                    "Your consultation is a one-on-one conversation with our medical team about "
                    "your history and goals. There's no pressure and no obligation.",
                    f'Need to reschedule? <a href="{d.reschedule_link}">Click here</a> or reply to our text.',
                ],
                "Join Consultation",
                d.consult_link,
            ),
        )

    # Before the consult

    def pre_consult_reminder_sms(self, d: TemplateData) -> str:
        return (
            f"Friendly reminder: your {self.clinic_name} consultation is tomorrow, "
            f"{d.consult_date} at {d.consult_time}. Need a different time? Text us here."
        )

    def two_hour_reminder_sms(self, d: TemplateData) -> str:
        return (
            f"Your {self.clinic_name} consultation is in 2 hours at {d.consult_time}. "
            f"Join here: {d.consult_link}"
        )

    def two_hour_reminder_email(self, d: TemplateData) -> EmailContent:
        return EmailContent(
            subject=f"Your consultation is in 2 hours ({d.consult_time})",
            html=_email_body(
                "Your Consultation is Coming Up",
                [
                    f"Hi {d.patient_name},",
                    f"Just a reminder: your consultation is at <strong>{d.consult_time}</strong> today.",
                    "No preparation needed. Just be ready to talk about your goals.",
                ],
                "Join Your Consultation",
                d.consult_link,
            ),
        )

    def ten_min_reminder_sms(self, d: TemplateData) -> str:
        return f"Starting soon! Your consultation is in 10 minutes. Join here: {d.consult_link}"

    # After completion

    def post_consult_thank_you_sms(self, d: TemplateData) -> str:
        return (
            f"Thanks for meeting with us today, {d.patient_name}! A summary email is on its way. "
            "Questions? Just text us."
        )

    def post_consult_summary_email(self, d: TemplateData) -> EmailContent:
        return EmailContent(
            subject=f"Your consultation summary from {self.clinic_name}",
            html=_email_body(
                "Thanks for Your Consultation",
                [
                    f"Hi {d.patient_name},",
                    "It was great speaking with you today. Our team will follow up with plan "
                    "recommendations tailored to your goals.",
                    "When you're ready to move forward, reply to this email or text us.",
                ],
            ),
        )

    # No-show recovery

    def no_show_initial_sms(self, d: TemplateData) -> str:
        return (
            f"Hi {d.patient_name}, we missed you at your consultation today. No worries, life "
            f"happens! Pick a new time that works for you: {d.reschedule_link}"
        )

    def no_show_initial_email(self, d: TemplateData) -> EmailContent:
        return EmailContent(
            subject="We missed you. Let's reschedule your consultation",
            html=_email_body(
                "We Missed You Today",
                [
                    f"Hi {d.patient_name},",
                    "We noticed you weren't able to make your consultation, and that's completely "
                    "okay. We'd love to find a time that works better.",
                    "We're here whenever you're ready.",
                ],
                "Reschedule Now",
                d.reschedule_link,
            ),
        )

    def no_show_next_day_sms(self, d: TemplateData) -> str:
        return (
            f"Hi {d.patient_name}, checking in from {self.clinic_name}. Your consultation is still "
            f"available whenever you're ready: {d.reschedule_link}"
        )

    def no_show_next_day_email(self, d: TemplateData) -> EmailContent:
        return EmailContent(
            subject=f"Your consultation is still available at {self.clinic_name}",
            html=_email_body(
                "Still Thinking It Over?",
                [
                    f"Hi {d.patient_name},",
                    "Your consultation is still available. If you have questions first, just "
                    "reply to our text.",
                    f"The {self.clinic_name} team",
                ],
                "Reschedule Your Consultation",
                d.reschedule_link,
            ),
        )

    # Internal

    def escalation_sms(self, patient: Patient) -> str:
        return (
            f"[ESCALATION] Patient {patient.name} ({patient.phone}) has not responded after "
            "no-show recovery. Manual outreach needed."
        )

    def escalation_email(self, patient: Patient) -> EmailContent:
        return EmailContent(
            subject=f"Patient escalation: {patient.name}",
            html=(
                f"<p>Patient <strong>{patient.name}</strong> ({patient.phone}, {patient.email}) "
                "missed their consultation and has not responded to automated recovery "
                "messages.</p><p>Please reach out manually.</p>"
            ),
        )
