"""
Email adapter for sending rendered cascade emails over SMTP

Uses TLS with username/password authentication (for Gmail, an app password).
"""
import logging
import re
import smtplib
import socket
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

from .base import ChannelAdapter, DeliveryResult, EmailContent

logger = logging.getLogger("email-adapter")

# Connection-level failures are worth retrying; rejections are not
TRANSIENT_SMTP_ERRORS = (
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
    smtplib.SMTPHeloError,
    socket.timeout,
    ConnectionError,
)


def html_to_text(html: str) -> str:
    """Plain-text fallback for an HTML body"""
    text = re.sub(r"<br\s*/?>", "\n", html, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = text.replace("&nbsp;", " ")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class SMTPEmailAdapter(ChannelAdapter):
    """Sends EmailContent through an SMTP server"""

    name = "email"

    def __init__(
        self,
        username: Optional[str],
        password: Optional[str],
        from_address: Optional[str] = None,
        from_name: str = "",
        smtp_server: str = "smtp.gmail.com",
        smtp_port: int = 587,
        timeout: int = 30
    ):
        self.username = username
        self.password = password
        self.from_address = from_address or username
        self.from_name = from_name
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.timeout = timeout

    def build_message(self, recipient: str, content: EmailContent) -> MIMEMultipart:
        """Create the multipart message with text and HTML versions"""
        msg = MIMEMultipart('alternative')
        msg['Subject'] = content.subject
        msg['From'] = formataddr((self.from_name, self.from_address))
        msg['To'] = recipient
        msg['Message-ID'] = make_msgid()

        msg.attach(MIMEText(content.text or html_to_text(content.html), 'plain'))
        msg.attach(MIMEText(content.html, 'html'))
        return msg

    def send(self, recipient: str, content: EmailContent) -> DeliveryResult:
        if not self.username or not self.password or not recipient:
            error_msg = "Missing required email configuration (username, password, or recipient)"
            logger.error(f"[EMAIL] {error_msg}")
            return DeliveryResult.permanent(error_msg)

        msg = self.build_message(recipient, content)

        try:
            logger.debug(f"[EMAIL] Connecting to {self.smtp_server}:{self.smtp_port}")
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.username, self.password)
                server.sendmail(self.from_address, [recipient], msg.as_string())

        except TRANSIENT_SMTP_ERRORS as e:
            error_msg = f"SMTP connection problem: {e}"
            logger.error(f"[EMAIL] {recipient} | {error_msg}")
            return DeliveryResult.transient(error_msg)

        except smtplib.SMTPAuthenticationError as e:
            error_msg = f"SMTP authentication failed: {e}"
            logger.error(f"[EMAIL] {recipient} | {error_msg}")
            return DeliveryResult.permanent(error_msg)

        except smtplib.SMTPResponseException as e:
            # 4xx replies are temporary by definition
            error_msg = f"SMTP error {e.smtp_code}: {e.smtp_error}"
            logger.error(f"[EMAIL] {recipient} | {error_msg}")
            if 400 <= e.smtp_code < 500:
                return DeliveryResult.transient(error_msg)
            return DeliveryResult.permanent(error_msg)

        except smtplib.SMTPException as e:
            error_msg = f"SMTP error occurred: {e}"
            logger.error(f"[EMAIL] {recipient} | {error_msg}")
            return DeliveryResult.permanent(error_msg)

        logger.info(f"[EMAIL] Sent to {recipient}: {content.subject}")
        return DeliveryResult.sent(msg.get('Message-ID'))
