"""
Outbound e-mail over SMTP.
"""
import smtplib
from email.message import EmailMessage
from typing import Iterable, Optional

import structlog

from ..config import settings

log = structlog.get_logger(__name__)


class EmailSender:
    def is_configured(self) -> bool:
        return bool(settings.enable_email and settings.smtp_host and settings.mail_from)

    def send(self, to: Iterable[str], subject: str, text_body: str, html_body: Optional[str] = None) -> bool:
        """
        Send one message to all recipients.

        Returns False when e-mail is disabled or SMTP is not configured.
        SMTP and socket errors propagate to the caller.
        """
        recipients = [addr for addr in to if addr]
        if not recipients:
            return False
        if not self.is_configured():
            log.info("email_skipped_not_configured", to=recipients, subject=subject)
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.mail_from
        msg["To"] = ", ".join(recipients)
        msg.set_content(text_body)
        if html_body:
            msg.add_alternative(html_body, subtype="html")

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)
        log.info("email_sent", to=recipients, subject=subject)
        return True


def get_email_sender() -> EmailSender:
    return EmailSender()
