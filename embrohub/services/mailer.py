"""
Outbound email.

``Mailer.send`` never raises: delivery problems are logged and reported as
``False`` so callers decide whether the email was the primary step.
"""
import smtplib
from email.message import EmailMessage
from typing import Optional, List, Dict, Any

import resend
import structlog

from ..config import settings


log = structlog.get_logger()

# [{"filename": str, "content": bytes, "content_type": str}]
Attachments = Optional[List[Dict[str, Any]]]


class Mailer:
    def send(self, recipient: str, subject: str, html: str, attachments: Attachments = None) -> bool:
        raise NotImplementedError


class SmtpMailer(Mailer):
    def send(self, recipient: str, subject: str, html: str, attachments: Attachments = None) -> bool:
        if not recipient:
            return False
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.mail_from
        msg["To"] = recipient
        msg.set_content("This message requires an HTML capable email client.")
        msg.add_alternative(html, subtype="html")
        for att in attachments or []:
            maintype, _, subtype = (att.get("content_type") or "application/octet-stream").partition("/")
            msg.add_attachment(att["content"], maintype=maintype, subtype=subtype or "octet-stream", filename=att["filename"])
        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as s:
                if settings.smtp_tls:
                    s.starttls()
                if settings.smtp_username and settings.smtp_password:
                    s.login(settings.smtp_username, settings.smtp_password)
                s.send_message(msg)
        except Exception as e:
            log.warning("email_send_failed", transport="smtp", recipient=recipient, subject=subject, error=str(e))
            return False
        log.info("email_sent", transport="smtp", recipient=recipient, subject=subject)
        return True


class ResendMailer(Mailer):
    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or settings.resend_api_key

    def send(self, recipient: str, subject: str, html: str, attachments: Attachments = None) -> bool:
        if not recipient:
            return False
        payload: Dict[str, Any] = {
            "from": f"{settings.brand_name} <{settings.mail_from}>",
            "to": [recipient],
            "subject": subject,
            "html": html,
        }
        if attachments:
            payload["attachments"] = [
                {"filename": a["filename"], "content": list(a["content"])} for a in attachments
            ]
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as e:
            log.warning("email_send_failed", transport="resend", recipient=recipient, subject=subject, error=str(e))
            return False
        if not isinstance(response, dict) or not response.get("id"):
            log.warning("email_send_failed", transport="resend", recipient=recipient, subject=subject, error=str(response))
            return False
        log.info("email_sent", transport="resend", recipient=recipient, subject=subject, email_id=response.get("id"))
        return True


class NullMailer(Mailer):
    """Used when no transport is configured or email is disabled."""

    def send(self, recipient: str, subject: str, html: str, attachments: Attachments = None) -> bool:
        log.info("email_skipped", recipient=recipient, subject=subject)
        return False


def get_mailer() -> Mailer:
    if not settings.enable_email or not settings.mail_from:
        return NullMailer()
    if settings.resend_api_key:
        return ResendMailer()
    if settings.smtp_host:
        return SmtpMailer()
    return NullMailer()
