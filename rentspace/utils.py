import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from rentspace.core.config import settings

logger = logging.getLogger(__name__)

template_dir = os.path.join(os.path.dirname(__file__), 'email_templates')
env = Environment(loader=FileSystemLoader(template_dir), autoescape=select_autoescape(["html"]))

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

EMAIL_TEMPLATES = {
    "email_verification": ("Verify Your Email - Rent Space", "email_verification.html"),
    "password_reset": ("Password Reset Request - Rent Space", "password_reset.html"),
}

SMS_TEMPLATES = {
    "phone_verification": (
        "Your Rent Space verification code is: {otp}. "
        "Valid for {expires_in}. Do not share this code with anyone."
    ),
}


class NotificationError(Exception):
    pass


def send_email(to_email: str, subject: str, template_name: str, context: dict):
    template = env.get_template(template_name)
    html_content = template.render(frontend_url=settings.FRONTEND_URL, **context)

    msg = MIMEMultipart()
    msg['From'] = settings.SMTP_USER
    msg['To'] = to_email
    msg['Subject'] = subject
    msg.attach(MIMEText(html_content, 'html'))

    try:
        with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT, timeout=settings.NOTIFY_TIMEOUT_SECONDS) as server:
            server.starttls()
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            server.sendmail(settings.SMTP_USER, to_email, msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationError(f"Failed to send email: {e}") from e
    logger.info("Email %r sent", template_name)


def send_sms(to_phone: str, message: str):
    url = TWILIO_MESSAGES_URL.format(sid=settings.TWILIO_ACCOUNT_SID)
    try:
        with httpx.Client(timeout=settings.NOTIFY_TIMEOUT_SECONDS) as client:
            response = client.post(
                url,
                data={"To": to_phone, "From": settings.TWILIO_PHONE_NUMBER, "Body": message},
                auth=(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN),
            )
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise NotificationError(f"SMS gateway error: {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise NotificationError(f"Failed to send SMS: {e}") from e
    logger.info("SMS sent, status %s", response.json().get("status"))


class Notifier:
    """Routes a template to the email or SMS channel."""

    def send(self, target: str, template: str, data: dict):
        if template in EMAIL_TEMPLATES:
            subject, template_name = EMAIL_TEMPLATES[template]
            send_email(target, subject, template_name, data)
        elif template in SMS_TEMPLATES:
            send_sms(target, SMS_TEMPLATES[template].format(**data))
        else:
            raise NotificationError(f"Unknown notification template {template!r}")


def send_best_effort(notifier: Notifier, target: str, template: str, data: dict):
    try:
        notifier.send(target, template, data)
    except Exception:
        logger.exception("Failed to deliver %r notification", template)


def get_notifier() -> Notifier:
    return Notifier()
