"""Outbound email delivery for appointment notifications."""

import logging
import smtplib
from email.message import EmailMessage

from backend.core import config

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str) -> None:
    """Deliver one plain-text email.

    Without an SMTP host the message is only logged, which is what local
    development runs use. Delivery errors propagate; callers decide whether
    they matter.
    """
    if not config.NOTIFICATIONS_ENABLED:
        logger.debug('Notifications disabled; dropping email "%s" to %s', subject, to_email)
        return

    if not config.SMTP_HOST:
        logger.info('SMTP_HOST not set; email "%s" to %s: %s', subject, to_email, body)
        return

    message = EmailMessage()
    message['From'] = config.EMAIL_FROM_ADDRESS
    message['To'] = to_email
    message['Subject'] = subject
    message.set_content(body)

    with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=config.SMTP_TIMEOUT_SECONDS) as smtp:
        if config.SMTP_USE_TLS:
            smtp.starttls()
        if config.SMTP_USERNAME:
            smtp.login(config.SMTP_USERNAME, config.SMTP_PASSWORD)
        smtp.send_message(message)

    logger.info('Sent email "%s" to %s', subject, to_email)
