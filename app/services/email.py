import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.config import Settings, settings
from app.metrics import NOTIFICATION_DELIVERIES

logger = logging.getLogger(__name__)


def _create_smtp_client(host: str, port: int, timeout: float):
    if port == 465:
        return smtplib.SMTP_SSL(host, port, timeout=timeout)
    return smtplib.SMTP(host, port, timeout=timeout)


def send_email(
    to_email: str,
    subject: str,
    body_html: str,
    body_text: str | None = None,
    config: Settings = settings,
) -> bool:
    """
    Send an email via SMTP.

    Args:
        to_email: Recipient email address
        subject: Email subject
        body_html: HTML body content
        body_text: Plain text alternative (optional)

    Returns:
        True if email was sent successfully, False otherwise
    """
    if not config.smtp_host:
        logger.info("email_skipped reason=smtp_not_configured to=%s", to_email)
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = config.smtp_from_email
    msg["To"] = to_email
    if body_text:
        msg.attach(MIMEText(body_text, "plain"))
    msg.attach(MIMEText(body_html, "html"))

    try:
        server = _create_smtp_client(
            config.smtp_host, config.smtp_port, config.notification_timeout_seconds
        )
        if config.smtp_use_tls and config.smtp_port != 465:
            server.starttls()
        if config.smtp_username and config.smtp_password:
            server.login(config.smtp_username, config.smtp_password)
        server.sendmail(config.smtp_from_email, to_email, msg.as_string())
        server.quit()
    except smtplib.SMTPAuthenticationError as exc:
        logger.error("SMTP authentication failed for %s: %s", to_email, exc)
        NOTIFICATION_DELIVERIES.labels(channel="email", status="failed").inc()
        return False
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Failed to send email to %s: %s", to_email, exc)
        NOTIFICATION_DELIVERIES.labels(channel="email", status="failed").inc()
        return False

    NOTIFICATION_DELIVERIES.labels(channel="email", status="sent").inc()
    logger.info("Email sent successfully to %s", to_email)
    return True
