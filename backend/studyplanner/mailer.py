# backend/studyplanner/mailer.py
import logging
import smtplib
from email.message import EmailMessage

from . import config

logger = logging.getLogger(__name__)


def send_reset_code_email(to_email: str, code: str):
    """
    Send a password reset code via SMTP. Needs SMTP_HOST (and usually SMTP_USER,
    SMTP_PASS, SMTP_FROM) in the environment.
    Without SMTP_HOST the code is only logged, for local development.
    Raises smtplib.SMTPException / OSError when delivery fails.
    """
    if not config.SMTP_HOST:
        logger.warning("SMTP not configured; reset code for %s is %s", to_email, code)
        return

    msg = EmailMessage()
    msg["Subject"] = "Your password reset code"
    msg["From"] = config.SMTP_FROM
    msg["To"] = to_email
    msg.set_content(
        f"Hello,\n\nYour password reset code is {code}. It is valid for "
        f"{config.RESET_CODE_EXPIRE_MINUTES} minutes.\n\n"
        "If you didn't request this, ignore this message.\n"
    )
    with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT) as smtp:
        smtp.starttls()
        if config.SMTP_USER and config.SMTP_PASS:
            smtp.login(config.SMTP_USER, config.SMTP_PASS)
        smtp.send_message(msg)
    logger.info("Sent reset code to %s", to_email)


def get_mailer():
    return send_reset_code_email
