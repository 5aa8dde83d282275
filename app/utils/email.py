import logging
import os
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from app.core import config

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), '../templates/email')

SUBJECTS = {
    "register": "Verification code - Hospital Shuttle Booking",
    "reset": "Password reset code - Hospital Shuttle Booking",
}

TITLES = {
    "register": "Confirm your email address",
    "reset": "Reset your password",
}


def render_otp_email(otp_code: str, otp_type: str = "register") -> str:
    with open(os.path.join(TEMPLATE_DIR, 'otp.html'), 'r', encoding='utf-8') as f:
        html_content = f.read()

    html_content = html_content.replace('{{ otp_code }}', otp_code)
    html_content = html_content.replace('{{ title }}', TITLES.get(otp_type, TITLES["register"]))
    html_content = html_content.replace('{{ expire_minutes }}', str(config.OTP_EXPIRE_MINUTES))
    return html_content


def send_otp_email(to_email, otp_code, otp_type="register"):
    """Send a one-time code. Returns False instead of raising on any failure."""
    if not config.SMTP_USERNAME or not config.SMTP_PASSWORD:
        logger.warning("SMTP credentials not found. Skipping email send.")
        logger.warning("DEBUG OTP for %s: %s", to_email, otp_code)
        return False

    try:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = SUBJECTS.get(otp_type, SUBJECTS["register"])
        msg['From'] = f"Hospital Shuttle <{config.SENDER_EMAIL}>"
        msg['To'] = to_email

        msg.attach(MIMEText(render_otp_email(otp_code, otp_type), 'html'))

        with smtplib.SMTP(config.SMTP_SERVER, config.SMTP_PORT, timeout=15) as server:
            server.starttls()
            server.login(config.SMTP_USERNAME, config.SMTP_PASSWORD)
            server.sendmail(config.SENDER_EMAIL, to_email, msg.as_string())

        logger.info("OTP email (%s) sent to %s", otp_type, to_email)
        return True
    except Exception:
        logger.exception("Failed to send OTP email to %s", to_email)
        return False
