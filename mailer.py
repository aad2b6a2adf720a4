# mailer.py
import smtplib
from email.message import EmailMessage
from typing import Optional

from app_logger import get_logger
from config import settings

log = get_logger("mailer")


def build_otp_email_html(*, teacher_name: str, otp: str, expires_minutes: int) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #007BFF;">Password Reset Request</h2>
      <p>Hello {teacher_name},</p>
      <p>You have requested to reset your password. Use the OTP below to proceed:</p>
      <div style="background-color: #f8f9fa; padding: 20px; text-align: center; margin: 20px 0;">
        <h1 style="color: #007BFF; letter-spacing: 5px; margin: 0;">{otp}</h1>
      </div>
      <p><strong>Important:</strong></p>
      <ul>
        <li>This OTP is valid for {expires_minutes} minutes only</li>
        <li>Do not share this OTP with anyone</li>
        <li>If you didn't request this, please ignore this email</li>
      </ul>
      <p>Best regards,<br>EduLearn Team</p>
    </div>
    """


class Mailer:
    def __init__(
        self,
        host: str,
        port: int,
        user: Optional[str],
        password: Optional[str],
        enabled: bool = True,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.enabled = enabled

    def send_html(self, *, to_email: str, subject: str, html_body: str) -> bool:
        """Send one HTML email. Returns False when mail is not configured."""
        if not self.enabled:
            log.info("Email not configured, skipping send", extra={"to": to_email, "subject": subject})
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.user
        msg["To"] = to_email
        msg.set_content("Please open this email in HTML view.")
        msg.add_alternative(html_body, subtype="html")

        with smtplib.SMTP(self.host, self.port) as server:
            server.starttls()
            server.login(self.user, self.password)
            server.send_message(msg)
        return True

    def send_otp(self, *, to_email: str, teacher_name: str, otp: str) -> bool:
        return self.send_html(
            to_email=to_email,
            subject="Password Reset OTP - EduLearn",
            html_body=build_otp_email_html(
                teacher_name=teacher_name,
                otp=otp,
                expires_minutes=settings.OTP_EXPIRES_MINUTES,
            ),
        )


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            settings.EMAIL_USER,
            settings.EMAIL_PASSWORD,
            enabled=settings.email_configured,
        )
    return _mailer
