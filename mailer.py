import os
import secrets
import smtplib
import string
import logging
from datetime import datetime
from email.message import EmailMessage
from typing import Optional

from fastapi import Request

logger = logging.getLogger(__name__)

RESET_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<body style="font-family: Arial, sans-serif; background-color: #f4f4f4;">
  <div style="max-width: 600px; margin: 30px auto; background: #ffffff; border-radius: 8px; border: 1px solid #ddd;">
    <div style="background: #667eea; color: white; padding: 20px; text-align: center; font-size: 26px; font-weight: bold;">
      Password Reset
    </div>
    <div style="padding: 25px; color: #333; line-height: 1.8;">
      <p>Hello,</p>
      <p>You requested to reset your password for your Admin account. Please use the verification code below to proceed:</p>
      <span style="display: block; margin: 20px 0; font-size: 32px; color: #667eea; text-align: center; letter-spacing: 4px; font-family: 'Courier New', monospace;">{code}</span>
      <p><strong>Security Notice:</strong> This code will expire in 10 minutes. If you didn't request this reset, please ignore this email.</p>
    </div>
    <div style="padding: 15px; text-align: center; color: #777; font-size: 12px; border-top: 1px solid #ddd;">
      <p>&copy; {year} Admin Portal. All rights reserved.</p>
    </div>
  </div>
</body>
</html>
"""


class MailError(Exception):
    pass


def generate_reset_code() -> str:
    """Six characters: three letters and three digits, shuffled and upper-cased."""
    rng = secrets.SystemRandom()
    chars = [rng.choice(string.ascii_letters) for _ in range(3)] + [rng.choice(string.digits) for _ in range(3)]
    rng.shuffle(chars)
    return "".join(chars).upper()


class Mailer:
    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 user: Optional[str] = None, password: Optional[str] = None):
        self.host = host or os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.port = port or int(os.getenv("SMTP_PORT", "587"))
        self.user = user or os.getenv("SMTP_USER")
        self.password = password or os.getenv("SMTP_PASS")

    def send(self, msg: EmailMessage):
        if not self.user:
            raise MailError("SMTP not configured on server")
        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)

    def send_password_reset_email(self, to_email: str) -> str:
        code = generate_reset_code()
        msg = EmailMessage()
        msg["Subject"] = "Password Reset Verification Code"
        msg["From"] = self.user or ""
        msg["To"] = to_email
        msg.set_content(f"Your password reset verification code is: {code}. This code will expire in 10 minutes.")
        msg.add_alternative(RESET_TEMPLATE.format(code=code, year=datetime.now().year), subtype="html")
        try:
            self.send(msg)
        except (smtplib.SMTPException, OSError, MailError) as e:
            logger.error("Error sending password reset email to %s: %s", to_email, e)
            raise MailError("Failed to send password reset email") from e
        logger.info("Password reset email sent to %s", to_email)
        return code


def get_mailer(request: Request) -> Mailer:
    mailer = getattr(request.app.state, "mailer", None)
    if mailer is None:
        mailer = Mailer()
        request.app.state.mailer = mailer
    return mailer
