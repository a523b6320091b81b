"""
Email Service

Sends overdue alerts and reset codes through the Brevo transactional API.
"""

import logging
import time
from typing import Optional

import httpx

from pingo import config

logger = logging.getLogger(__name__)


class Mailer:
    """Brevo client. ``send`` reports delivery as a bool and never raises."""

    def __init__(self, api_key: Optional[str] = None, api_url: Optional[str] = None,
                 sender_name: Optional[str] = None, sender_email: Optional[str] = None,
                 timeout: float = 15.0):
        self.api_key = (api_key if api_key is not None else config.BREVO_API_KEY).strip()
        self.api_url = api_url or config.BREVO_API_URL
        self.sender_name = sender_name or config.MAIL_SENDER_NAME
        self.sender_email = sender_email or config.MAIL_SENDER_EMAIL
        self.timeout = timeout

    def send(self, to_email: str, subject: str, html_content: str) -> bool:
        if not self.api_key:
            logger.error("BREVO_API_KEY is not set. Set it in the environment to enable email.")
            return False

        payload = {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [{"email": to_email}],
            "subject": subject,
            "htmlContent": html_content,
        }
        try:
            response = httpx.post(
                self.api_url,
                json=payload,
                headers={"api-key": self.api_key, "content-type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.exception(f"EMAIL SEND FAILED -> to={to_email}, subject='{subject}', error={e}")
            return False

        if not response.is_success:
            logger.error(f"EMAIL SEND REJECTED -> to={to_email}, status={response.status_code}, body={response.text[:200]}")
            return False

        logger.info(f"📧 Email sent -> to={to_email}, subject='{subject}'")
        return True


def overdue_alert(member: str, last_checkin_ms: int):
    """Subject and HTML body for a member's overdue alert."""
    last_seen = time.strftime("%Y-%m-%d %H:%M", time.localtime(last_checkin_ms / 1000))
    subject = f"[Urgent] Pingo overdue alert: {member}"
    html = f"""<div style="font-family:sans-serif;padding:20px;border:2px solid #ff4d4f;">
  <h2 style="color:#ff4d4f;">⚠️ Pingo safety alert</h2>
  <p>Your family member <strong>{member}</strong> has missed their check-in deadline.</p>
  <p>Last check-in: {last_seen}</p>
  <p>Please contact them now to make sure they are safe.</p>
</div>"""
    return subject, html


def reset_code_email(code: str):
    subject = "Pingo verification code"
    html = f"""<div style="font-family:sans-serif;padding:20px;">
  <h2>Pingo security check</h2>
  <p>Your admin password reset code is: <strong style="color:#007AFF;font-size:24px;">{code}</strong></p>
</div>"""
    return subject, html
