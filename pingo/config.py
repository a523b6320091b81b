from dotenv import load_dotenv
load_dotenv()

import os

# Backend
DB_PATH = os.environ.get("DB_PATH", "pingo.db")
ADMIN_NAME = os.environ.get("ADMIN_NAME", "Admin")
ALARM_SUPPRESSION_TTL_SECONDS = int(os.environ.get("ALARM_SUPPRESSION_TTL_SECONDS", "3600"))
RESET_CODE_TTL_SECONDS = int(os.environ.get("RESET_CODE_TTL_SECONDS", "300"))
PURGE_INTERVAL_SECONDS = int(os.environ.get("PURGE_INTERVAL_SECONDS", "300"))  # expired-key sweep
BANNER = "Pingo Operational v3.0"

# Email (Brevo transactional API)
BREVO_API_KEY = os.environ.get("BREVO_API_KEY", "")
BREVO_API_URL = os.environ.get("BREVO_API_URL", "https://api.brevo.com/v3/smtp/email")
MAIL_SENDER_NAME = os.environ.get("MAIL_SENDER_NAME", "Pingo Security")
MAIL_SENDER_EMAIL = os.environ.get("MAIL_SENDER_EMAIL", "security@pingo-echo.com")

# Device
PINGO_BASE_URL = os.environ.get("PINGO_BASE_URL", "http://localhost:8000")
PINGO_FAMILY_EMAIL = os.environ.get("PINGO_FAMILY_EMAIL", "")
PINGO_MEMBER_NAME = os.environ.get("PINGO_MEMBER_NAME", "")
PINGO_ROLE = os.environ.get("PINGO_ROLE", "student")
PINGO_ALERT_INTERVAL = os.environ.get("PINGO_ALERT_INTERVAL", "24")
PINGO_ADVANCE_NOTICE_MINUTES = int(os.environ.get("PINGO_ADVANCE_NOTICE_MINUTES", "30"))
PINGO_MONITOR_THRESHOLD_MINUTES = int(os.environ.get("PINGO_MONITOR_THRESHOLD_MINUTES", "0"))
POLL_INTERVAL_SECONDS = int(os.environ.get("POLL_INTERVAL_SECONDS", "10"))
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "15"))
SERVICE_ACCOUNT = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS", "")
FCM_DEVICE_TOKEN = os.environ.get("FCM_DEVICE_TOKEN", "")
