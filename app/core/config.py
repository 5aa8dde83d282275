import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shuttle.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
DB_CONNECT_TIMEOUT = int(os.getenv("DB_CONNECT_TIMEOUT", "10"))

# Auth tokens
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "your-secret-key")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
REFRESH_TOKEN_EXPIRE_HOURS = int(os.getenv("REFRESH_TOKEN_EXPIRE_HOURS", "24"))

# One-time codes
OTP_EXPIRE_MINUTES = int(os.getenv("OTP_EXPIRE_MINUTES", "15"))
OTP_CLEANUP_INTERVAL_SECONDS = int(os.getenv("OTP_CLEANUP_INTERVAL_SECONDS", "300"))
OTP_CLEANUP_ENABLED = _flag("OTP_CLEANUP_ENABLED", "true")

# Whether staff/admin may edit appointments that already left PENDING
ALLOW_PRIVILEGED_EDIT_NON_PENDING = _flag("ALLOW_PRIVILEGED_EDIT_NON_PENDING")

# SMTP
SMTP_SERVER = os.getenv("SMTP_SERVER", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SENDER_EMAIL = os.getenv("SENDER_EMAIL", SMTP_USERNAME)

# LINE Login / Messaging API
LINE_LOGIN_CHANNEL_ID = os.getenv("LINE_LOGIN_CHANNEL_ID")
LINE_LOGIN_CHANNEL_SECRET = os.getenv("LINE_LOGIN_CHANNEL_SECRET")
LINE_MESSAGING_CHANNEL_SECRET = os.getenv("LINE_MESSAGING_CHANNEL_SECRET")
LINE_MESSAGING_ACCESS_TOKEN = os.getenv("LINE_MESSAGING_ACCESS_TOKEN")
LINE_REQUEST_TIMEOUT = int(os.getenv("LINE_REQUEST_TIMEOUT", "10"))
# Signs and bounds the lifetime of the LINE login state parameter
LINE_STATE_SECRET = os.getenv("LINE_STATE_SECRET", JWT_SECRET_KEY)
LINE_STATE_MAX_AGE_SECONDS = int(os.getenv("LINE_STATE_MAX_AGE_SECONDS", "600"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
# Public URL of this API, used for OAuth redirects
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", FRONTEND_URL).split(",") if o.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
