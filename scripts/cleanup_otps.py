import os
import sys

# Add project root to path
sys.path.append(os.getcwd())

from app.core.database import SessionLocal
from app.services.auth_service import AuthService


def cleanup_otps():
    deleted = AuthService.run_otp_cleanup(SessionLocal)
    print(f"✓ Removed {deleted} expired OTP(s)")
    return deleted


if __name__ == "__main__":
    cleanup_otps()
