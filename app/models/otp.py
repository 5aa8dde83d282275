import enum

from sqlalchemy import Column, String, DateTime, Boolean, Integer, JSON, Index, text
from sqlalchemy.sql import func
from .base import Base


class OTPType(str, enum.Enum):
    REGISTER = "register"
    RESET = "reset"


class OTP(Base):
    __tablename__ = "email_otps"
    __table_args__ = (
        # At most one unused code per email and purpose
        Index(
            "uq_email_otps_unused",
            "email",
            "type",
            unique=True,
            postgresql_where=text("is_used = false"),
            sqlite_where=text("is_used = 0"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    otp_code = Column(String(6), nullable=False)
    type = Column(String(20), nullable=False, default=OTPType.REGISTER.value)
    is_used = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    # Pending registration (name, email, hashed password) until the code is verified
    user_data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
