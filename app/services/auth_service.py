import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import config
from app.core.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    InvalidOrExpiredError,
    NotFoundError,
    ValidationError,
)
from app.core.security import verify_password, create_access_token, create_refresh_token, get_password_hash
from app.models.otp import OTP, OTPType
from app.models.user import User, Role
from app.utils.email import send_otp_email

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class AuthService:
    @staticmethod
    def validate_credentials(email: str, password: str) -> None:
        if not email or not password:
            raise ValidationError("Email and password are required")
        if "@" not in email or len(email) > 255:
            raise ValidationError("Invalid email format")
        if len(password) < 6 or len(password) > 128:
            raise ValidationError("Password must be 6-128 characters long")

    @staticmethod
    def authenticate_user(email: str, password: str, db: Session) -> User:
        email = normalize_email(email)
        AuthService.validate_credentials(email, password)

        user = db.query(User).filter(User.email == email).first()
        if not user:
            raise ValidationError("User not found")
        if not verify_password(password, user.hashed_password):
            raise ValidationError("Incorrect password")
        if not user.is_active:
            raise ForbiddenError("Account is inactive")
        return user

    @staticmethod
    def generate_tokens(user: User) -> Dict:
        claims = {"sub": str(user.id), "role": user.role}
        return {
            "access_token": create_access_token(data=claims),
            "refresh_token": create_refresh_token(data=claims),
            "token_type": "bearer",
            "expires_in": config.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        }

    @staticmethod
    def generate_otp_code() -> str:
        return str(100000 + secrets.randbelow(900000))

    @staticmethod
    def _valid_otp_query(db: Session, email: str, otp_type: OTPType, now: datetime):
        return db.query(OTP).filter(
            OTP.email == email,
            OTP.type == otp_type.value,
            OTP.is_used == False,
            OTP.expires_at > now
        )

    @staticmethod
    def _reused(otp_record: OTP) -> Dict:
        return {"otp_code": otp_record.otp_code, "expires_at": otp_record.expires_at, "reused": True}

    @staticmethod
    def _issue_otp(db: Session, email: str, otp_type: OTPType, user_data: Optional[Dict] = None) -> Dict:
        now = utcnow()
        existing = (
            AuthService._valid_otp_query(db, email, otp_type, now)
            .order_by(OTP.expires_at.desc())
            .first()
        )
        if existing:
            # Keep the code the user may already have in their inbox
            logger.info("Reusing unexpired %s OTP for %s", otp_type.value, email)
            return AuthService._reused(existing)

        # Retire stale codes so the unique index only guards the live one
        db.query(OTP).filter(
            OTP.email == email,
            OTP.type == otp_type.value,
            OTP.is_used == False,
            OTP.expires_at <= now
        ).update({OTP.is_used: True}, synchronize_session=False)

        otp_record = OTP(
            email=email,
            otp_code=AuthService.generate_otp_code(),
            type=otp_type.value,
            expires_at=now + timedelta(minutes=config.OTP_EXPIRE_MINUTES),
            is_used=False,
            user_data=user_data
        )
        db.add(otp_record)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request issued the code first
            db.rollback()
            winner = AuthService._valid_otp_query(db, email, otp_type, utcnow()).first()
            if not winner:
                raise ConflictError("A code is already being issued for this email, please retry")
            logger.info("Concurrent %s OTP request for %s, reusing the issued code", otp_type.value, email)
            return AuthService._reused(winner)

        db.refresh(otp_record)
        return {"otp_code": otp_record.otp_code, "expires_at": otp_record.expires_at, "reused": False}

    @staticmethod
    def issue_registration_otp(name: str, email: str, password: str, db: Session) -> Dict:
        email = normalize_email(email)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        AuthService.validate_credentials(email, password)

        if db.query(User).filter(User.email == email).first():
            raise ConflictError("Email is already registered")

        # The account itself is created only once the code is verified
        pending = {"name": name, "email": email, "password": get_password_hash(password)}
        result = AuthService._issue_otp(db, email, OTPType.REGISTER, user_data=pending)

        result["email_sent"] = False
        if not result["reused"]:
            result["email_sent"] = send_otp_email(email, result["otp_code"], OTPType.REGISTER.value)
        return result

    @staticmethod
    def _claim_otp(db: Session, email: str, otp_code: str, otp_type: OTPType) -> OTP:
        """Lock the matching OTP row and mark it used. Caller commits or rolls back."""
        otp_record = (
            AuthService._valid_otp_query(db, email, otp_type, utcnow())
            .filter(OTP.otp_code == otp_code)
            .with_for_update()
            .first()
        )
        if not otp_record:
            raise InvalidOrExpiredError("Invalid or expired OTP")

        claimed = (
            db.query(OTP)
            .filter(OTP.id == otp_record.id, OTP.is_used == False)
            .update({OTP.is_used: True}, synchronize_session=False)
        )
        if claimed != 1:
            raise InvalidOrExpiredError("Invalid or expired OTP")
        return otp_record

    @staticmethod
    def verify_registration_otp(email: str, otp_code: str, db: Session) -> User:
        email = normalize_email(email)
        otp_code = (otp_code or "").strip()
        if not email or not otp_code:
            raise ValidationError("Email and OTP are required")

        try:
            otp_record = AuthService._claim_otp(db, email, otp_code, OTPType.REGISTER)

            pending = otp_record.user_data or {}
            if not pending.get("password"):
                raise InvalidOrExpiredError("Invalid or expired OTP")

            if db.query(User).filter(User.email == email).first():
                raise ConflictError("Email is already registered")

            user = User(
                name=pending.get("name") or email.split("@")[0],
                email=email,
                hashed_password=pending["password"],
                role=Role.REGULAR.value,
                is_active=True
            )
            db.add(user)
            db.flush()
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Email is already registered")
        except AppError:
            db.rollback()
            raise

        db.refresh(user)
        logger.info("Registration verified for %s (user %s)", email, user.id)
        return user

    @staticmethod
    def issue_reset_otp(email: str, db: Session) -> Dict:
        email = normalize_email(email)
        user = db.query(User).filter(User.email == email, User.is_active == True).first()
        if not user:
            raise NotFoundError("User not found")

        result = AuthService._issue_otp(db, email, OTPType.RESET)
        result["email_sent"] = False
        if not result["reused"]:
            result["email_sent"] = send_otp_email(email, result["otp_code"], OTPType.RESET.value)
        return result

    @staticmethod
    def reset_password(email: str, otp_code: str, new_password: str, db: Session) -> User:
        email = normalize_email(email)
        AuthService.validate_credentials(email, new_password)

        try:
            AuthService._claim_otp(db, email, (otp_code or "").strip(), OTPType.RESET)

            user = db.query(User).filter(User.email == email, User.is_active == True).first()
            if not user:
                raise NotFoundError("User not found")

            user.hashed_password = get_password_hash(new_password)
            db.commit()
        except AppError:
            db.rollback()
            raise
        return user

    @staticmethod
    def cleanup_expired_otps(db: Session) -> int:
        deleted = (
            db.query(OTP)
            .filter(OTP.expires_at < utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
        if deleted:
            logger.info("Cleaned up %s expired OTP(s)", deleted)
        return deleted

    @staticmethod
    def run_otp_cleanup(session_factory) -> int:
        """Sweep entry point for the scheduler and the CLI; never raises."""
        db = session_factory()
        try:
            return AuthService.cleanup_expired_otps(db)
        except Exception:
            logger.exception("Error cleaning up expired OTPs")
            db.rollback()
            return 0
        finally:
            db.close()
