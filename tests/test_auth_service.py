from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidOrExpiredError,
    NotFoundError,
    ValidationError,
)
from app.core.security import verify_password
from app.models import OTP, OTPType, User, Role
from app.services.auth_service import AuthService, utcnow


@pytest.fixture(autouse=True)
def no_email():
    with patch("app.services.auth_service.send_otp_email", return_value=True) as mock_send:
        yield mock_send


def register(db, email="new.rider@example.com"):
    return AuthService.issue_registration_otp("New Rider", email, "password1", db)


def test_generated_codes_are_six_digits():
    for _ in range(200):
        code = AuthService.generate_otp_code()
        assert len(code) == 6
        assert 100000 <= int(code) <= 999999

def test_registration_stores_pending_user_only(db, no_email):
    result = register(db)

    assert result["reused"] is False
    assert result["email_sent"] is True
    assert db.query(User).count() == 0

    otp = db.query(OTP).one()
    assert otp.type == OTPType.REGISTER.value
    assert otp.user_data["name"] == "New Rider"
    assert verify_password("password1", otp.user_data["password"])
    no_email.assert_called_once_with("new.rider@example.com", result["otp_code"], "register")

def test_reissue_returns_same_code_without_resending(db, no_email):
    first = register(db)
    second = register(db)

    assert second["otp_code"] == first["otp_code"]
    assert second["reused"] is True
    assert second["email_sent"] is False
    assert db.query(OTP).count() == 1
    assert no_email.call_count == 1

def test_concurrent_registration_reuses_the_first_code(db, session_factory, no_email):
    # Another request commits its code after this one found none
    def competing_request():
        other = session_factory()
        try:
            other.add(OTP(email="new.rider@example.com", otp_code="222222", type=OTPType.REGISTER.value,
                          is_used=False, expires_at=utcnow() + timedelta(minutes=15)))
            other.commit()
        finally:
            other.close()
        return "333333"

    with patch.object(AuthService, "generate_otp_code", side_effect=competing_request):
        result = register(db)

    assert result["otp_code"] == "222222"
    assert result["reused"] is True
    assert result["email_sent"] is False
    no_email.assert_not_called()

    db.expire_all()
    assert [o.otp_code for o in db.query(OTP).filter(OTP.is_used == False).all()] == ["222222"]

def test_only_one_unused_code_per_email_and_purpose(db):
    expires = utcnow() + timedelta(minutes=15)
    db.add_all([
        OTP(email="a@example.com", otp_code="123456", type="register", is_used=False, expires_at=expires),
        OTP(email="a@example.com", otp_code="234567", type="register", is_used=False, expires_at=expires),
    ])
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()

    db.add_all([
        OTP(email="a@example.com", otp_code="123456", type="register", is_used=False, expires_at=expires),
        OTP(email="a@example.com", otp_code="234567", type="reset", is_used=False, expires_at=expires),
        OTP(email="a@example.com", otp_code="345678", type="register", is_used=True, expires_at=expires),
    ])
    db.commit()
    assert db.query(OTP).count() == 3

def test_reissue_retires_expired_unused_code(db):
    db.add(OTP(email="new.rider@example.com", otp_code="654321", type=OTPType.REGISTER.value,
               is_used=False, expires_at=utcnow() - timedelta(minutes=1)))
    db.commit()

    result = register(db)

    assert result["reused"] is False
    db.expire_all()
    assert db.query(OTP).filter(OTP.is_used == False).one().otp_code == result["otp_code"]

def test_registration_with_taken_email(db, make_user):
    user = make_user()
    with pytest.raises(ConflictError):
        register(db, user.email)

def test_registration_validates_input(db):
    with pytest.raises(ValidationError):
        AuthService.issue_registration_otp("Someone", "not-an-email", "password1", db)
    with pytest.raises(ValidationError):
        AuthService.issue_registration_otp("Someone", "a@example.com", "123", db)

def test_email_failure_does_not_fail_registration(db, no_email):
    no_email.return_value = False
    result = register(db)
    assert result["email_sent"] is False
    assert db.query(OTP).count() == 1

def test_verify_creates_one_active_user_and_second_attempt_fails(db):
    code = register(db)["otp_code"]

    user = AuthService.verify_registration_otp("new.rider@example.com", code, db)
    assert user.is_active is True
    assert user.role == Role.REGULAR.value
    assert user.name == "New Rider"

    with pytest.raises(InvalidOrExpiredError):
        AuthService.verify_registration_otp("new.rider@example.com", code, db)
    assert db.query(User).filter(User.email == "new.rider@example.com").count() == 1

def test_wrong_code_is_rejected(db):
    code = register(db)["otp_code"]
    wrong = "100000" if code != "100000" else "100001"
    with pytest.raises(InvalidOrExpiredError):
        AuthService.verify_registration_otp("new.rider@example.com", wrong, db)

def test_expired_code_is_rejected(db):
    db.add(OTP(
        email="late@example.com",
        otp_code="654321",
        type=OTPType.REGISTER.value,
        is_used=False,
        expires_at=utcnow() - timedelta(minutes=1),
        user_data={"name": "Late", "email": "late@example.com", "password": "x"}
    ))
    db.commit()

    with pytest.raises(InvalidOrExpiredError):
        AuthService.verify_registration_otp("late@example.com", "654321", db)
    assert db.query(User).count() == 0

def test_used_code_is_rejected(db):
    db.add(OTP(
        email="used@example.com",
        otp_code="111111",
        type=OTPType.REGISTER.value,
        is_used=True,
        expires_at=utcnow() + timedelta(minutes=10),
        user_data={"name": "Used", "email": "used@example.com", "password": "x"}
    ))
    db.commit()

    with pytest.raises(InvalidOrExpiredError):
        AuthService.verify_registration_otp("used@example.com", "111111", db)

def test_email_taken_before_verification_rolls_back(db, make_user):
    code = register(db)["otp_code"]
    make_user(email="new.rider@example.com")

    with pytest.raises(ConflictError):
        AuthService.verify_registration_otp("new.rider@example.com", code, db)

    db.expire_all()
    assert db.query(OTP).one().is_used is False

def test_reset_flow_changes_password_once(db, make_user):
    user = make_user()
    code = AuthService.issue_reset_otp(user.email, db)["otp_code"]

    AuthService.reset_password(user.email, code, "brand-new-pass", db)
    db.expire_all()
    assert verify_password("brand-new-pass", db.get(User, user.id).hashed_password)

    with pytest.raises(InvalidOrExpiredError):
        AuthService.reset_password(user.email, code, "another-pass", db)

def test_reset_code_cannot_verify_registration(db, make_user):
    user = make_user()
    code = AuthService.issue_reset_otp(user.email, db)["otp_code"]
    with pytest.raises(InvalidOrExpiredError):
        AuthService.verify_registration_otp(user.email, code, db)

def test_reset_for_unknown_user(db):
    with pytest.raises(NotFoundError):
        AuthService.issue_reset_otp("ghost@example.com", db)

def test_cleanup_only_removes_expired(db):
    now = utcnow()
    db.add_all([
        OTP(email="a@example.com", otp_code="123456", type="register", is_used=False,
            expires_at=now - timedelta(minutes=5)),
        OTP(email="b@example.com", otp_code="234567", type="register", is_used=True,
            expires_at=now - timedelta(hours=2)),
        OTP(email="c@example.com", otp_code="345678", type="register", is_used=False,
            expires_at=now + timedelta(minutes=5)),
    ])
    db.commit()

    assert AuthService.cleanup_expired_otps(db) == 2
    assert [o.email for o in db.query(OTP).all()] == ["c@example.com"]

def test_run_cleanup_uses_its_own_session(session_factory, db):
    db.add(OTP(email="a@example.com", otp_code="123456", type="register", is_used=False,
               expires_at=utcnow() - timedelta(minutes=5)))
    db.commit()

    assert AuthService.run_otp_cleanup(session_factory) == 1

def test_authenticate_user(db, make_user):
    user = make_user()
    assert AuthService.authenticate_user(user.email.upper(), "secret123", db).id == user.id

    with pytest.raises(ValidationError):
        AuthService.authenticate_user(user.email, "wrong-password", db)
    with pytest.raises(ValidationError):
        AuthService.authenticate_user("nobody@example.com", "secret123", db)

def test_inactive_user_cannot_login(db, make_user):
    user = make_user(is_active=False)
    with pytest.raises(ForbiddenError):
        AuthService.authenticate_user(user.email, "secret123", db)
