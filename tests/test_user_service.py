from unittest.mock import patch

import pytest

from app.core.exceptions import ConflictError
from app.models import User, Role
from app.services.user_service import UserService, _validate_role


def test_update_user_to_taken_email_is_conflict(db, make_user):
    user = make_user()
    other = make_user()
    with pytest.raises(ConflictError):
        UserService.update_user(user.id, {"email": other.email.upper()}, db)

def test_concurrent_email_change_is_conflict(db, session_factory, make_user):
    user = make_user()
    other = make_user()

    # Another admin takes the address after the availability check
    def take_email(role):
        session = session_factory()
        try:
            session.get(User, other.id).email = "wanted@example.com"
            session.commit()
        finally:
            session.close()
        return _validate_role(role)

    with patch("app.services.user_service._validate_role", side_effect=take_email):
        with pytest.raises(ConflictError):
            UserService.update_user(user.id, {"email": "wanted@example.com", "role": Role.STAFF.value}, db)

    db.expire_all()
    refreshed = db.get(User, user.id)
    assert refreshed.email != "wanted@example.com"
    assert refreshed.role == Role.REGULAR.value
