from sqlalchemy.orm import Session
from typing import Dict

from app.core.exceptions import ConflictError, ValidationError
from app.models.user import User
from app.core.security import get_password_hash, verify_password


class ProfileService:
    @staticmethod
    def get_profile(user: User) -> Dict:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "is_active": user.is_active,
            "created_at": user.created_at
        }

    @staticmethod
    def update_profile(user: User, profile_data: Dict, db: Session) -> User:
        if profile_data.get("email"):
            email = profile_data["email"].strip().lower()
            if "@" not in email:
                raise ValidationError("Invalid email format")
            if db.query(User).filter(User.email == email, User.id != user.id).first():
                raise ConflictError("Email is already in use")
            user.email = email
        if profile_data.get("name"):
            user.name = profile_data["name"].strip()

        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def change_password(user: User, current_password: str, new_password: str, db: Session) -> None:
        if not verify_password(current_password, user.hashed_password):
            raise ValidationError("Current password is incorrect")
        if len(new_password) < 6 or len(new_password) > 128:
            raise ValidationError("Password must be 6-128 characters long")
        user.hashed_password = get_password_hash(new_password)
        db.commit()

    @staticmethod
    def deactivate(user: User, password: str, db: Session) -> None:
        if not verify_password(password, user.hashed_password):
            raise ValidationError("Password is incorrect")
        user.is_active = False
        db.commit()
