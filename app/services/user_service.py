import logging
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.security import get_password_hash
from app.models.user import User, Role

logger = logging.getLogger(__name__)


def _validate_role(role: str) -> str:
    try:
        return Role(role).value
    except ValueError:
        raise ValidationError(f"Invalid role: {role}")


def _validate_password(password: str) -> None:
    if not password or len(password) < 6 or len(password) > 128:
        raise ValidationError("Password must be 6-128 characters long")


class UserService:
    @staticmethod
    def format_user(user: User) -> Dict:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "is_active": user.is_active,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }

    @staticmethod
    def get_user(user_id: int, db: Session) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        return user

    @staticmethod
    def get_riders(db: Session) -> List[User]:
        """Active regular users, for staff picking whom to book for."""
        return (
            db.query(User)
            .filter(User.role == Role.REGULAR.value, User.is_active == True)
            .order_by(User.name)
            .all()
        )

    @staticmethod
    def get_users(db: Session, search: Optional[str] = None, role: Optional[str] = None,
                  include_inactive: bool = True) -> List[User]:
        query = db.query(User)
        if role:
            query = query.filter(User.role == _validate_role(role))
        if not include_inactive:
            query = query.filter(User.is_active == True)
        if search:
            term = f"%{search.strip()}%"
            query = query.filter(or_(User.name.ilike(term), User.email.ilike(term)))
        return query.order_by(User.created_at.desc(), User.id.desc()).all()

    @staticmethod
    def create_user(user_data: Dict, db: Session) -> User:
        email = (user_data.get("email") or "").strip().lower()
        name = (user_data.get("name") or "").strip()
        if not email or "@" not in email or not name:
            raise ValidationError("Name and a valid email are required")
        _validate_password(user_data.get("password"))
        role = _validate_role(user_data.get("role") or Role.REGULAR.value)

        if db.query(User).filter(User.email == email).first():
            raise ConflictError("Email is already registered")

        user = User(
            name=name,
            email=email,
            hashed_password=get_password_hash(user_data["password"]),
            role=role,
            is_active=True
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Email is already registered")
        db.refresh(user)
        logger.info("User %s created with role %s", user.id, role)
        return user

    @staticmethod
    def update_user(user_id: int, user_data: Dict, db: Session) -> User:
        user = UserService.get_user(user_id, db)

        if user_data.get("email") is not None:
            email = user_data["email"].strip().lower()
            if "@" not in email:
                raise ValidationError("Invalid email format")
            taken = db.query(User).filter(User.email == email, User.id != user_id).first()
            if taken:
                raise ConflictError("Email is already registered")
            user.email = email
        if user_data.get("name") is not None:
            user.name = user_data["name"].strip()
        if user_data.get("role") is not None:
            user.role = _validate_role(user_data["role"])
        if user_data.get("is_active") is not None:
            user.is_active = bool(user_data["is_active"])

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Email is already registered")
        db.refresh(user)
        return user

    @staticmethod
    def deactivate_user(user_id: int, db: Session) -> User:
        user = UserService.get_user(user_id, db)
        user.is_active = False
        db.commit()
        db.refresh(user)
        logger.info("User %s deactivated", user_id)
        return user

    @staticmethod
    def set_password(user_id: int, new_password: str, db: Session) -> User:
        _validate_password(new_password)
        user = UserService.get_user(user_id, db)
        user.hashed_password = get_password_hash(new_password)
        db.commit()
        return user
