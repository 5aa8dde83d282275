from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.permissions import RoleRequired
from app.models.user import User, Role
from app.services.user_service import UserService

router = APIRouter()


@router.get("")
def list_riders(
    db: Session = Depends(get_db),
    current_user: User = Depends(RoleRequired(Role.STAFF, Role.ADMIN))
):
    return [UserService.format_user(u) for u in UserService.get_riders(db)]
