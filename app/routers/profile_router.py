from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional

from app.core.database import get_db
from app.core.security import get_current_user
from app.models.user import User
from app.services.profile_service import ProfileService

router = APIRouter()

class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None

class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str

class DeactivateRequest(BaseModel):
    password: str

@router.get("/me")
async def get_profile(current_user: User = Depends(get_current_user)):
    return ProfileService.get_profile(current_user)

@router.put("/me")
def update_profile(
    request: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = ProfileService.update_profile(current_user, request.model_dump(exclude_unset=True), db)
    return {"success": True, "message": "Profile updated successfully", "user": ProfileService.get_profile(user)}

@router.post("/change-password")
def change_password(
    request: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ProfileService.change_password(current_user, request.current_password, request.new_password, db)
    return {"success": True, "message": "Password changed successfully"}

@router.post("/deactivate")
def deactivate_account(
    request: DeactivateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ProfileService.deactivate(current_user, request.password, db)
    return {"success": True, "message": "Account deactivated"}
