from fastapi import APIRouter, HTTPException, Depends, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional

from app.core.database import get_db
from app.core.security import decode_token
from app.services.auth_service import AuthService
from app.services.user_service import UserService
from app.models.user import User

router = APIRouter()

class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str

class VerifyOTPRequest(BaseModel):
    email: str
    otp: str

class LoginRequest(BaseModel):
    email: str
    password: str

class ForgotPasswordRequest(BaseModel):
    email: str

class ResetPasswordRequest(BaseModel):
    email: str
    otp: str
    new_password: str

class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


@router.post("/register")
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    result = AuthService.issue_registration_otp(request.name, request.email, request.password, db)

    if result["reused"]:
        message = "A verification code was already sent to your email and is still valid"
    elif result["email_sent"]:
        message = "Verification code sent to your email"
    else:
        message = "Verification code created but the email could not be sent"

    return {
        "success": True,
        "message": message,
        "email_sent": result["email_sent"],
        "reused": result["reused"],
        "expires_at": result["expires_at"]
    }

@router.post("/verify-otp")
def verify_otp(request: VerifyOTPRequest, db: Session = Depends(get_db)):
    user = AuthService.verify_registration_otp(request.email, request.otp, db)
    return {
        "success": True,
        "message": "Email verified, account created",
        "user": UserService.format_user(user)
    }

@router.post("/login")
def login(request: LoginRequest, db: Session = Depends(get_db)):
    user = AuthService.authenticate_user(request.email, request.password, db)
    tokens = AuthService.generate_tokens(user)
    return {
        "success": True,
        **tokens,
        "user": UserService.format_user(user)
    }

@router.post("/forgot-password")
def forgot_password(request: ForgotPasswordRequest, db: Session = Depends(get_db)):
    result = AuthService.issue_reset_otp(request.email, db)
    return {
        "success": True,
        "message": "OTP sent to your email" if result["email_sent"] or result["reused"] else "OTP created but the email could not be sent",
        "email_sent": result["email_sent"],
        "reused": result["reused"]
    }

@router.post("/reset-password")
def reset_password(request: ResetPasswordRequest, db: Session = Depends(get_db)):
    AuthService.reset_password(request.email, request.otp, request.new_password, db)
    return {"success": True, "message": "Password reset successfully"}

@router.post("/refresh")
def refresh_token(request: Request, body: Optional[RefreshRequest] = None, db: Session = Depends(get_db)):
    token = body.refresh_token if body and body.refresh_token else None
    if not token:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Missing refresh token")
        token = auth_header.split(" ")[1]

    payload = decode_token(token, "refresh")
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive")

    return AuthService.generate_tokens(user)
