import json
import logging
from datetime import datetime, timezone
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional

from app.core import config
from app.core.database import get_db
from app.core.exceptions import AppError, ValidationError
from app.core.permissions import actor_role
from app.core.security import get_current_user
from app.models.user import User, Role
from app.services.line_service import LineService

logger = logging.getLogger(__name__)

router = APIRouter()

class LoginCallbackRequest(BaseModel):
    code: Optional[str] = None
    state: Optional[str] = None

class DisconnectRequest(BaseModel):
    line_user_id: Optional[str] = None

class TestMessageRequest(BaseModel):
    message: Optional[str] = None


def _ensure_self_or_admin(current_user: User, user_id: int) -> None:
    if current_user.id != user_id and actor_role(current_user) is not Role.ADMIN:
        raise HTTPException(status_code=403, detail="You can only manage your own LINE connection")


def _frontend_redirect(success: bool, message: str) -> RedirectResponse:
    query = urlencode({"success": "true" if success else "false", "message": message})
    return RedirectResponse(url=f"{config.FRONTEND_URL}/line-callback?{query}", status_code=302)


@router.get("/login-url/{user_id}")
def get_login_url(user_id: int, current_user: User = Depends(get_current_user)):
    _ensure_self_or_admin(current_user, user_id)
    state = LineService.build_state(user_id)
    return {"success": True, "login_url": LineService.login_url(state), "state": state}

@router.get("/login-callback")
def login_callback_redirect(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")
    LineService.parse_state(state)

    try:
        LineService.link_account(db, code, state)
    except AppError as e:
        logger.error("LINE login callback failed: %s", e.message)
        return _frontend_redirect(False, "Could not connect LINE account")
    return _frontend_redirect(True, "LINE account connected")

@router.post("/login-callback")
def login_callback(request: LoginCallbackRequest, db: Session = Depends(get_db)):
    if not request.code or not request.state:
        raise ValidationError("Missing code or state")

    connection = LineService.link_account(db, request.code, request.state)
    return {
        "success": True,
        "message": "LINE account connected",
        "profile": {
            "display_name": connection.line_display_name,
            "picture_url": connection.line_picture_url
        }
    }

@router.get("/status/{user_id}")
def get_status(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    _ensure_self_or_admin(current_user, user_id)
    connections = LineService.get_connections(db, user_id)
    return {
        "success": True,
        "connected": bool(connections),
        "connections": [
            {
                "line_user_id": c.line_user_id,
                "display_name": c.line_display_name,
                "picture_url": c.line_picture_url,
                "connected_at": c.connected_at.isoformat() if c.connected_at else None
            }
            for c in connections
        ]
    }

@router.post("/disconnect/{user_id}")
def disconnect(
    user_id: int,
    request: Optional[DisconnectRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _ensure_self_or_admin(current_user, user_id)
    line_user_id = request.line_user_id if request else None
    count = LineService.disconnect(db, user_id, line_user_id)
    return {"success": True, "message": "LINE disconnected", "disconnected": count}

@router.post("/test-message/{user_id}")
def send_test_message(
    user_id: int,
    request: Optional[TestMessageRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _ensure_self_or_admin(current_user, user_id)
    sent = LineService.send_test_message(db, user_id, request.message if request else None)
    return {"success": True, "message": "Message sent", "sent": sent}

@router.get("/notifications/{user_id}")
def get_notifications(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _ensure_self_or_admin(current_user, user_id)
    return {"success": True, **LineService.list_notifications(db, user_id, page, limit)}

@router.get("/webhook")
async def webhook_check():
    return {
        "success": True,
        "message": "LINE webhook endpoint is working",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

async def _raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/webhook")
def webhook(
    body: bytes = Depends(_raw_body),
    x_line_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    if not LineService.verify_signature(body, x_line_signature):
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    if payload.get("code") and payload.get("state"):
        LineService.parse_state(payload["state"])
        try:
            LineService.link_account(db, payload["code"], payload["state"])
        except AppError as e:
            logger.error("LINE login via webhook failed: %s", e.message)
            return _frontend_redirect(False, "Could not connect LINE account")
        return _frontend_redirect(True, "LINE account connected")

    if "events" in payload:
        replied = LineService.handle_events(payload.get("events") or [])
        return {"success": True, "message": "Webhook processed", "replied": replied}

    return {"success": True, "message": "Unknown webhook type"}
