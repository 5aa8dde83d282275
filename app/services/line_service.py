import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests
from sqlalchemy.orm import Session

from app.core import config
from app.core.exceptions import UpstreamError, ValidationError, NotFoundError
from app.models.appointment import Appointment
from app.models.line_connection import LineConnection
from app.models.line_notification import LineNotification

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://access.line.me/oauth2/v2.1/authorize"
TOKEN_URL = "https://api.line.me/oauth2/v2.1/token"
PROFILE_URL = "https://api.line.me/v2/profile"
PUSH_URL = "https://api.line.me/v2/bot/message/push"
REPLY_URL = "https://api.line.me/v2/bot/message/reply"

NOTIFICATION_KINDS = ("approved", "rejected", "cancelled")
AUTO_REPLY_TEXT = "Thank you for your message! Our staff will get back to you soon."
TEST_MESSAGE_TEXT = "Test message from the hospital shuttle booking system"


def _redirect_uri() -> str:
    return f"{config.BASE_URL}/api/line/login-callback"


def render_notification(kind: str, appointment: Appointment) -> str:
    when = appointment.appointment_date.strftime("%d/%m/%Y") if appointment.appointment_date else "-"
    details = (
        f"📅 Date: {when}\n"
        f"🕐 Time: {appointment.appointment_time}\n"
        f"🏥 Hospital: {appointment.hospital}"
    )

    if kind == "approved":
        address = " ".join(p for p in (appointment.subdistrict, appointment.district, appointment.province) if p)
        return f"✅ Your booking has been approved!\n\n{details}\n📍 Pickup: {address or '-'}"
    if kind == "rejected":
        return f"❌ Your booking was rejected.\n\n{details}\n\nPlease contact our staff for more details."
    if kind == "cancelled":
        return f"🚫 Your booking has been cancelled.\n\n{details}"
    raise ValidationError(f"Invalid notification type: {kind}")


class LineService:
    @staticmethod
    def _sign_state(user_id: Any, timestamp: Any) -> str:
        message = f"{user_id}:{timestamp}".encode("utf-8")
        return hmac.new(config.LINE_STATE_SECRET.encode("utf-8"), message, hashlib.sha256).hexdigest()

    @staticmethod
    def build_state(user_id: int) -> str:
        timestamp = int(time.time() * 1000)
        payload = json.dumps({
            "userId": user_id,
            "timestamp": timestamp,
            "signature": LineService._sign_state(user_id, timestamp)
        })
        return base64.b64encode(payload.encode("utf-8")).decode("ascii")

    @staticmethod
    def parse_state(state: str) -> Dict[str, Any]:
        try:
            data = json.loads(base64.b64decode(state, validate=True).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError, TypeError):
            raise ValidationError("Invalid state parameter")

        if not isinstance(data, dict) or "userId" not in data:
            raise ValidationError("Invalid state parameter")
        return data

    @staticmethod
    def verify_state(data: Dict[str, Any]) -> int:
        """Check a parsed state's signature and age and return its user id."""
        user_id, timestamp = data.get("userId"), data.get("timestamp")
        signature = data.get("signature")
        if not isinstance(signature, str) or not hmac.compare_digest(
            LineService._sign_state(user_id, timestamp), signature
        ):
            raise ValidationError("Invalid state parameter")

        try:
            age = time.time() - int(timestamp) / 1000
            user_id = int(user_id)
        except (TypeError, ValueError):
            raise ValidationError("Invalid state parameter")
        if age > config.LINE_STATE_MAX_AGE_SECONDS or age < -60:
            raise ValidationError("LINE login link has expired, please try again")
        return user_id

    @staticmethod
    def login_url(state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": config.LINE_LOGIN_CHANNEL_ID or "",
            "redirect_uri": _redirect_uri(),
            "state": state,
            "scope": "profile openid",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    @staticmethod
    def exchange_code_for_token(code: str) -> Dict[str, Any]:
        try:
            response = requests.post(
                TOKEN_URL,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": _redirect_uri(),
                    "client_id": config.LINE_LOGIN_CHANNEL_ID,
                    "client_secret": config.LINE_LOGIN_CHANNEL_SECRET,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=config.LINE_REQUEST_TIMEOUT
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error("Error exchanging LINE code for token: %s", e)
            raise UpstreamError("Could not exchange LINE authorization code")

    @staticmethod
    def get_profile(access_token: str) -> Dict[str, Any]:
        try:
            response = requests.get(
                PROFILE_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=config.LINE_REQUEST_TIMEOUT
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error("Error getting LINE profile: %s", e)
            raise UpstreamError("Could not fetch LINE profile")

    @staticmethod
    def _post_message(url: str, payload: Dict[str, Any]) -> None:
        if not config.LINE_MESSAGING_ACCESS_TOKEN:
            raise UpstreamError("LINE messaging access token is not configured")
        try:
            response = requests.post(
                url,
                data=json.dumps(payload),
                headers={
                    "Authorization": f"Bearer {config.LINE_MESSAGING_ACCESS_TOKEN}",
                    "Content-Type": "application/json"
                },
                timeout=config.LINE_REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Error sending LINE message: %s", e)
            raise UpstreamError(f"LINE push failed: {e}")

    @staticmethod
    def send_message(line_user_id: str, text: str) -> None:
        LineService._post_message(PUSH_URL, {"to": line_user_id, "messages": [{"type": "text", "text": text}]})

    @staticmethod
    def reply_message(reply_token: str, text: str) -> None:
        LineService._post_message(REPLY_URL, {"replyToken": reply_token, "messages": [{"type": "text", "text": text}]})

    @staticmethod
    def save_connection(db: Session, user_id: int, profile: Dict[str, Any], tokens: Dict[str, Any]) -> LineConnection:
        line_user_id = profile.get("userId")
        if not line_user_id:
            raise UpstreamError("LINE profile has no userId")

        connection = db.query(LineConnection).filter(LineConnection.line_user_id == line_user_id).first()
        if not connection:
            connection = LineConnection(line_user_id=line_user_id)
            db.add(connection)

        # A LINE account links to one user; re-linking moves it
        connection.user_id = user_id
        connection.line_display_name = profile.get("displayName")
        connection.line_picture_url = profile.get("pictureUrl")
        connection.access_token = tokens.get("access_token")
        connection.refresh_token = tokens.get("refresh_token")
        connection.is_active = True
        connection.connected_at = datetime.now(timezone.utc)
        connection.last_used_at = datetime.now(timezone.utc)

        db.commit()
        db.refresh(connection)
        logger.info("LINE account %s linked to user %s", line_user_id, user_id)
        return connection

    @staticmethod
    def link_account(db: Session, code: str, state: str) -> LineConnection:
        user_id = LineService.verify_state(LineService.parse_state(state))

        tokens = LineService.exchange_code_for_token(code)
        profile = LineService.get_profile(tokens.get("access_token"))
        return LineService.save_connection(db, user_id, profile, tokens)

    @staticmethod
    def get_connections(db: Session, user_id: int) -> List[LineConnection]:
        return (
            db.query(LineConnection)
            .filter(LineConnection.user_id == user_id, LineConnection.is_active == True)
            .order_by(LineConnection.connected_at.desc())
            .all()
        )

    @staticmethod
    def disconnect(db: Session, user_id: int, line_user_id: Optional[str] = None) -> int:
        query = db.query(LineConnection).filter(
            LineConnection.user_id == user_id,
            LineConnection.is_active == True
        )
        if line_user_id:
            query = query.filter(LineConnection.line_user_id == line_user_id)

        count = query.update({LineConnection.is_active: False}, synchronize_session=False)
        db.commit()
        return count

    @staticmethod
    def send_test_message(db: Session, user_id: int, text: Optional[str] = None) -> int:
        connections = LineService.get_connections(db, user_id)
        if not connections:
            raise ValidationError("User has not connected a LINE account")

        for connection in connections:
            LineService.send_message(connection.line_user_id, text or TEST_MESSAGE_TEXT)
        return len(connections)

    @staticmethod
    def list_notifications(db: Session, user_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        query = db.query(LineNotification).filter(LineNotification.user_id == user_id)
        total = query.count()
        rows = (
            query.order_by(LineNotification.sent_at.desc(), LineNotification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        items = []
        for row in rows:
            appointment = row.appointment
            items.append({
                "id": row.id,
                "appointment_id": row.appointment_id,
                "notification_type": row.notification_type,
                "message": row.message,
                "status": row.status,
                "error_message": row.error_message,
                "sent_at": row.sent_at.isoformat() if row.sent_at else None,
                "hospital": appointment.hospital if appointment else None,
                "appointment_date": appointment.appointment_date.isoformat() if appointment else None,
                "appointment_time": appointment.appointment_time if appointment else None,
            })
        return {"notifications": items, "total": total, "page": page, "limit": limit}

    @staticmethod
    def send_appointment_notification(user_id: int, appointment_id: int, kind: str, session_factory) -> Dict[str, Any]:
        """
        Push a status notification to every active LINE identity of the user.

        Runs after the status change has committed, in its own session. Each
        push attempt leaves one LineNotification row. Never raises.
        """
        result = {"delivered": False, "attempts": 0, "sent": 0}
        db = session_factory()
        try:
            connections = LineService.get_connections(db, user_id)
            if not connections:
                logger.info("User %s has no LINE connection; skipping notification", user_id)
                return result

            appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
            if not appointment:
                raise NotFoundError(f"Appointment {appointment_id} not found")
            message = render_notification(kind, appointment)

            for connection in connections:
                audit = LineNotification(
                    user_id=user_id,
                    appointment_id=appointment_id,
                    line_connection_id=connection.id,
                    notification_type=f"appointment_{kind}",
                    message=message,
                )
                try:
                    LineService.send_message(connection.line_user_id, message)
                    audit.status = "sent"
                    connection.last_used_at = datetime.now(timezone.utc)
                    result["sent"] += 1
                except Exception as e:
                    logger.error("LINE notification to %s failed: %s", connection.line_user_id, e)
                    audit.status = "failed"
                    audit.error_message = str(e)
                db.add(audit)
                result["attempts"] += 1

            db.commit()
            result["delivered"] = result["sent"] > 0
        except Exception as e:
            logger.exception("Error sending appointment notification for appointment %s", appointment_id)
            db.rollback()
            result["error"] = str(e)
        finally:
            db.close()
        return result

    @staticmethod
    def verify_signature(body: bytes, signature: Optional[str]) -> bool:
        secret = config.LINE_MESSAGING_CHANNEL_SECRET
        if not secret:
            return True
        if not signature:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, signature)

    @staticmethod
    def handle_events(events: List[Dict[str, Any]]) -> int:
        replied = 0
        for event in events or []:
            message = event.get("message") or {}
            if event.get("type") != "message" or message.get("type") != "text":
                logger.debug("Unhandled LINE event type: %s", event.get("type"))
                continue

            source_user = (event.get("source") or {}).get("userId")
            if not source_user:
                logger.warning("LINE message event without source.userId")
                continue

            try:
                if event.get("replyToken"):
                    LineService.reply_message(event["replyToken"], AUTO_REPLY_TEXT)
                else:
                    LineService.send_message(source_user, AUTO_REPLY_TEXT)
                replied += 1
            except UpstreamError as e:
                logger.error("Error sending LINE auto-reply: %s", e)
        return replied
