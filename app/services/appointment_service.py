import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError, ForbiddenError
from app.core.permissions import (
    actor_role,
    can_delete,
    can_edit,
    can_update_status,
    can_view_location,
    ensure_can_book_for,
    ensure_can_delete,
    ensure_can_edit,
    ensure_can_update_status,
    ensure_can_view,
    ensure_transition,
)
from app.models.appointment import Appointment, AppointmentStatus
from app.models.user import User, Role

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "first_name", "last_name", "phone", "province", "district", "subdistrict",
    "hospital", "appointment_date", "appointment_time", "latitude", "longitude",
)
REQUIRED_FIELDS = ("first_name", "phone", "hospital", "appointment_date", "appointment_time")

# Status change -> LINE message kind
NOTIFICATION_KINDS = {
    AppointmentStatus.APPROVED: "approved",
    AppointmentStatus.CANCELLED: "rejected",
}


def _parse_date(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("appointment_date must be YYYY-MM-DD")


def _parse_time(value) -> str:
    try:
        return datetime.strptime(str(value)[:5], "%H:%M").strftime("%H:%M")
    except ValueError:
        raise ValidationError("appointment_time must be HH:MM")


def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if cleaned.get("appointment_date") is not None:
        cleaned["appointment_date"] = _parse_date(cleaned["appointment_date"])
    if cleaned.get("appointment_time") is not None:
        cleaned["appointment_time"] = _parse_time(cleaned["appointment_time"])
    return cleaned


def _require(fields: Dict[str, Any]) -> None:
    missing = [name for name in REQUIRED_FIELDS if fields.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


class AppointmentService:
    @staticmethod
    def get_or_404(db: Session, appointment_id: int, for_update: bool = False) -> Appointment:
        query = db.query(Appointment).filter(Appointment.id == appointment_id)
        if for_update:
            query = query.with_for_update()
        appointment = query.first()
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    @staticmethod
    def _insert(db: Session, actor: User, rider_id: int, fields: Dict[str, Any]) -> Appointment:
        appointment = Appointment(
            user_id=rider_id,
            created_by=actor.id,
            status=AppointmentStatus.PENDING.value,
            **fields
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        logger.info("Appointment %s created for user %s by user %s", appointment.id, rider_id, actor.id)
        return appointment

    @staticmethod
    def create_for_user(db: Session, actor: User, user_id: int, fields: Dict[str, Any]) -> Appointment:
        ensure_can_book_for(actor, user_id)

        data = _clean_fields(fields)
        _require(data)

        if not db.query(User).filter(User.id == user_id).first():
            raise NotFoundError("User not found")

        if actor.id != user_id:
            # Pickup coordinates only come from the rider's own device
            data["latitude"] = None
            data["longitude"] = None

        return AppointmentService._insert(db, actor, user_id, data)

    @staticmethod
    def create_by_staff(db: Session, actor: User, fields: Dict[str, Any]) -> Appointment:
        if actor_role(actor) not in (Role.STAFF, Role.ADMIN):
            raise ForbiddenError("Only staff can create bookings on behalf of users")

        target_user_id = fields.get("user_id")
        if not target_user_id:
            raise ValidationError("Missing target user")

        data = _clean_fields(fields)
        _require(data)

        if not db.query(User).filter(User.id == target_user_id).first():
            raise NotFoundError("User not found")

        data["latitude"] = None
        data["longitude"] = None
        return AppointmentService._insert(db, actor, target_user_id, data)

    @staticmethod
    def edit(db: Session, actor: User, appointment_id: int, fields: Dict[str, Any]) -> Appointment:
        appointment = AppointmentService.get_or_404(db, appointment_id, for_update=True)
        try:
            ensure_can_edit(actor, appointment)

            data = _clean_fields(fields)
            for name in REQUIRED_FIELDS:
                if name in data and data[name] in (None, ""):
                    raise ValidationError(f"{name} cannot be empty")

            if actor_role(actor) is Role.STAFF:
                data["latitude"] = None
                data["longitude"] = None

            for key, value in data.items():
                setattr(appointment, key, value)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(appointment)
        return appointment

    @staticmethod
    def transition(db: Session, actor: User, appointment_id: int, new_status: str) -> Appointment:
        ensure_can_update_status(actor)

        try:
            target = AppointmentStatus(str(new_status).upper())
        except ValueError:
            raise ValidationError(f"Invalid status: {new_status}")

        appointment = AppointmentService.get_or_404(db, appointment_id, for_update=True)
        try:
            ensure_transition(AppointmentStatus(appointment.status), target)
            appointment.status = target.value
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(appointment)
        logger.info("Appointment %s moved to %s by admin %s", appointment.id, target.value, actor.id)
        return appointment

    @staticmethod
    def notification_kind(new_status: str, requested: Optional[str] = None) -> Optional[str]:
        target = AppointmentStatus(str(new_status).upper())
        if target is AppointmentStatus.CANCELLED and requested == "cancelled":
            return "cancelled"
        return NOTIFICATION_KINDS.get(target)

    @staticmethod
    def delete(db: Session, actor: User, appointment_id: int) -> None:
        appointment = AppointmentService.get_or_404(db, appointment_id, for_update=True)
        try:
            ensure_can_delete(actor, appointment)
            db.delete(appointment)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Appointment %s deleted by user %s", appointment_id, actor.id)

    @staticmethod
    def get(db: Session, actor: User, appointment_id: int) -> Appointment:
        appointment = AppointmentService.get_or_404(db, appointment_id)
        ensure_can_view(actor, appointment)
        return appointment

    @staticmethod
    def list_all(
        db: Session,
        actor: User,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        search: Optional[str] = None
    ) -> Dict[str, Any]:
        if actor_role(actor) not in (Role.STAFF, Role.ADMIN):
            raise ForbiddenError("Only staff can list all bookings")

        page = max(page, 1)
        limit = min(max(limit, 1), 100)

        query = db.query(Appointment)
        if status:
            try:
                query = query.filter(Appointment.status == AppointmentStatus(status.upper()).value)
            except ValueError:
                raise ValidationError(f"Invalid status: {status}")
        if search:
            term = f"%{search.strip()}%"
            query = query.filter(or_(
                Appointment.first_name.ilike(term),
                Appointment.last_name.ilike(term),
                Appointment.phone.ilike(term),
                Appointment.hospital.ilike(term)
            ))

        total = query.count()
        items = (
            query.order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit
        }

    @staticmethod
    def list_for_user(db: Session, actor: User, user_id: int) -> List[Appointment]:
        if actor_role(actor) is Role.REGULAR and actor.id != user_id:
            raise ForbiddenError("You can only view your own bookings")
        return (
            db.query(Appointment)
            .filter(Appointment.user_id == user_id)
            .order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc())
            .all()
        )

    @staticmethod
    def permissions(actor: User, appointment: Appointment) -> Dict[str, bool]:
        return {
            "can_edit": can_edit(actor, appointment),
            "can_delete": can_delete(actor, appointment),
            "can_view_location": can_view_location(actor, appointment),
            "can_update_status": can_update_status(actor, appointment),
        }

    @staticmethod
    def serialize(actor: User, appointment: Appointment) -> Dict[str, Any]:
        data = {
            "id": appointment.id,
            "user_id": appointment.user_id,
            "created_by": appointment.created_by,
            "first_name": appointment.first_name,
            "last_name": appointment.last_name,
            "phone": appointment.phone,
            "province": appointment.province,
            "district": appointment.district,
            "subdistrict": appointment.subdistrict,
            "hospital": appointment.hospital,
            "appointment_date": appointment.appointment_date.isoformat() if appointment.appointment_date else None,
            "appointment_time": appointment.appointment_time,
            "status": appointment.status,
            "created_at": appointment.created_at.isoformat() if appointment.created_at else None,
            "updated_at": appointment.updated_at.isoformat() if appointment.updated_at else None,
        }
        if can_view_location(actor, appointment):
            data["latitude"] = appointment.latitude
            data["longitude"] = appointment.longitude
        return data
