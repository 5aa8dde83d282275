from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional

from app.core.database import get_db
from app.core.security import get_current_user
from app.core.permissions import RoleRequired
from app.models.user import User, Role
from app.services.appointment_service import AppointmentService

router = APIRouter()

class AppointmentFields(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    province: Optional[str] = None
    district: Optional[str] = None
    subdistrict: Optional[str] = None
    hospital: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

class StaffAppointmentCreate(AppointmentFields):
    user_id: Optional[int] = None


@router.post("/user/{user_id}")
def create_appointment(
    user_id: int,
    request: AppointmentFields,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    appointment = AppointmentService.create_for_user(db, current_user, user_id, request.model_dump(exclude_unset=True))
    return {
        "success": True,
        "message": "Booking created",
        "appointment": AppointmentService.serialize(current_user, appointment)
    }

@router.post("/staff")
def create_appointment_for_user(
    request: StaffAppointmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    appointment = AppointmentService.create_by_staff(db, current_user, request.model_dump(exclude_unset=True))
    return {
        "success": True,
        "message": "Booking created",
        "appointment": AppointmentService.serialize(current_user, appointment)
    }

@router.get("")
def list_appointments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(RoleRequired(Role.STAFF, Role.ADMIN))
):
    result = AppointmentService.list_all(db, current_user, page=page, limit=limit, status=status, search=search)
    result["items"] = [AppointmentService.serialize(current_user, a) for a in result["items"]]
    return result

@router.get("/user/{user_id}")
def list_user_appointments(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    appointments = AppointmentService.list_for_user(db, current_user, user_id)
    return [AppointmentService.serialize(current_user, a) for a in appointments]

@router.get("/{appointment_id}")
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    appointment = AppointmentService.get(db, current_user, appointment_id)
    return AppointmentService.serialize(current_user, appointment)

@router.get("/{appointment_id}/permissions")
def get_appointment_permissions(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    appointment = AppointmentService.get_or_404(db, appointment_id)
    return AppointmentService.permissions(current_user, appointment)

@router.put("/{appointment_id}")
def update_appointment(
    appointment_id: int,
    request: AppointmentFields,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    appointment = AppointmentService.edit(db, current_user, appointment_id, request.model_dump(exclude_unset=True))
    return {
        "success": True,
        "message": "Booking updated",
        "appointment": AppointmentService.serialize(current_user, appointment)
    }

@router.delete("/{appointment_id}")
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    AppointmentService.delete(db, current_user, appointment_id)
    return {"success": True, "message": "Booking deleted"}
