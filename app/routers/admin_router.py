from datetime import date
from fastapi import APIRouter, Depends, BackgroundTasks, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, Literal

from app.core.database import get_db, get_session_factory
from app.core.permissions import RoleRequired
from app.models.user import User, Role
from app.services.appointment_service import AppointmentService
from app.services.line_service import LineService
from app.services.report_service import ReportService
from app.services.user_service import UserService

router = APIRouter()

admin_only = RoleRequired(Role.ADMIN)

class StatusUpdateRequest(BaseModel):
    status: str
    # Which message a CANCELLED booking sends; rejected unless asked otherwise
    notification: Optional[Literal["rejected", "cancelled"]] = None

class UserCreate(BaseModel):
    name: str
    email: str
    password: str
    role: str = Role.REGULAR.value

class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None

class PasswordSetRequest(BaseModel):
    new_password: str


@router.put("/appointments/{appointment_id}/status")
def update_appointment_status(
    appointment_id: int,
    request: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    current_user: User = Depends(admin_only)
):
    appointment = AppointmentService.transition(db, current_user, appointment_id, request.status)

    kind = AppointmentService.notification_kind(appointment.status, request.notification)
    if kind and appointment.user_id:
        background_tasks.add_task(
            LineService.send_appointment_notification,
            appointment.user_id,
            appointment.id,
            kind,
            session_factory
        )

    return {
        "success": True,
        "message": f"Booking status changed to {appointment.status}",
        "appointment": AppointmentService.serialize(current_user, appointment)
    }

@router.get("/users")
def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
):
    return [UserService.format_user(u) for u in UserService.get_users(db, search=search, role=role)]

@router.post("/users")
def create_user(
    request: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
):
    user = UserService.create_user(request.model_dump(), db)
    return {"success": True, "message": "User created", "user": UserService.format_user(user)}

@router.put("/users/{user_id}")
def update_user(
    user_id: int,
    request: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
):
    user = UserService.update_user(user_id, request.model_dump(exclude_unset=True), db)
    return {"success": True, "message": "User updated", "user": UserService.format_user(user)}

@router.delete("/users/{user_id}")
def deactivate_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
):
    UserService.deactivate_user(user_id, db)
    return {"success": True, "message": "User deactivated"}

@router.put("/users/{user_id}/password")
def set_user_password(
    user_id: int,
    request: PasswordSetRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
):
    UserService.set_password(user_id, request.new_password, db)
    return {"success": True, "message": "Password updated"}

@router.get("/statistics")
def get_statistics(
    period: str = Query("month"),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
):
    return {"success": True, "data": ReportService.get_statistics(db, period)}

@router.get("/reports/pdf")
def download_report(
    period: str = Query("month"),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
):
    pdf = ReportService.generate_report_pdf(db, period)
    filename = f"report_{period}_{date.today().isoformat()}.pdf"
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
