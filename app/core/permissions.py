"""Authorization rules for users and appointments.

Every ``ensure_*`` function raises on violation and every ``can_*`` predicate is
defined in terms of the matching ``ensure_*`` call, so the checks the API
exposes for UI affordances are exactly the ones the mutating operations run.
"""
from fastapi import Depends, HTTPException, status

from app.core.config import ALLOW_PRIVILEGED_EDIT_NON_PENDING
from app.core.exceptions import AppError, ForbiddenError, InvalidStateError
from app.core.security import get_current_user
from app.models.appointment import AppointmentStatus
from app.models.user import Role, User

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.APPROVED, AppointmentStatus.CANCELLED},
    AppointmentStatus.APPROVED: set(),
    AppointmentStatus.CANCELLED: set(),
}


class RoleRequired:
    def __init__(self, *roles: Role):
        self.roles = set(roles)

    async def __call__(self, user: User = Depends(get_current_user)) -> User:
        if actor_role(user) not in self.roles:
            allowed = ", ".join(sorted(r.value for r in self.roles))
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This action requires one of the roles: {allowed}."
            )
        return user


def actor_role(actor) -> Role:
    try:
        return Role(actor.role)
    except ValueError:
        raise ForbiddenError(f"Unknown role: {actor.role}")


def _status_of(appointment) -> AppointmentStatus:
    return AppointmentStatus(appointment.status)


def ensure_can_book_for(actor, target_user_id: int) -> None:
    role = actor_role(actor)
    if role is Role.REGULAR:
        if target_user_id != actor.id:
            raise ForbiddenError("You can only create bookings for yourself")
    elif role is Role.STAFF or role is Role.ADMIN:
        return
    else:
        raise ForbiddenError(f"Unhandled role: {role}")


def ensure_can_view(actor, appointment) -> None:
    role = actor_role(actor)
    if role is Role.REGULAR:
        if appointment.user_id != actor.id:
            raise ForbiddenError("You do not have access to this booking")
    elif role is Role.STAFF or role is Role.ADMIN:
        return
    else:
        raise ForbiddenError(f"Unhandled role: {role}")


def ensure_can_view_location(actor, appointment) -> None:
    # Only the rider and back-office staff see precise pickup coordinates
    ensure_can_view(actor, appointment)


def ensure_can_edit(actor, appointment, allow_privileged_non_pending: bool = None) -> None:
    if allow_privileged_non_pending is None:
        allow_privileged_non_pending = ALLOW_PRIVILEGED_EDIT_NON_PENDING

    role = actor_role(actor)
    is_pending = _status_of(appointment) is AppointmentStatus.PENDING

    if role is Role.REGULAR:
        if not is_pending:
            raise InvalidStateError("Only pending bookings can be edited")
        if appointment.user_id != actor.id:
            raise ForbiddenError("You do not have permission to edit this booking")
    elif role is Role.STAFF or role is Role.ADMIN:
        if not is_pending and not allow_privileged_non_pending:
            raise InvalidStateError("Only pending bookings can be edited")
    else:
        raise ForbiddenError(f"Unhandled role: {role}")


def ensure_can_delete(actor, appointment) -> None:
    if _status_of(appointment) is not AppointmentStatus.PENDING:
        raise InvalidStateError("Only pending bookings can be deleted")
    if appointment.user_id != actor.id:
        raise ForbiddenError("Only the rider who owns this booking can delete it")


def ensure_can_update_status(actor, appointment=None) -> None:
    role = actor_role(actor)
    if role is Role.ADMIN:
        pass
    elif role is Role.STAFF or role is Role.REGULAR:
        raise ForbiddenError("Only administrators can change booking status")
    else:
        raise ForbiddenError(f"Unhandled role: {role}")

    if appointment is not None and not ALLOWED_TRANSITIONS[_status_of(appointment)]:
        raise InvalidStateError(f"Booking is already {appointment.status}")


def ensure_transition(current: AppointmentStatus, new: AppointmentStatus) -> None:
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateError(f"Cannot change status from {current.value} to {new.value}")


def _passes(check, *args) -> bool:
    try:
        check(*args)
    except AppError:
        return False
    return True


def can_edit(actor, appointment) -> bool:
    return _passes(ensure_can_edit, actor, appointment)


def can_delete(actor, appointment) -> bool:
    return _passes(ensure_can_delete, actor, appointment)


def can_view_location(actor, appointment) -> bool:
    return _passes(ensure_can_view_location, actor, appointment)


def can_update_status(actor, appointment=None) -> bool:
    return _passes(ensure_can_update_status, actor, appointment)
