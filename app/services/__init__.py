from .auth_service import AuthService
from .appointment_service import AppointmentService
from .line_service import LineService
from .user_service import UserService
from .profile_service import ProfileService
from .location_service import LocationService
from .report_service import ReportService

__all__ = [
    "AuthService", "AppointmentService", "LineService", "UserService", "ProfileService",
    "LocationService", "ReportService"
]
