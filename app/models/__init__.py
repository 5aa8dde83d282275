from .base import Base
from .user import User, Role
from .appointment import Appointment, AppointmentStatus
from .otp import OTP, OTPType
from .line_connection import LineConnection
from .line_notification import LineNotification

__all__ = [
    'Base', 'User', 'Role', 'Appointment', 'AppointmentStatus', 'OTP', 'OTPType',
    'LineConnection', 'LineNotification'
]
