from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .base import Base


class LineNotification(Base):
    __tablename__ = "line_notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    line_connection_id = Column(Integer, ForeignKey("user_line_connections.id"), nullable=True)
    notification_type = Column(String(50), nullable=False)
    message = Column(Text, nullable=True)
    status = Column(String(20), nullable=False)  # sent, failed
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    appointment = relationship("Appointment")
