import enum

from sqlalchemy import Column, String, Boolean, DateTime, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .base import Base


class Role(str, enum.Enum):
    REGULAR = "user"
    STAFF = "staff"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    role = Column(String(20), nullable=False, default=Role.REGULAR.value)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    appointments = relationship(
        "Appointment",
        foreign_keys="Appointment.user_id",
        back_populates="user",
    )
    line_connections = relationship("LineConnection", back_populates="user")

    @property
    def role_enum(self) -> Role:
        return Role(self.role)
