from typing import List

from sqlalchemy.orm import Session

from app.models.appointment import Appointment


def _distinct(db: Session, column, *criteria) -> List[str]:
    rows = (
        db.query(column)
        .filter(column.isnot(None), column != "", *criteria)
        .distinct()
        .order_by(column)
        .all()
    )
    return [row[0] for row in rows]


class LocationService:
    """Location lookups built from the places riders have already booked."""

    @staticmethod
    def get_provinces(db: Session) -> List[str]:
        return _distinct(db, Appointment.province)

    @staticmethod
    def get_districts(db: Session, province: str) -> List[str]:
        return _distinct(db, Appointment.district, Appointment.province == province)

    @staticmethod
    def get_subdistricts(db: Session, district: str) -> List[str]:
        return _distinct(db, Appointment.subdistrict, Appointment.district == district)

    @staticmethod
    def get_hospitals(db: Session) -> List[str]:
        return _distinct(db, Appointment.hospital)
