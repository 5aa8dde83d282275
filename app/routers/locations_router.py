from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.location_service import LocationService

router = APIRouter()


@router.get("/provinces")
def get_provinces(db: Session = Depends(get_db)):
    return LocationService.get_provinces(db)

@router.get("/districts/{province}")
def get_districts(province: str, db: Session = Depends(get_db)):
    return LocationService.get_districts(db, province)

@router.get("/subdistricts/{district}")
def get_subdistricts(district: str, db: Session = Depends(get_db)):
    return LocationService.get_subdistricts(db, district)

@router.get("/hospitals")
def get_hospitals(db: Session = Depends(get_db)):
    return LocationService.get_hospitals(db)
