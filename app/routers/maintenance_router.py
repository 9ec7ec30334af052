from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from app.database import get_db
from app.auth import require_admin
from app.core.maintenance import banner_cache
from app.models.maintenance_window import MaintenanceWindow
from app.schemas.maintenance_schema import BannerOut, MaintenanceWindowIn, MaintenanceWindowOut

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.get("/banner", response_model=Optional[BannerOut])
def current_banner(db: Session = Depends(get_db)):
    return banner_cache.get(db)


# --------------------------------------------------
# ADMIN
# --------------------------------------------------
def _check_window(payload: MaintenanceWindowIn):
    if payload.ends_at <= payload.starts_at:
        raise HTTPException(status_code=400, detail="ends_at must be after starts_at")


@router.get("/windows", response_model=List[MaintenanceWindowOut])
def list_windows(
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    return db.query(MaintenanceWindow).order_by(MaintenanceWindow.starts_at.desc()).all()


@router.post("/windows", response_model=MaintenanceWindowOut)
def create_window(
    payload: MaintenanceWindowIn,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    _check_window(payload)
    window = MaintenanceWindow(**payload.model_dump(), created_by=admin.id)
    db.add(window)
    db.commit()
    db.refresh(window)
    banner_cache.invalidate()
    return window


@router.put("/windows/{window_id}", response_model=MaintenanceWindowOut)
def update_window(
    window_id: int,
    payload: MaintenanceWindowIn,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    _check_window(payload)
    window = db.query(MaintenanceWindow).filter(MaintenanceWindow.id == window_id).first()
    if not window:
        raise HTTPException(status_code=404, detail="Window not found")
    for key, value in payload.model_dump().items():
        setattr(window, key, value)
    db.commit()
    db.refresh(window)
    banner_cache.invalidate()
    return window


@router.delete("/windows/{window_id}")
def delete_window(
    window_id: int,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    window = db.query(MaintenanceWindow).filter(MaintenanceWindow.id == window_id).first()
    if not window:
        raise HTTPException(status_code=404, detail="Window not found")
    db.delete(window)
    db.commit()
    banner_cache.invalidate()
    return {"message": "Window deleted"}
