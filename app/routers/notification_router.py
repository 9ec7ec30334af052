from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.auth import get_current_user
from app.core import notifications
from app.schemas.notification_schema import NotificationListOut, PrefsIn, PrefsOut

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/", response_model=NotificationListOut)
def list_notifications(
    status: str = "",
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return {
        "unread": notifications.unread_count(db, current_user.id),
        "items": notifications.list_notifications(db, current_user.id, status),
    }


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    if not notifications.mark_read(db, current_user.id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Marked as read"}


@router.post("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return {"updated": notifications.mark_all_read(db, current_user.id)}


# --------------------------------------------------
# PREFERENCES
# --------------------------------------------------
@router.get("/prefs", response_model=PrefsOut)
def get_prefs(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return notifications.load_prefs(db, current_user.id).as_dict()


@router.put("/prefs", response_model=PrefsOut)
def update_prefs(
    payload: PrefsIn,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    if payload.freq not in notifications.NOTIF_FREQS:
        raise HTTPException(status_code=400, detail="Invalid frequency")
    prefs = notifications.save_prefs(db, current_user.id, payload.freq, payload.types)
    return prefs.as_dict()
