from fastapi import APIRouter, Depends, File, Form, Header, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from typing import List, Optional

from app.database import get_db
from app.auth import get_current_user, require_admin
from app.core import credits, media
from app.core.errors import EspaiError, NotFoundError, to_http
from app.schemas.media_schema import (
    AlbumCreate,
    AlbumOut,
    ConvertRequest,
    GrantOut,
    LedgerEntryOut,
    MediaItemOut,
)

router = APIRouter(prefix="/media", tags=["Media"])


# -----------------------------------------------------
# ALBUMS
# -----------------------------------------------------
@router.post("/albums", response_model=AlbumOut)
def create_album(
    payload: AlbumCreate,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    try:
        return media.create_album(db, admin, payload.titol, payload.descripcio, payload.credit_cost)
    except EspaiError as e:
        raise to_http(e)


@router.get("/albums/{album_id}/items", response_model=List[MediaItemOut])
def list_items(
    album_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        album = media.get_album(db, album_id)
    except EspaiError as e:
        raise to_http(e)
    return album.items


@router.post("/albums/{album_id}/items", response_model=MediaItemOut)
async def upload_item(
    album_id: str,
    file: UploadFile = File(...),
    titol: Optional[str] = Form(None),
    credit_cost: int = Form(0),
    difficulty: int = Form(0),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        album = media.get_album(db, album_id)
        return media.upload_item(db, current_user, album, file, titol, credit_cost, difficulty)
    except EspaiError as e:
        raise to_http(e)


# -----------------------------------------------------
# VIEWING
# -----------------------------------------------------
@router.post("/items/{item_id}/access", response_model=GrantOut)
def request_access(
    item_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        item = credits.get_item(db, item_id)
        grant, created = credits.ensure_access_grant(db, current_user.id, item)
    except EspaiError as e:
        raise to_http(e)
    return {
        "grant_token": grant.grant_token,
        "expires_at": grant.expires_at,
        "credits_spent": grant.credits_spent,
        "created": created,
        "balance": credits.get_balance(db, current_user.id),
    }


@router.get("/items/{item_id}/original")
def download_original(
    item_id: str,
    x_grant_token: str = Header(""),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        item = credits.get_item(db, item_id)
        if credits.item_cost(item) > 0:
            credits.validate_grant(db, x_grant_token, current_user.id, item.id)
        if not item.storage_path:
            raise NotFoundError("file not found")
    except EspaiError as e:
        raise to_http(e)
    return FileResponse(item.storage_path, media_type=item.mime_type, filename=item.original_filename)


@router.post("/items/{item_id}/indexed")
def mark_indexed(
    item_id: str,
    user_id: int,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    try:
        item = credits.get_item(db, item_id)
    except EspaiError as e:
        raise to_http(e)
    return {"points": credits.award_indexing_points(db, user_id, item)}


# -----------------------------------------------------
# CREDITS
# -----------------------------------------------------
@router.get("/credits")
def my_credits(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return {
        "balance": credits.get_balance(db, current_user.id),
        "points": current_user.points_total,
        "entries": [LedgerEntryOut.model_validate(e) for e in credits.list_entries(db, current_user.id)],
    }


@router.post("/credits/convert")
def convert_points(
    payload: ConvertRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    try:
        earned = credits.convert_points(db, current_user.id, payload.points)
    except EspaiError as e:
        raise to_http(e)
    return {
        "credits": earned,
        "balance": credits.get_balance(db, current_user.id),
    }
