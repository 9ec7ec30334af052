import logging
import uuid

from fastapi import UploadFile
from sqlalchemy.orm import Session

from app.core.errors import ForbiddenError, NotFoundError, ValidationError
from app.models.media_album import MediaAlbum
from app.models.media_item import MediaItem
from app.models.user import User
from app.storage import delete_file, safe_filename, save_media_original

logger = logging.getLogger(__name__)


def new_public_id() -> str:
    return uuid.uuid4().hex


def create_album(db: Session, owner: User, titol: str, descripcio: str | None = None, credit_cost: int = 0) -> MediaAlbum:
    titol = (titol or "").strip()
    if not titol:
        raise ValidationError("title is required", field="titol")
    if credit_cost < 0:
        raise ValidationError("credit cost cannot be negative", field="credit_cost")

    album = MediaAlbum(
        public_id=new_public_id(),
        owner_user_id=owner.id,
        titol=titol,
        descripcio=(descripcio or "").strip() or None,
        credit_cost=credit_cost,
    )
    db.add(album)
    db.commit()
    db.refresh(album)
    return album


def get_album(db: Session, public_id: str) -> MediaAlbum:
    album = db.query(MediaAlbum).filter(MediaAlbum.public_id == public_id).first()
    if album is None:
        raise NotFoundError("album not found")
    return album


def upload_item(
    db: Session,
    user: User,
    album: MediaAlbum,
    upload: UploadFile,
    titol: str | None = None,
    credit_cost: int = 0,
    difficulty: int = 0,
) -> MediaItem:
    if album.owner_user_id != user.id and not user.is_admin:
        raise ForbiddenError("not allowed")
    if credit_cost < 0:
        raise ValidationError("credit cost cannot be negative", field="credit_cost")

    public_id = new_public_id()
    path, size = save_media_original(album.public_id, public_id, upload)

    item = MediaItem(
        public_id=public_id,
        album_id=album.id,
        titol=(titol or "").strip() or None,
        original_filename=safe_filename(upload.filename, "original"),
        storage_path=path,
        mime_type=(upload.content_type or "").strip().lower(),
        size_bytes=size,
        credit_cost=credit_cost,
        difficulty=max(0, min(100, difficulty)),
    )
    db.add(item)
    try:
        db.commit()
    except Exception:
        db.rollback()
        delete_file(path)
        raise
    db.refresh(item)
    logger.info("media: item %s stored in album %s (%d bytes)", public_id, album.public_id, size)
    return item
