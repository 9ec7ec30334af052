import hashlib
import logging
import os
import re
import time
from pathlib import Path
from typing import BinaryIO, Tuple

from fastapi import UploadFile

from app.config import settings
from app.core.errors import ImportFailedError, ValidationError

logger = logging.getLogger(__name__)

COPY_CHUNK = 64 * 1024

GEDCOM_EXTENSIONS = (".ged", ".gedcom")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


# ==========================================================
# FILENAMES
# ==========================================================
def safe_filename(name: str | None, default: str = "upload") -> str:
    base = os.path.basename((name or "").replace("\\", "/")).strip()
    base = _UNSAFE_CHARS.sub("_", base).strip("._")
    return base or default


def has_gedcom_extension(name: str | None) -> bool:
    return (name or "").strip().lower().endswith(GEDCOM_EXTENSIONS)


# ==========================================================
# STREAM COPY WITH SIZE CAP + CHECKSUM
# ==========================================================
def copy_capped(src: BinaryIO, dest_path: Path, max_bytes: int) -> Tuple[int, str]:
    """
    Streams src into dest_path while hashing it.
    Returns (size, sha256 hex). The partial file is removed on any failure.
    """
    digest = hashlib.sha256()
    size = 0
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(dest_path, "wb") as out:
            while True:
                chunk = src.read(COPY_CHUNK)
                if not chunk:
                    break
                size += len(chunk)
                if max_bytes and size > max_bytes:
                    raise ValidationError(
                        f"file too large (max {max_bytes // (1024 * 1024)} MB)",
                        field="file",
                    )
                digest.update(chunk)
                out.write(chunk)
    except BaseException:
        delete_file(str(dest_path))
        raise
    return size, digest.hexdigest()


# ==========================================================
# GEDCOM
# ==========================================================
def gedcom_path(owner_id: int, filename: str) -> Path:
    stamp = time.time_ns()
    name = safe_filename(filename, "tree.ged")
    if not has_gedcom_extension(name):
        name = name + ".ged"
    return Path(settings.GEDCOM_ROOT) / str(owner_id) / f"{stamp}_{name}"


def save_gedcom(owner_id: int, upload: UploadFile) -> Tuple[str, int, str]:
    if not has_gedcom_extension(upload.filename):
        raise ValidationError("only .ged or .gedcom files are accepted", field="file")
    dest = gedcom_path(owner_id, upload.filename)
    size, checksum = copy_capped(upload.file, dest, settings.GEDCOM_MAX_UPLOAD_MB * 1024 * 1024)
    if size == 0:
        delete_file(str(dest))
        raise ValidationError("file is empty", field="file")
    logger.info("storage: gedcom saved for owner %s (%d bytes)", owner_id, size)
    return str(dest), size, checksum


def open_stored(path: str) -> BinaryIO:
    if not path or not os.path.exists(path):
        raise ImportFailedError("stored file is missing")
    return open(path, "rb")


# ==========================================================
# MEDIA
# ==========================================================
def media_item_dir(album_public_id: str, item_public_id: str) -> Path:
    return Path(settings.MEDIA_ROOT) / album_public_id / item_public_id


def save_media_original(album_public_id: str, item_public_id: str, upload: UploadFile) -> Tuple[str, int]:
    mime = (upload.content_type or "").strip().lower()
    if mime not in settings.MEDIA_ALLOWED_MIME:
        raise ValidationError(f"unsupported file type {mime or 'unknown'}", field="file")
    dest = media_item_dir(album_public_id, item_public_id) / "original" / safe_filename(upload.filename, "original")
    size, _ = copy_capped(upload.file, dest, settings.MEDIA_MAX_UPLOAD_MB * 1024 * 1024)
    if size == 0:
        delete_file(str(dest))
        raise ValidationError("file is empty", field="file")
    return str(dest), size


# ==========================================================
# DELETE FILE
# ==========================================================
def delete_file(path: str):
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("storage: could not delete %s", path, exc_info=True)
