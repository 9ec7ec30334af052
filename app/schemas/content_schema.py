from pydantic import BaseModel, ConfigDict
from typing import Optional, Any
from datetime import datetime


# --------------------------------------------------
# DRAFT INPUT
# --------------------------------------------------
class DraftCreate(BaseModel):
    force_new: bool = False


class DraftUpdate(BaseModel):
    """
    Fields that do not apply to a content type are ignored.
    data_json accepts either a JSON string or an object.
    """
    lock_version: int
    titol: Optional[str] = None
    resum: Optional[str] = None
    cos_text: Optional[str] = None
    tags_json: Optional[str] = None
    any_inici: Optional[int] = None
    any_fi: Optional[int] = None
    data_display: Optional[str] = None
    fonts_json: Optional[str] = None
    data_json: Optional[Any] = None
    tipus: Optional[str] = None
    descripcio: Optional[str] = None
    data_inici: Optional[str] = None
    data_fi: Optional[str] = None
    precisio: Optional[str] = None
    fonts: Optional[str] = None


class ModerationRequest(BaseModel):
    notes: Optional[str] = None


class MapCreate(BaseModel):
    nom: str


# --------------------------------------------------
# OUTPUT
# --------------------------------------------------
class VersionOut(BaseModel):
    id: int
    version: int
    status: str
    lock_version: int
    titol: Optional[str] = None
    resum: Optional[str] = None
    cos_text: Optional[str] = None
    tags_json: Optional[str] = None
    any_inici: Optional[int] = None
    any_fi: Optional[int] = None
    data_display: Optional[str] = None
    fonts_json: Optional[str] = None
    data_json: Optional[str] = None
    tipus: Optional[str] = None
    descripcio: Optional[str] = None
    data_inici: Optional[str] = None
    data_fi: Optional[str] = None
    precisio: Optional[str] = None
    fonts: Optional[str] = None
    created_by: Optional[int] = None
    moderated_by: Optional[int] = None
    moderated_at: Optional[datetime] = None
    moderation_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ParentOut(BaseModel):
    id: int
    municipi_id: int
    nom: Optional[str] = None
    current: Optional[VersionOut] = None
