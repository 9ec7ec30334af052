from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


# -----------------------------------------------------
# ALBUMS & ITEMS
# -----------------------------------------------------
class AlbumCreate(BaseModel):
    titol: str
    descripcio: Optional[str] = None
    credit_cost: int = 0


class AlbumOut(BaseModel):
    public_id: str
    titol: str
    descripcio: Optional[str] = None
    credit_cost: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MediaItemOut(BaseModel):
    public_id: str
    titol: Optional[str] = None
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    credit_cost: int
    difficulty: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# -----------------------------------------------------
# CREDITS
# -----------------------------------------------------
class GrantOut(BaseModel):
    grant_token: str
    expires_at: datetime
    credits_spent: int
    created: bool
    balance: int


class ConvertRequest(BaseModel):
    points: int


class LedgerEntryOut(BaseModel):
    id: int
    delta: int
    reason: str
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
