from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime


class NotificationOut(BaseModel):
    id: int
    kind: str
    title: Optional[str] = None
    body: Optional[str] = None
    url: Optional[str] = None
    status: str
    object_type: Optional[str] = None
    object_id: Optional[int] = None
    group_id: Optional[int] = None
    tree_id: Optional[int] = None
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationListOut(BaseModel):
    unread: int
    items: List[NotificationOut]


class PrefsIn(BaseModel):
    freq: str = "instant"
    types: List[str] = []


class PrefsOut(BaseModel):
    freq: str
    types: List[str]
    custom_types: bool
