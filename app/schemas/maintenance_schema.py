from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class MaintenanceWindowIn(BaseModel):
    title: Optional[str] = None
    message: Optional[str] = None
    severity: str = "info"
    cta_label: Optional[str] = None
    cta_url: Optional[str] = None
    is_enabled: bool = True
    dismissible: bool = True
    starts_at: datetime
    ends_at: datetime


class MaintenanceWindowOut(MaintenanceWindowIn):
    id: int

    model_config = ConfigDict(from_attributes=True)


class BannerOut(BaseModel):
    id: int
    title: str
    message: str
    severity: str
    cta_label: str
    cta_url: str
    dismissible: bool
    state: str
    starts_at: str
    ends_at: str
