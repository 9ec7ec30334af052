from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime


class ImportOut(BaseModel):
    id: int
    arbre_id: int
    font_id: Optional[int] = None
    import_type: str
    import_mode: str
    status: str
    progress_total: int = 0
    progress_done: int = 0
    error_text: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ImportQueued(BaseModel):
    job: Optional[ImportOut] = None
    notice: str = ""
