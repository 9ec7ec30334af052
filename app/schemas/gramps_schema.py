from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime


# --------------------------------------------------
# CONNECT
# --------------------------------------------------
class GrampsConnectRequest(BaseModel):
    base_url: str
    username: Optional[str] = None
    token: str
    arbre_id: Optional[int] = None
    tree_name: Optional[str] = None


# --------------------------------------------------
# OUTPUT
# --------------------------------------------------
class GrampsLogOut(BaseModel):
    id: int
    status: str
    message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GrampsConnectionOut(BaseModel):
    id: int
    arbre_id: int
    base_url: str
    username: Optional[str] = None
    status: str
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    logs: List[GrampsLogOut] = []
