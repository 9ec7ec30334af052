from pydantic import BaseModel, ConfigDict, EmailStr
from typing import Optional, List, Any
from datetime import datetime


# --------------------------------------------------
# REQUESTS
# --------------------------------------------------
class GroupCreate(BaseModel):
    nom: str
    descripcio: Optional[str] = None


class InviteRequest(BaseModel):
    email: EmailStr
    role: str = "member"


class RoleChangeRequest(BaseModel):
    role: str


class LinkTreeRequest(BaseModel):
    arbre_id: int


# --------------------------------------------------
# OUTPUT
# --------------------------------------------------
class GroupOut(BaseModel):
    id: int
    nom: str
    descripcio: Optional[str] = None
    owner_user_id: int
    role: str
    member_status: str


class MemberOut(BaseModel):
    user_id: int
    name: str
    email: str = ""
    role: str
    status: str
    joined_at: Optional[datetime] = None


class GroupTreeOut(BaseModel):
    arbre_id: int
    name: str
    owner_id: Optional[int] = None
    owner_name: str
    status: str


class ConflictOut(BaseModel):
    id: int
    arbre_id: Optional[int] = None
    conflict_type: str
    object_id: Optional[int] = None
    status: str
    summary: Optional[str] = None
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ChangeOut(BaseModel):
    id: int
    action: str
    actor_id: Optional[int] = None
    actor_name: str
    object_type: str
    object_id: Optional[int] = None
    payload: Any = None
    created_at: datetime


class GroupDetailOut(BaseModel):
    group: GroupOut
    members: List[MemberOut]
    trees: List[GroupTreeOut]
    conflicts: List[ConflictOut]
