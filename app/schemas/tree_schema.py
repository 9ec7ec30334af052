from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


# --------------------------------------------------
# TREES
# --------------------------------------------------
class TreeCreate(BaseModel):
    nom: str
    visibility: str = "private"


class TreeUpdate(BaseModel):
    nom: Optional[str] = None
    visibility: Optional[str] = None
    status: Optional[str] = None


class TreeOut(BaseModel):
    id: int
    nom: str
    visibility: str
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --------------------------------------------------
# TREE CONTENT
# --------------------------------------------------
class PersonaOut(BaseModel):
    id: int
    arbre_id: int
    external_id: Optional[str] = None
    nom: Optional[str] = None
    cognom1: Optional[str] = None
    cognom2: Optional[str] = None
    nom_complet: Optional[str] = None
    sexe: Optional[str] = None
    data_naixement: Optional[str] = None
    lloc_naixement: Optional[str] = None
    data_defuncio: Optional[str] = None
    lloc_defuncio: Optional[str] = None
    notes: Optional[str] = None
    visibility: str
    status: str

    model_config = ConfigDict(from_attributes=True)


class RelacioOut(BaseModel):
    id: int
    persona_id: int
    related_persona_id: int
    relation_type: str

    model_config = ConfigDict(from_attributes=True)
