from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime


class ReasonItem(BaseModel):
    key: str
    score: int
    weight: int


class Reason(BaseModel):
    total: int
    items: List[ReasonItem] = []


class MatchOut(BaseModel):
    id: int
    persona_id: int
    persona_name: str
    arbre_id: int
    target_type: str
    target_id: int
    target_meta: str
    score: float
    score_pct: int
    status: str
    reason: Reason
    updated_at: Optional[datetime] = None


class DecisionRequest(BaseModel):
    decision: str


class BulkDecisionRequest(BaseModel):
    ids: List[int]
    decision: str
