from typing import List, Optional
from pydantic import BaseModel, Field

from app.llm.types import OperationType, StyleSignal


class AnalyzeIn(BaseModel):
    image_data_url: str = Field(..., description="data:image/...;base64,... payload")
    image_id: Optional[str] = Field(default=None, max_length=200, description="Stable client identity for the image")
    idempotency_key: Optional[str] = Field(default=None, max_length=200)
    operation_type: OperationType = "scan"


class QuotaInfoOut(BaseModel):
    allowed: bool
    reason: str
    monthly_used: int
    monthly_limit: int
    monthly_remaining: int
    replayed: bool = False


class AnalysisErrorOut(BaseModel):
    kind: str
    scope: Optional[str] = None
    message: str
    retry_after_seconds: Optional[int] = None


class AnalyzeOut(BaseModel):
    ok: bool
    data: Optional[StyleSignal] = None
    cached: bool = False
    fingerprint: Optional[str] = None
    idempotency_key: Optional[str] = None
    quota_info: Optional[QuotaInfoOut] = None
    error: Optional[AnalysisErrorOut] = None


class AddOnColorIn(BaseModel):
    hex: str
    name: Optional[str] = None


class AddOnItemIn(BaseModel):
    id: str
    category: str
    colors: List[AddOnColorIn] = Field(default_factory=list)
    detected_label: Optional[str] = None
    user_style_tags: List[str] = Field(default_factory=list)


class ElevateBulletIn(BaseModel):
    category: str
    attributes: List[str] = Field(default_factory=list)


class RankAddOnsIn(BaseModel):
    items: List[AddOnItemIn] = Field(default_factory=list)
    suggestions: Optional[List[ElevateBulletIn]] = None


class RankAddOnsOut(BaseModel):
    items: List[AddOnItemIn]
