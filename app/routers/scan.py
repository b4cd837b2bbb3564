import base64
import binascii
import re
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.auth.deps import get_current_user_id
from app.core.config import settings
from app.schemas.scan import (
    AnalysisErrorOut,
    AnalyzeIn,
    AnalyzeOut,
    QuotaInfoOut,
    RankAddOnsIn,
    RankAddOnsOut,
)
from app.services.addons.ranker import AddOnColor, AddOnItem, ElevateBullet, rank_add_ons
from app.services.container import ScanServices
from app.services.quota.types import QuotaDecision
from app.services.scan.types import AnalysisError, ScanImage

router = APIRouter(prefix="/scan", tags=["scan"])

_DATA_URL = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")

STATUS_BY_KIND = {
    "bad_request": 400,
    "unauthorized": 401,
    "quota_exceeded": 403,
    "payload_too_large": 413,
    "rate_limited": 429,
    "parse_error": 500,
    "server_error": 500,
    "unknown": 500,
}


def get_services(request: Request) -> ScanServices:
    return request.app.state.scan


def _quota_out(decision: Optional[QuotaDecision]) -> Optional[QuotaInfoOut]:
    if decision is None:
        return None
    data = asdict(decision)
    data.pop("detail", None)
    return QuotaInfoOut(**data)


def _error_response(
    error: AnalysisError,
    operation_type: str,
    *,
    fingerprint: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    quota: Optional[QuotaDecision] = None,
) -> JSONResponse:
    body = AnalyzeOut(
        ok=False,
        fingerprint=fingerprint,
        idempotency_key=idempotency_key,
        quota_info=_quota_out(quota),
        error=AnalysisErrorOut(
            kind=error.kind,
            scope=error.scope,
            message=error.user_message(operation_type),
            retry_after_seconds=error.retry_after_seconds,
        ),
    )
    headers = {}
    if error.kind == "rate_limited" and error.retry_after_seconds:
        headers["Retry-After"] = str(int(error.retry_after_seconds))
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(error.kind, 500),
        content=body.model_dump(mode="json"),
        headers=headers,
    )


def decode_data_url(data_url: str) -> Optional[bytes]:
    match = _DATA_URL.match(data_url)
    if not match:
        return None
    try:
        raw = base64.b64decode(data_url[match.end():], validate=True)
    except (binascii.Error, ValueError):
        return None
    return raw or None


@router.post("/analyze", response_model=AnalyzeOut)
async def analyze_image(
    payload: AnalyzeIn,
    user_id: str = Depends(get_current_user_id),
    services: ScanServices = Depends(get_services),
):
    op = payload.operation_type
    if len(payload.image_data_url) > settings.SCAN_MAX_PAYLOAD_BYTES:
        return _error_response(AnalysisError("payload_too_large"), op, idempotency_key=payload.idempotency_key)
    raw = decode_data_url(payload.image_data_url)
    if raw is None:
        return _error_response(
            AnalysisError("bad_request", detail="invalid_data_url"), op, idempotency_key=payload.idempotency_key
        )

    result = await services.invoker.analyze(
        ScanImage(raw=raw, image_id=payload.image_id),
        user_id,
        operation_type=op,
        idempotency_key=payload.idempotency_key,
    )
    if result.error is not None:
        return _error_response(
            result.error,
            op,
            fingerprint=result.fingerprint,
            idempotency_key=result.idempotency_key,
            quota=result.quota,
        )
    return AnalyzeOut(
        ok=True,
        data=result.signal,
        cached=result.cache_hit,
        fingerprint=result.fingerprint,
        idempotency_key=result.idempotency_key,
        quota_info=_quota_out(result.quota),
    )


@router.post("/add-ons/rank", response_model=RankAddOnsOut)
async def rank_add_on_items(payload: RankAddOnsIn, user_id: str = Depends(get_current_user_id)):
    items = [
        AddOnItem(
            id=it.id,
            category=it.category,
            colors=tuple(AddOnColor(hex=c.hex, name=c.name) for c in it.colors),
            detected_label=it.detected_label,
            user_style_tags=tuple(it.user_style_tags),
        )
        for it in payload.items
    ]
    suggestions = None
    if payload.suggestions is not None:
        suggestions = [ElevateBullet(category=b.category, attributes=tuple(b.attributes)) for b in payload.suggestions]
    by_identity = {id(item): src for item, src in zip(items, payload.items)}
    ranked = rank_add_ons(items, suggestions)
    return RankAddOnsOut(items=[by_identity[id(item)] for item in ranked])
