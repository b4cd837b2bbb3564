from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request):
    scan = getattr(request.app.state, "scan", None)
    if scan is None:
        return {"ok": False, "status": "starting"}
    return {
        "ok": True,
        "status": "ok",
        "provider": scan.provider_name,
        "quota_backend": scan.quota_store.name,
        "rate_limit_backend": scan.limiter.name,
        "cache_entries": len(scan.cache),
    }
