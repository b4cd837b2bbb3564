import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.routers import health, scan
from app.llm.base import ProviderRegistry
from app.llm.openai_provider import OpenAIProvider
from app.llm.anthropic_provider import AnthropicProvider
from app.llm.local_provider import LocalProvider
from app.services.container import build_services

logger = logging.getLogger("app.requests")

# Vision providers
ProviderRegistry.register("local", LocalProvider())
ProviderRegistry.register("openai", OpenAIProvider(model=settings.VISION_MODEL))
ProviderRegistry.register(
    "anthropic",
    AnthropicProvider(model=settings.ANTHROPIC_MODEL, api_url=settings.ANTHROPIC_API_URL),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.scan = build_services(settings)
    yield
    if settings.RATE_LIMIT_BACKEND == "redis":
        await app.state.scan.limiter.redis.aclose()
    if settings.QUOTA_BACKEND == "postgres":
        from app.core.db import dispose_engine

        await dispose_engine()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# CORS
origins = settings.cors_origin_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

prefix = settings.API_PREFIX
app.include_router(health.router, prefix=prefix)
app.include_router(scan.router, prefix=prefix)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration_ms = (time.time() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "env": settings.APP_ENV}
