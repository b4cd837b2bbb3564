from __future__ import annotations
from typing import Optional, Protocol
from app.llm.types import VisionRequest, VisionResponse


class ProviderError(Exception):
    """Non-success answer from a vision provider.

    status_code is None for network failures; retry_after carries the provider's
    Retry-After hint in seconds when it sent one.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, retry_after: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class VisionProvider(Protocol):
    model: str

    async def analyze(self, req: VisionRequest) -> VisionResponse:
        ...


class ProviderRegistry:
    _providers: dict[str, VisionProvider] = {}

    @classmethod
    def register(cls, name: str, provider: VisionProvider) -> None:
        cls._providers[name] = provider

    @classmethod
    def get(cls, name: str) -> VisionProvider:
        if name not in cls._providers:
            raise ValueError(f"Unknown provider: {name}")
        return cls._providers[name]


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        seconds = int(float(value))
    except ValueError:
        return None
    return seconds if seconds > 0 else None
