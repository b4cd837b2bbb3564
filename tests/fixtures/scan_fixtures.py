"""
Deterministic stand-ins for the scan pipeline's collaborators.
"""
import asyncio
import io
import json
from typing import Any, Dict, List, Optional

from PIL import Image

from app.llm.base import ProviderError
from app.llm.types import VisionRequest, VisionResponse


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.t = start

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


def signal_payload(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "version": 1,
        "aesthetic": {"primary": "minimalist", "primary_confidence": 0.8, "secondary": "classic", "secondary_confidence": 0.5},
        "formality": {"band": "smart_casual", "confidence": 0.7},
        "statement": {"level": "low", "confidence": 0.6},
        "season": {"heaviness": "mid", "confidence": 0.6},
        "palette": {"colors": ["navy", "white"], "confidence": 0.9},
        "pattern": {"level": "solid", "confidence": 0.9},
        "material": {"family": "cotton", "confidence": 0.5},
    }
    data.update(overrides)
    return data


class FakeProvider:
    """Scripted provider: returns `content`, raises `error`, or sleeps `delay` first."""

    def __init__(self, content: Optional[str] = None, *, error: Optional[Exception] = None, delay: float = 0.0):
        self.model = "fake-vision"
        self.content = json.dumps(signal_payload()) if content is None else content
        self.error = error
        self.delay = delay
        self.calls: List[VisionRequest] = []

    async def analyze(self, req: VisionRequest) -> VisionResponse:
        self.calls.append(req)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return VisionResponse(content=self.content, model=self.model, latency_ms=5)


def provider_status(status_code: int, retry_after: Optional[int] = None) -> ProviderError:
    return ProviderError(f"status {status_code}", status_code=status_code, retry_after=retry_after)


class SizedEncoder:
    """Encoder returning payloads of scripted sizes, one per call."""

    def __init__(self, *sizes: int):
        self.sizes = list(sizes)
        self.calls: List[tuple] = []

    def __call__(self, img, max_side: int, quality: float) -> bytes:
        self.calls.append((max_side, quality))
        size = self.sizes[min(len(self.calls) - 1, len(self.sizes) - 1)]
        return b"\xff" * size


def make_jpeg(width: int = 64, height: int = 48, color=(30, 60, 120)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return buf.getvalue()
