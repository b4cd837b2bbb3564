import logging
import os
import time
from typing import Optional

import httpx

from app.llm.base import ProviderError, VisionProvider, parse_retry_after
from app.llm.types import VisionRequest, VisionResponse
from app.llm.prompt_templates import build_system_prompt, build_user_prompt

logger = logging.getLogger("uvicorn.error")

ANTHROPIC_VERSION = "2023-06-01"


def split_data_url(data_url: str) -> tuple[str, str]:
    """Return (media_type, base64 payload) for a data:...;base64,... URL."""
    header, _, payload = data_url.partition(",")
    media_type = header[len("data:"):].split(";", 1)[0] if header.startswith("data:") else ""
    return media_type or "image/jpeg", payload


class AnthropicProvider(VisionProvider):
    def __init__(
        self,
        model: str = "claude-sonnet-4-5-20250929",
        api_url: str = "https://api.anthropic.com/v1/messages",
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self.api_url = api_url
        self.api_key = api_key if api_key is not None else os.getenv("ANTHROPIC_API_KEY", "")
        self.client = client

    async def analyze(self, req: VisionRequest) -> VisionResponse:
        media_type, data = split_data_url(req.image_data_url)
        body = {
            "model": self.model,
            "max_tokens": req.max_output_tokens,
            "system": build_system_prompt(req.prompt_version),
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}},
                        {"type": "text", "text": build_user_prompt()},
                    ],
                }
            ],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        logger.info("llm:anthropic request model=%s max_tokens=%s", self.model, req.max_output_tokens)
        start = time.perf_counter()
        try:
            if self.client is not None:
                resp = await self.client.post(self.api_url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=None) as client:
                    resp = await client.post(self.api_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("llm:anthropic transport error: %s", exc.__class__.__name__)
            raise ProviderError("anthropic transport error") from exc

        if resp.status_code >= 300:
            retry_after = parse_retry_after(resp.headers.get("retry-after"))
            logger.warning("llm:anthropic status=%s retry_after=%s", resp.status_code, retry_after)
            raise ProviderError(f"anthropic status {resp.status_code}", status_code=resp.status_code, retry_after=retry_after)

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        text = "".join(
            block.get("text", "")
            for block in payload.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = payload.get("usage") or {}
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info("llm:anthropic response latency_ms=%s", latency_ms)
        return VisionResponse(
            content=text,
            model=payload.get("model") or self.model,
            latency_ms=latency_ms,
            tokens_in=usage.get("input_tokens", 0) or 0,
            tokens_out=usage.get("output_tokens", 0) or 0,
        )
