import logging
import time
from typing import Any, Optional

from app.llm.base import ProviderError, VisionProvider, parse_retry_after
from app.llm.types import VisionRequest, VisionResponse
from app.llm.prompt_templates import build_system_prompt, build_user_prompt

logger = logging.getLogger("uvicorn.error")


class OpenAIProvider(VisionProvider):
    def __init__(self, model: str = "gpt-4o", client: Optional[Any] = None):
        self.model = model
        self.client = client

    def _client(self):
        if self.client is None:
            from openai import AsyncOpenAI

            # retries are the caller's decision
            self.client = AsyncOpenAI(max_retries=0)
        return self.client

    async def analyze(self, req: VisionRequest) -> VisionResponse:
        import openai

        logger.info("llm:openai request model=%s max_tokens=%s", self.model, req.max_output_tokens)
        start = time.perf_counter()
        try:
            resp = await self._client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": build_system_prompt(req.prompt_version)},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": build_user_prompt()},
                            {"type": "image_url", "image_url": {"url": req.image_data_url, "detail": "high"}},
                        ],
                    },
                ],
                temperature=0.2,
                max_tokens=req.max_output_tokens,
                response_format={"type": "json_object"},
            )
        except openai.APIStatusError as exc:
            retry_after = parse_retry_after(exc.response.headers.get("retry-after"))
            logger.warning("llm:openai status=%s retry_after=%s", exc.status_code, retry_after)
            raise ProviderError(f"openai status {exc.status_code}", status_code=exc.status_code, retry_after=retry_after) from exc
        except openai.APIConnectionError as exc:
            logger.warning("llm:openai connection error: %s", exc.__class__.__name__)
            raise ProviderError("openai connection error") from exc

        latency_ms = int((time.perf_counter() - start) * 1000)
        usage = getattr(resp, "usage", None)
        content = resp.choices[0].message.content if resp.choices else None
        logger.info("llm:openai response latency_ms=%s", latency_ms)
        return VisionResponse(
            content=content or "",
            model=getattr(resp, "model", None) or self.model,
            latency_ms=latency_ms,
            tokens_in=getattr(usage, "prompt_tokens", 0) or 0,
            tokens_out=getattr(usage, "completion_tokens", 0) or 0,
        )
