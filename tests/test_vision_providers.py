import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from app.llm.anthropic_provider import AnthropicProvider, split_data_url
from app.llm.base import ProviderError, ProviderRegistry, parse_retry_after
from app.llm.local_provider import LocalProvider
from app.llm.openai_provider import OpenAIProvider
from app.llm.parsing import parse_signal_content
from app.llm.types import VisionRequest
from tests.fixtures import signal_payload

REQ = VisionRequest(image_data_url="data:image/jpeg;base64,QUJD", prompt_version="test-v1", max_output_tokens=800)
API_URL = "https://anthropic.test/v1/messages"


def _anthropic(handler) -> AnthropicProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AnthropicProvider(model="claude-test", api_url=API_URL, api_key="sk-test", client=client)


@pytest.mark.asyncio
async def test_anthropic_success_builds_messages_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "claude-test",
                "content": [{"type": "text", "text": json.dumps(signal_payload())}],
                "usage": {"input_tokens": 1200, "output_tokens": 90},
            },
        )

    resp = await _anthropic(handler).analyze(REQ)
    assert parse_signal_content(resp.content).material.family == "cotton"
    assert (resp.tokens_in, resp.tokens_out) == (1200, 90)
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["headers"]["x-api-key"] == "sk-test"
    body = seen["body"]
    assert body["max_tokens"] == 800
    image = body["messages"][0]["content"][0]
    assert image["source"] == {"type": "base64", "media_type": "image/jpeg", "data": "QUJD"}


@pytest.mark.asyncio
async def test_anthropic_429_carries_retry_after():
    provider = _anthropic(lambda request: httpx.Response(429, headers={"retry-after": "12"}, json={}))
    with pytest.raises(ProviderError) as exc:
        await provider.analyze(REQ)
    assert exc.value.rate_limited
    assert exc.value.retry_after == 12


@pytest.mark.asyncio
async def test_anthropic_server_error_and_transport_error():
    with pytest.raises(ProviderError) as exc:
        await _anthropic(lambda request: httpx.Response(529, json={})).analyze(REQ)
    assert exc.value.status_code == 529
    assert not exc.value.rate_limited

    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderError) as exc:
        await _anthropic(boom).analyze(REQ)
    assert exc.value.status_code is None


class _Completions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        usage = SimpleNamespace(prompt_tokens=10, completion_tokens=5)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage, model="gpt-test")


def _openai(completions: _Completions) -> OpenAIProvider:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIProvider(model="gpt-test", client=client)


@pytest.mark.asyncio
async def test_openai_sends_image_url_content():
    completions = _Completions(content="```json\n" + json.dumps(signal_payload()) + "\n```")
    resp = await _openai(completions).analyze(REQ)
    assert parse_signal_content(resp.content).palette.colors == ["navy", "white"]
    assert resp.tokens_in == 10
    user = completions.kwargs["messages"][1]["content"]
    assert user[1]["type"] == "image_url"
    assert user[1]["image_url"]["url"] == REQ.image_data_url
    assert completions.kwargs["max_tokens"] == 800


@pytest.mark.asyncio
async def test_openai_rate_limit_maps_to_provider_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(429, headers={"retry-after": "7"}, request=request)
    err = openai.RateLimitError("slow down", response=response, body=None)
    with pytest.raises(ProviderError) as exc:
        await _openai(_Completions(error=err)).analyze(REQ)
    assert exc.value.rate_limited
    assert exc.value.retry_after == 7


@pytest.mark.asyncio
async def test_openai_connection_error_has_no_status():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    with pytest.raises(ProviderError) as exc:
        await _openai(_Completions(error=openai.APIConnectionError(request=request))).analyze(REQ)
    assert exc.value.status_code is None


@pytest.mark.asyncio
async def test_local_provider_returns_unknown_signal():
    resp = await LocalProvider().analyze(REQ)
    sig = parse_signal_content(resp.content)
    assert sig.aesthetic.primary == "unknown"
    assert sig.palette.colors == ["unknown"]


def test_registry_and_helpers():
    ProviderRegistry.register("local", LocalProvider())
    assert isinstance(ProviderRegistry.get("local"), LocalProvider)
    with pytest.raises(ValueError):
        ProviderRegistry.get("nope")
    assert split_data_url("data:image/png;base64,AAAA") == ("image/png", "AAAA")
    assert parse_retry_after("5") == 5
    assert parse_retry_after("soon") is None
    assert parse_retry_after(None) is None
