import asyncio
import json

import httpx
import pytest

from diet_forecast.config import Settings
from diet_forecast.errors import ExternalServiceError
from diet_forecast.llm_client import GenerationClient


def _client(handler):
    settings = Settings(ollama_url="http://ollama.test", ollama_model="gemma3:4b")
    return GenerationClient(settings, transport=httpx.MockTransport(handler))


def test_generate_sends_options_and_returns_text():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"response": '{"ok": true}', "done": True})

    text = asyncio.run(_client(handler).generate("予測して", temperature=0.9, max_tokens=256, context_window=4096))

    assert text == '{"ok": true}'
    assert str(seen[0].url) == "http://ollama.test/api/generate"
    body = json.loads(seen[0].content)
    assert body["model"] == "gemma3:4b"
    assert body["stream"] is False
    assert body["options"] == {"temperature": 0.9, "num_predict": 256, "num_ctx": 4096}


@pytest.mark.parametrize("response", [
    httpx.Response(500, text="model not loaded"),
    httpx.Response(200, text="not json"),
    httpx.Response(200, json={"done": True}),
])
def test_bad_responses_raise(response):
    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(_client(lambda request: response).generate("x"))
    assert exc.value.service == "ollama"


def test_connection_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(_client(handler).generate("x"))
    assert exc.value.status is None
