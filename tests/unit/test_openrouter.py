import json

import httpx
import pytest

from photofusion.engines.openrouter import PromptExpander

BASE = "https://openrouter.ai/api/v1"
CHAT_URL = f"{BASE}/chat/completions"


def _completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


@pytest.mark.asyncio
async def test_disabled_without_api_key(http_client, upstream):
    expander = PromptExpander(http_client, api_key=None, base_url=BASE)

    assert not expander.enabled
    assert await expander.expand("sunny beach") == "sunny beach"
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_expand_returns_llm_answer(http_client, upstream):
    upstream.add("POST", CHAT_URL, _completion('  "A deserted sandy beach at golden hour"  '))
    expander = PromptExpander(http_client, api_key="or-test", base_url=BASE, model="some/model")

    assert await expander.expand("sunny beach") == "A deserted sandy beach at golden hour"

    request = upstream.requests[0]
    assert request.headers["Authorization"] == "Bearer or-test"
    body = json.loads(request.content)
    assert body["model"] == "some/model"
    assert body["messages"][-1] == {"role": "user", "content": "sunny beach"}


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, text="overloaded"),
    httpx.Response(200, json={"choices": []}),
    httpx.Response(200, text="not json"),
    httpx.Response(200, json={"choices": [{"message": {"content": None}}]}),
    httpx.Response(200, json={"choices": [{"message": {"content": [{"type": "text", "text": "x"}]}}]}),
])
async def test_expand_falls_back_to_original_prompt(http_client, upstream, response):
    upstream.add("POST", CHAT_URL, response)
    expander = PromptExpander(http_client, api_key="or-test", base_url=BASE)

    assert await expander.expand("sunny beach") == "sunny beach"


@pytest.mark.asyncio
async def test_expand_falls_back_on_empty_answer(http_client, upstream):
    upstream.add("POST", CHAT_URL, _completion("   "))
    expander = PromptExpander(http_client, api_key="or-test", base_url=BASE)

    assert await expander.expand("sunny beach") == "sunny beach"


@pytest.mark.asyncio
async def test_expand_falls_back_on_network_error(http_client, upstream):
    upstream.add("POST", CHAT_URL, httpx.ConnectError("unreachable"))
    expander = PromptExpander(http_client, api_key="or-test", base_url=BASE)

    assert await expander.expand("sunny beach") == "sunny beach"
