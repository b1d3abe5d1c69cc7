"""Request building, response parsing and failure handling for provider adapters."""

from __future__ import annotations

import httpx
import pytest

from app.domain.models import CustomServiceConfig, ImageOptions, NormalizedMessage
from app.providers.anthropic import AnthropicAdapter
from app.providers.custom import CustomAdapter
from app.providers.google import GoogleAdapter
from app.providers.openai import OpenAIAdapter
from app.providers.stability import StabilityAdapter
from app.services.exceptions import CapabilityNotSupported, ProviderNotConfigured, UpstreamError


def _conversation() -> list[NormalizedMessage]:
    return [
        NormalizedMessage(role="system", content="Be brief."),
        NormalizedMessage(role="user", content="Hi"),
        NormalizedMessage(role="assistant", content="Hello!"),
        NormalizedMessage(role="user", content="How are you?"),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "adapter_cls, api_key",
    [
        (OpenAIAdapter, "not-a-key"),
        (AnthropicAdapter, "sk-openai-style"),
        (GoogleAdapter, "sk-wrong"),
        (StabilityAdapter, ""),
    ],
)
async def test_misconfigured_adapter_never_calls_upstream(adapter_cls, api_key, http_client):
    adapter = adapter_cls(api_key, "https://example.test", "", http_client=http_client)

    with pytest.raises(ProviderNotConfigured):
        await adapter.send([NormalizedMessage(role="user", content="hi")])
    with pytest.raises(ProviderNotConfigured):
        await adapter.generate_image("a cat")
    assert http_client.calls == []


@pytest.mark.asyncio
async def test_capability_errors_do_not_call_upstream(http_client):
    stability = StabilityAdapter("sk-stab", "https://stability.test", "", http_client=http_client)
    anthropic = AnthropicAdapter("sk-ant-key", "https://anthropic.test", "", http_client=http_client)

    with pytest.raises(CapabilityNotSupported):
        await stability.send([NormalizedMessage(role="user", content="hi")])
    with pytest.raises(CapabilityNotSupported):
        await anthropic.generate_image("a cat")
    assert http_client.calls == []


@pytest.mark.asyncio
async def test_openai_chat_request_and_usage(http_client):
    http_client.payload = {
        "model": "gpt-4-0613",
        "choices": [{"message": {"role": "assistant", "content": "Fine, thanks."}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16},
    }
    adapter = OpenAIAdapter("sk-key", "https://openai.test/v1/", "gpt-4", http_client=http_client)

    response = await adapter.send(_conversation())

    call = http_client.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://openai.test/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer sk-key"
    assert call["json"]["model"] == "gpt-4"
    assert call["json"]["messages"][0] == {"role": "system", "content": "Be brief."}
    assert call["json"]["temperature"] == 0.7
    assert call["json"]["max_tokens"] == 2000
    assert response.text == "Fine, thanks."
    assert response.model_id == "gpt-4-0613"
    assert response.usage.total_tokens == 16


@pytest.mark.asyncio
async def test_openai_falls_back_to_requested_model(http_client):
    http_client.payload = {"choices": [{"message": {"content": "ok"}}]}
    adapter = OpenAIAdapter("sk-key", "https://openai.test/v1", "gpt-3.5-turbo", http_client=http_client)

    response = await adapter.send([NormalizedMessage(role="user", content="hi")])

    assert response.model_id == "gpt-3.5-turbo"
    assert response.usage is None


@pytest.mark.asyncio
async def test_openai_image_generation(http_client):
    http_client.payload = {"data": [{"url": "https://img.test/1.png"}, {"b64_json": "QUJD"}]}
    adapter = OpenAIAdapter("sk-key", "https://openai.test/v1", "dall-e-2", http_client=http_client)

    result = await adapter.generate_image("a cat", ImageOptions(count=2, size="512x512"))

    call = http_client.calls[0]
    assert call["url"] == "https://openai.test/v1/images/generations"
    assert call["json"] == {
        "model": "dall-e-2",
        "prompt": "a cat",
        "n": 2,
        "size": "512x512",
        "quality": "standard",
    }
    assert result.images == ["https://img.test/1.png", "data:image/png;base64,QUJD"]
    assert result.model_id == "dall-e-2"


@pytest.mark.asyncio
async def test_anthropic_lifts_system_prompt(http_client):
    http_client.payload = {
        "model": "claude-3-haiku-20240307",
        "content": [{"type": "text", "text": "Doing "}, {"type": "text", "text": "well."}],
        "usage": {"input_tokens": 20, "output_tokens": 3},
    }
    adapter = AnthropicAdapter(
        "sk-ant-key",
        "https://anthropic.test",
        "claude-3-haiku-20240307",
        http_client=http_client,
        api_version="2023-06-01",
    )

    response = await adapter.send(_conversation())

    call = http_client.calls[0]
    assert call["url"] == "https://anthropic.test/v1/messages"
    assert call["headers"]["x-api-key"] == "sk-ant-key"
    assert call["headers"]["anthropic-version"] == "2023-06-01"
    assert call["json"]["system"] == "Be brief."
    assert [m["role"] for m in call["json"]["messages"]] == ["user", "assistant", "user"]
    assert response.text == "Doing well."
    assert response.usage.prompt_tokens == 20
    assert response.usage.completion_tokens == 3
    assert response.usage.total_tokens == 23


@pytest.mark.asyncio
async def test_google_chat_uses_query_key_and_model_role(http_client):
    http_client.payload = {
        "candidates": [{"content": {"parts": [{"text": "Great"}, {"text": "!"}]}}],
        "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2, "totalTokenCount": 7},
    }
    adapter = GoogleAdapter("AIza-key", "https://google.test", "gemini-pro", http_client=http_client)

    response = await adapter.send(_conversation())

    call = http_client.calls[0]
    assert call["url"] == "https://google.test/v1beta/models/gemini-pro:generateContent"
    assert call["params"] == {"key": "AIza-key"}
    assert [c["role"] for c in call["json"]["contents"]] == ["user", "model", "user"]
    assert call["json"]["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
    assert call["json"]["generationConfig"]["maxOutputTokens"] == 2000
    assert response.text == "Great!"
    assert response.model_id == "gemini-pro"
    assert response.usage.total_tokens == 7


@pytest.mark.asyncio
async def test_google_image_reads_inline_data(http_client):
    http_client.payload = {
        "candidates": [
            {"content": {"parts": [{"inlineData": {"mimeType": "image/jpeg", "data": "AAA"}}]}}
        ]
    }
    adapter = GoogleAdapter("AIza-key", "https://google.test", "gemini-pro", http_client=http_client)

    result = await adapter.generate_image("a cat", ImageOptions(size="1024x576"))

    call = http_client.calls[0]
    assert call["url"].endswith("/models/imagegeneration:generateContent")
    assert call["json"]["generationConfig"]["aspectRatio"] == "16:9"
    assert result.images == ["data:image/jpeg;base64,AAA"]


@pytest.mark.asyncio
async def test_stability_text_to_image(http_client):
    http_client.payload = {"artifacts": [{"base64": "Zm9v"}, {"finishReason": "ERROR"}]}
    adapter = StabilityAdapter(
        "sk-stab", "https://stability.test", "stable-diffusion-xl", http_client=http_client
    )

    result = await adapter.generate_image(
        "a castle", ImageOptions(count=1, negative_prompt="blurry", steps=20, seed=-1)
    )

    call = http_client.calls[0]
    assert call["url"] == (
        "https://stability.test/v1/generation/stable-diffusion-xl-1024-v1-0/text-to-image"
    )
    assert call["headers"]["Authorization"] == "Bearer sk-stab"
    assert call["json"]["text_prompts"] == [
        {"text": "a castle", "weight": 1},
        {"text": "blurry", "weight": -1},
    ]
    assert call["json"]["seed"] == 0
    assert call["json"]["steps"] == 20
    assert result.images == ["data:image/png;base64,Zm9v"]


@pytest.mark.asyncio
async def test_http_error_is_wrapped_with_detail(http_client):
    http_client.status_code = 429
    http_client.payload = {"error": {"message": "Rate limit reached"}}
    adapter = OpenAIAdapter("sk-key", "https://openai.test/v1", "gpt-4", http_client=http_client)

    with pytest.raises(UpstreamError) as excinfo:
        await adapter.send([NormalizedMessage(role="user", content="hi")])

    assert excinfo.value.status_code == 429
    assert excinfo.value.provider == "openai"
    assert str(excinfo.value) == "OpenAI API error: Rate limit reached"
    assert len(http_client.calls) == 1


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(http_client):
    http_client.error = httpx.ConnectError(
        "connection refused", request=httpx.Request("POST", "https://anthropic.test/v1/messages")
    )
    adapter = AnthropicAdapter("sk-ant-key", "https://anthropic.test", "", http_client=http_client)

    with pytest.raises(UpstreamError) as excinfo:
        await adapter.send([NormalizedMessage(role="user", content="hi")])

    assert excinfo.value.status_code is None
    assert "connection refused" in str(excinfo.value)


@pytest.mark.asyncio
async def test_malformed_body_is_wrapped(http_client):
    http_client.payload = "<html>gateway timeout</html>"
    adapter = GoogleAdapter("AIza-key", "https://google.test", "gemini-pro", http_client=http_client)

    with pytest.raises(UpstreamError, match="malformed response body"):
        await adapter.send([NormalizedMessage(role="user", content="hi")])


@pytest.mark.asyncio
async def test_non_numeric_usage_counts_as_zero(http_client):
    http_client.payload = {
        "choices": [{"message": {"content": "ok"}}],
        "usage": {"prompt_tokens": "n/a", "completion_tokens": 4.0, "total_tokens": None},
    }
    adapter = OpenAIAdapter("sk-key", "https://openai.test/v1", "gpt-4", http_client=http_client)

    response = await adapter.send([NormalizedMessage(role="user", content="hi")])

    assert response.text == "ok"
    assert response.usage.prompt_tokens == 0
    assert response.usage.completion_tokens == 4
    assert response.usage.total_tokens == 4


@pytest.mark.asyncio
async def test_wrongly_shaped_collections_parse_as_empty(http_client):
    openai = OpenAIAdapter("sk-key", "https://openai.test/v1", "dall-e-3", http_client=http_client)
    google = GoogleAdapter("AIza-key", "https://google.test", "gemini-pro", http_client=http_client)
    stability = StabilityAdapter("sk-stab", "https://stability.test", "", http_client=http_client)

    http_client.payload = {"data": {"url": "https://img.test/1.png"}}
    assert (await openai.generate_image("a cat")).images == []

    http_client.payload = {"candidates": "none", "usageMetadata": {"promptTokenCount": "3"}}
    response = await google.send([NormalizedMessage(role="user", content="hi")])
    assert response.text == ""
    assert response.usage.prompt_tokens == 3
    assert (await google.generate_image("a cat")).images == []

    http_client.payload = {"artifacts": "Zm9v"}
    assert (await stability.generate_image("a cat")).images == []


@pytest.mark.asyncio
async def test_parser_failure_is_reported_as_upstream_error(http_client, monkeypatch):
    adapter = AnthropicAdapter("sk-ant-key", "https://anthropic.test", "", http_client=http_client)

    def _broken(data):
        raise TypeError("unexpected shape")

    monkeypatch.setattr(adapter, "parse_chat_response", _broken)

    with pytest.raises(UpstreamError, match="Anthropic API error: unexpected response shape"):
        await adapter.send([NormalizedMessage(role="user", content="hi")])


@pytest.mark.asyncio
async def test_custom_adapter_auth_header_and_user_headers(http_client):
    http_client.payload = {"choices": [{"message": {"content": "pong"}}], "model": "local-llm"}
    config = CustomServiceConfig(
        name="Local",
        endpoint="https://llm.local/v1/chat",
        api_key="secret",
        model="local-llm",
        auth_header_name="X-Api-Key",
        headers={"X-Trace": "1", "Content-Type": "application/vnd.custom+json"},
    )
    adapter = CustomAdapter(config, http_client=http_client)

    response = await adapter.send([NormalizedMessage(role="user", content="ping")])

    headers = http_client.calls[0]["headers"]
    assert headers["X-Api-Key"] == "secret"
    assert "Authorization" not in headers
    assert headers["X-Trace"] == "1"
    assert headers["Content-Type"] == "application/vnd.custom+json"
    assert http_client.calls[0]["json"]["stream"] is False
    assert response.text == "pong"


@pytest.mark.asyncio
async def test_custom_adapter_defaults_to_bearer(http_client):
    http_client.payload = {"choices": [{"message": {"content": "ok"}}]}
    adapter = CustomAdapter(
        CustomServiceConfig(name="Svc", endpoint="https://svc.test", api_key="k"),
        http_client=http_client,
    )

    await adapter.send([NormalizedMessage(role="user", content="hi")])

    assert http_client.calls[0]["headers"]["Authorization"] == "Bearer k"


@pytest.mark.asyncio
async def test_custom_adapter_unknown_formats_use_generic_shape(http_client):
    http_client.payload = {"response": "generic reply", "usage": {"total_tokens": 9}}
    config = CustomServiceConfig(
        name="Odd",
        endpoint="https://odd.test/generate",
        api_key="k",
        model="odd-1",
        request_format="Weird",
        response_format="something-else",
        http_method="post",
    )
    adapter = CustomAdapter(config, http_client=http_client)

    response = await adapter.send([NormalizedMessage(role="user", content="hi")])

    call = http_client.calls[0]
    assert call["method"] == "POST"
    assert call["json"] == {
        "model": "odd-1",
        "messages": [{"role": "user", "content": "hi"}],
        "temperature": 0.7,
        "max_tokens": 2000,
    }
    assert response.text == "generic reply"
    assert response.model_id == "odd-1"
    assert response.usage.total_tokens == 9


@pytest.mark.asyncio
async def test_custom_adapter_speaks_google_and_claude_formats(http_client):
    http_client.payload = {"content": [{"type": "text", "text": "from claude"}]}
    config = CustomServiceConfig(
        name="Proxy",
        endpoint="https://proxy.test",
        api_key="k",
        model="proxy-model",
        request_format="google",
        response_format="claude",
    )
    adapter = CustomAdapter(config, http_client=http_client)

    response = await adapter.send(_conversation())

    body = http_client.calls[0]["json"]
    assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
    assert len(body["contents"]) == 3
    assert response.text == "from claude"
    assert response.model_id == "proxy-model"


@pytest.mark.asyncio
async def test_custom_adapter_requires_key_and_endpoint(http_client):
    adapter = CustomAdapter(CustomServiceConfig(name="Empty", endpoint="https://x.test"), http_client=http_client)

    assert adapter.is_configured() is False
    with pytest.raises(ProviderNotConfigured):
        await adapter.send([NormalizedMessage(role="user", content="hi")])
    with pytest.raises(ProviderNotConfigured):
        await adapter.generate_image("a cat")
    assert http_client.calls == []
