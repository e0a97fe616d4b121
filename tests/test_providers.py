"""HTTP providers and the local embedder, exercised through httpx mock transports."""

from __future__ import annotations

import io
import json

import httpx
import numpy as np
import pytest
from PIL import Image

from core.embedders.clip_embedder import ClipEmbedder
from core.embedders.http_embedder import HttpEmbedder
from core.errors import EmbeddingProviderError, LLMProviderError
from core.expansion.llm import ChatCompletionsProvider


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_http_embedder_posts_batch_and_normalizes():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"embeddings": [[3, 4, 0], [0, 0, 2]]})

    embedder = HttpEmbedder("http://embed.local/", api_key="secret", dim=3, client=_client(handler))

    vectors = await embedder.embed_texts(["a", "b"])

    assert seen == {"path": "/embed/text", "auth": "Bearer secret", "body": {"texts": ["a", "b"]}}
    np.testing.assert_allclose(vectors, [[0.6, 0.8, 0], [0, 0, 1]], rtol=1e-6)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"embeddings": [[1, 0]]}),
        httpx.Response(200, json={"unexpected": True}),
    ],
)
async def test_http_embedder_errors(response):
    embedder = HttpEmbedder("http://embed.local", dim=3, client=_client(lambda request: response))

    with pytest.raises(EmbeddingProviderError):
        await embedder.embed_texts(["a"])


@pytest.mark.asyncio
async def test_chat_provider_returns_message_content():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert request.url.path == "/openai/v1/chat/completions"
        assert body["model"] == "llama-3.3-70b-versatile"
        return httpx.Response(200, json={"choices": [{"message": {"content": '["a"]'}}]})

    provider = ChatCompletionsProvider(
        "https://api.groq.com/openai/v1", "key", "llama-3.3-70b-versatile", client=_client(handler)
    )

    assert await provider.generate("prompt") == '["a"]'


@pytest.mark.asyncio
async def test_chat_provider_failures_raise_provider_error():
    provider = ChatCompletionsProvider(
        "https://llm.local", "key", "m", client=_client(lambda request: httpx.Response(429, text="slow down"))
    )

    with pytest.raises(LLMProviderError):
        await provider.generate("prompt")
    with pytest.raises(LLMProviderError):
        await ChatCompletionsProvider("https://llm.local", None, "m").generate("prompt")


@pytest.mark.asyncio
async def test_clip_embedder_is_deterministic_and_unit_length():
    embedder = ClipEmbedder(dim=64)

    first = await embedder.embed_texts(["glossy 3d render", "calm"])
    second = await embedder.embed_text("glossy 3d render")

    np.testing.assert_allclose(first[0], second)
    np.testing.assert_allclose(np.linalg.norm(first, axis=1), [1.0, 1.0], rtol=1e-5)
    assert float(first[0] @ first[1]) < 0.99


@pytest.mark.asyncio
async def test_clip_embedder_images():
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 30)).save(buffer, format="PNG")

    vector = await ClipEmbedder(dim=16).embed_image(buffer.getvalue())

    assert vector.shape == (16,)
    assert np.linalg.norm(vector) == pytest.approx(1.0, rel=1e-5)


@pytest.mark.asyncio
async def test_clip_embedder_rejects_unreadable_images():
    with pytest.raises(EmbeddingProviderError):
        await ClipEmbedder(dim=16).embed_image(b"definitely not a png")
