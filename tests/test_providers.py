"""Tests for the provider backends, using fake HTTP sessions and GenAI clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
import requests

from hybrid_retrieval.config import EmbeddingSettings
from hybrid_retrieval.errors import (
    EmbeddingTimeout,
    MissingCredential,
    ProviderError,
    ProviderHttpError,
)
from hybrid_retrieval.providers import (
    GeminiBackend,
    OpenAIBackend,
    OpenRouterBackend,
    available_providers,
    create_backend,
    recommended_models,
)


# ---------------------------------------------------------------------------
# Mock helpers
# ---------------------------------------------------------------------------


class _FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


class _FakeSession:
    def __init__(
        self,
        response: _FakeResponse | None = None,
        error: Exception | None = None,
    ) -> None:
        self.response = response or _FakeResponse()
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, *, json: Any, headers: dict[str, str], timeout: Any) -> _FakeResponse:
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def _openai_body(*indexed: tuple[int, list[float]], tokens: int | None = 7) -> dict[str, Any]:
    body: dict[str, Any] = {
        "data": [{"index": index, "embedding": vector} for index, vector in indexed]
    }
    if tokens is not None:
        body["usage"] = {"total_tokens": tokens}
    return body


@dataclass
class _FakeEmbedding:
    values: list[float]


@dataclass
class _FakeEmbedResult:
    embeddings: list[_FakeEmbedding]


class _FakeModels:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def embed_content(self, *, model: str, contents: list[str], config: dict) -> _FakeEmbedResult:
        self.calls.append({"model": model, "contents": contents, "config": config})
        dim = config["output_dimensionality"]
        return _FakeEmbedResult(
            embeddings=[_FakeEmbedding(values=[float(i)] * dim) for i in range(len(contents))]
        )


class _FakeGenAIClient:
    def __init__(self) -> None:
        self.models = _FakeModels()


# ---------------------------------------------------------------------------
# OpenAI-compatible backends
# ---------------------------------------------------------------------------


def test_openai_orders_vectors_by_index() -> None:
    session = _FakeSession(_FakeResponse(body=_openai_body((1, [0.0, 1.0]), (0, [1.0, 0.0]))))
    backend = OpenAIBackend(EmbeddingSettings(api_key="sk-test"), session=session)

    batch = backend.embed(["first", "second"])

    assert batch.vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert batch.total_tokens == 7


def test_openai_request_shape() -> None:
    session = _FakeSession(_FakeResponse(body=_openai_body((0, [0.5]))))
    settings = EmbeddingSettings(
        api_key="sk-test", model_name="text-embedding-3-small", request_dimensions=256
    )
    OpenAIBackend(settings, session=session).embed(["hello"])

    call = session.calls[0]
    assert call["url"] == "https://api.openai.com/v1/embeddings"
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["json"] == {
        "input": ["hello"],
        "model": "text-embedding-3-small",
        "encoding_format": "float",
        "dimensions": 256,
    }


def test_openrouter_sends_attribution_headers_without_dimensions() -> None:
    session = _FakeSession(_FakeResponse(body=_openai_body((0, [0.5]), tokens=None)))
    settings = EmbeddingSettings(provider="openrouter", api_key="or-test", request_dimensions=256)

    batch = OpenRouterBackend(settings, session=session).embed(["hello"])

    call = session.calls[0]
    assert call["url"].startswith("https://openrouter.ai/")
    assert "HTTP-Referer" in call["headers"]
    assert "X-Title" in call["headers"]
    assert "dimensions" not in call["json"]
    assert batch.total_tokens is None


def test_non_success_status_raises_http_error() -> None:
    session = _FakeSession(_FakeResponse(status_code=401, text="invalid api key"))
    backend = OpenAIBackend(EmbeddingSettings(api_key="bad"), session=session)

    with pytest.raises(ProviderHttpError) as excinfo:
        backend.embed(["text"])

    assert excinfo.value.status_code == 401
    assert excinfo.value.body == "invalid api key"


def test_missing_index_is_a_provider_error() -> None:
    body = {"data": [{"embedding": [0.1, 0.2]}]}
    backend = OpenAIBackend(
        EmbeddingSettings(api_key="sk"), session=_FakeSession(_FakeResponse(body=body))
    )
    with pytest.raises(ProviderError):
        backend.embed(["text"])


def test_wrong_embedding_count_is_a_provider_error() -> None:
    body = _openai_body((0, [0.1]))
    backend = OpenAIBackend(
        EmbeddingSettings(api_key="sk"), session=_FakeSession(_FakeResponse(body=body))
    )
    with pytest.raises(ProviderError):
        backend.embed(["one", "two"])


def test_missing_api_key_fails_before_request() -> None:
    session = _FakeSession()
    backend = OpenRouterBackend(EmbeddingSettings(provider="openrouter"), session=session)

    with pytest.raises(MissingCredential) as excinfo:
        backend.embed(["text"])

    assert excinfo.value.env_var == "OPENROUTER_API_KEY"
    assert session.calls == []


def test_transport_timeout_maps_to_embedding_timeout() -> None:
    session = _FakeSession(error=requests.Timeout("read timed out"))
    backend = OpenAIBackend(EmbeddingSettings(api_key="sk"), session=session)

    with pytest.raises(EmbeddingTimeout):
        backend.embed(["text"])


def test_connection_error_maps_to_provider_error() -> None:
    session = _FakeSession(error=requests.ConnectionError("refused"))
    backend = OpenAIBackend(EmbeddingSettings(api_key="sk"), session=session)

    with pytest.raises(ProviderError) as excinfo:
        backend.embed(["text"])
    assert not isinstance(excinfo.value, ProviderHttpError)


# ---------------------------------------------------------------------------
# Gemini backend
# ---------------------------------------------------------------------------


def test_gemini_uses_output_dimensionality() -> None:
    client = _FakeGenAIClient()
    settings = EmbeddingSettings(provider="gemini", api_key="g", dimension=8)
    backend = GeminiBackend(settings, client=client)

    batch = backend.embed(["a1", "b2", "c3"])

    assert len(batch.vectors) == 3
    assert all(len(vector) == 8 for vector in batch.vectors)
    call = client.models.calls[0]
    assert call["model"] == "gemini-embedding-001"
    assert call["config"]["task_type"] == "RETRIEVAL_DOCUMENT"
    assert call["config"]["output_dimensionality"] == 8


def test_gemini_embeds_queries_with_query_task_type() -> None:
    client = _FakeGenAIClient()
    settings = EmbeddingSettings(provider="gemini", api_key="g", dimension=8)
    backend = GeminiBackend(settings, client=client)

    backend.embed(["what is the purchase price"], query=True)

    assert client.models.calls[0]["config"]["task_type"] == "RETRIEVAL_QUERY"


def test_gemini_without_key_or_client_raises_missing_credential() -> None:
    backend = GeminiBackend(EmbeddingSettings(provider="gemini"))
    with pytest.raises(MissingCredential) as excinfo:
        backend.embed(["text"])
    assert excinfo.value.env_var == "GOOGLE_API_KEY"


# ---------------------------------------------------------------------------
# Catalogue and dispatch
# ---------------------------------------------------------------------------


def test_create_backend_selects_variant() -> None:
    assert isinstance(create_backend(EmbeddingSettings(provider="openai")), OpenAIBackend)
    assert isinstance(
        create_backend(EmbeddingSettings(provider="openrouter")), OpenRouterBackend
    )
    gemini = create_backend(EmbeddingSettings(provider="gemini"), client=_FakeGenAIClient())
    assert isinstance(gemini, GeminiBackend)


def test_provider_catalogue() -> None:
    assert available_providers() == ["openai", "openrouter", "gemini"]
    names = [model["name"] for model in recommended_models("openai")]
    assert "text-embedding-3-small" in names
    assert recommended_models("unknown") == []
