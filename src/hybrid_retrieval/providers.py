"""
Embedding provider backends.

Each backend is a blocking callable over one provider API; the embedding
client runs it off the event loop under a hard timeout. The set of backends is
closed and selected from `EmbeddingSettings.provider` at construction time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol

import requests
from google.genai import Client as GenAIClient
from google.genai import errors as genai_errors

from .config import EmbeddingSettings
from .errors import EmbeddingTimeout, MissingCredential, ProviderError, ProviderHttpError

logger = logging.getLogger(__name__)

# (connect, read) seconds for a single HTTP request
_HTTP_TIMEOUT = (5.0, 15.0)


@dataclass(frozen=True)
class EmbeddingBatch:
    """Vectors for one provider request, in request order."""

    vectors: list[list[float]]
    total_tokens: int | None = None


class EmbeddingBackend(Protocol):
    """Capability implemented by every provider variant."""

    name: str

    def embed(self, texts: list[str], *, query: bool = False) -> EmbeddingBatch:
        """Embed *texts* and return vectors in the same order.

        *query* marks search queries, which some providers embed differently
        from the documents they are matched against.
        """


class OpenAICompatibleBackend:
    """Client for the OpenAI `/embeddings` wire format."""

    name: ClassVar[str] = "openai-compatible"
    endpoint: ClassVar[str] = ""
    supports_dimensions: ClassVar[bool] = False

    def __init__(
        self,
        settings: EmbeddingSettings,
        *,
        session: Any | None = None,
    ) -> None:
        self.settings = settings
        self._session = session if session is not None else requests.Session()

    def extra_headers(self) -> dict[str, str]:
        return {}

    def build_payload(self, texts: list[str]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "input": texts,
            "model": self.settings.model_name,
            "encoding_format": "float",
        }
        if self.supports_dimensions and self.settings.request_dimensions is not None:
            payload["dimensions"] = self.settings.request_dimensions
        return payload

    def embed(self, texts: list[str], *, query: bool = False) -> EmbeddingBatch:
        api_key = self.settings.api_key
        if not api_key:
            raise MissingCredential(self.name, self.settings.credential_env_var)

        logger.debug(
            "Requesting %s embeddings for %d texts using model: %s",
            self.name,
            len(texts),
            self.settings.model_name,
        )
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            **self.extra_headers(),
        }
        try:
            response = self._session.post(
                self.endpoint,
                json=self.build_payload(texts),
                headers=headers,
                timeout=_HTTP_TIMEOUT,
            )
        except requests.Timeout as exc:
            raise EmbeddingTimeout(_HTTP_TIMEOUT[1]) from exc
        except requests.RequestException as exc:
            raise ProviderError(f"{self.name} request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise ProviderHttpError(self.name, response.status_code, response.text)

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.name} returned a non-JSON response") from exc

        vectors = self._ordered_vectors(body, expected=len(texts))
        usage = body.get("usage") or {}
        total_tokens = usage.get("total_tokens")
        logger.info(
            "Generated %d %s embeddings (tokens used: %s)",
            len(vectors),
            self.name,
            total_tokens if total_tokens is not None else "n/a",
        )
        return EmbeddingBatch(
            vectors=vectors,
            total_tokens=int(total_tokens) if total_tokens is not None else None,
        )

    def _ordered_vectors(self, body: Any, *, expected: int) -> list[list[float]]:
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            raise ProviderError(f"{self.name} response has no `data` list")

        # Providers may answer out of order; the `index` field is authoritative.
        indexed: list[tuple[int, list[float]]] = []
        for item in data:
            try:
                index = int(item["index"])
                embedding = [float(value) for value in item["embedding"]]
            except (KeyError, TypeError, ValueError) as exc:
                raise ProviderError(
                    f"{self.name} response item is missing `index` or `embedding`"
                ) from exc
            indexed.append((index, embedding))
        indexed.sort(key=lambda pair: pair[0])

        if [index for index, _ in indexed] != list(range(expected)):
            raise ProviderError(
                f"{self.name} returned {len(indexed)} embeddings for {expected} inputs"
            )
        return [embedding for _, embedding in indexed]


class OpenAIBackend(OpenAICompatibleBackend):
    name: ClassVar[str] = "openai"
    endpoint: ClassVar[str] = "https://api.openai.com/v1/embeddings"
    supports_dimensions: ClassVar[bool] = True


class OpenRouterBackend(OpenAICompatibleBackend):
    name: ClassVar[str] = "openrouter"
    endpoint: ClassVar[str] = "https://openrouter.ai/api/v1/embeddings"

    def extra_headers(self) -> dict[str, str]:
        # OpenRouter attributes traffic through these two headers.
        return {
            "HTTP-Referer": "https://github.com/hybrid-retrieval",
            "X-Title": "hybrid-retrieval",
        }


class GeminiBackend:
    """Generate embeddings via Google GenAI."""

    name: ClassVar[str] = "gemini"

    def __init__(
        self,
        settings: EmbeddingSettings,
        *,
        client: Any | None = None,
        task_type: str = "RETRIEVAL_DOCUMENT",
        query_task_type: str = "RETRIEVAL_QUERY",
    ) -> None:
        self.settings = settings
        self.task_type = task_type
        self.query_task_type = query_task_type
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.settings.api_key:
                raise MissingCredential(self.name, self.settings.credential_env_var)
            self._client = GenAIClient(api_key=self.settings.api_key)
        return self._client

    def embed(self, texts: list[str], *, query: bool = False) -> EmbeddingBatch:
        client = self._get_client()
        dimensionality = self.settings.request_dimensions or self.settings.dimension
        try:
            result = client.models.embed_content(
                model=self.settings.model_name,
                contents=texts,
                config={
                    "task_type": self.query_task_type if query else self.task_type,
                    "output_dimensionality": dimensionality,
                },
            )
        except genai_errors.APIError as exc:
            raise ProviderHttpError(self.name, int(exc.code or 0), str(exc.message or exc)) from exc

        # The SDK has no per-item index; embeddings follow `contents` order.
        embeddings = list(result.embeddings or [])
        if len(embeddings) != len(texts):
            raise ProviderError(
                f"{self.name} returned {len(embeddings)} embeddings for {len(texts)} inputs"
            )
        vectors = [[float(value) for value in emb.values] for emb in embeddings]
        logger.info("Generated %d %s embeddings", len(vectors), self.name)
        return EmbeddingBatch(vectors=vectors)


_HTTP_BACKENDS: dict[str, type[OpenAICompatibleBackend]] = {
    "openai": OpenAIBackend,
    "openrouter": OpenRouterBackend,
}

_RECOMMENDED_MODELS: dict[str, list[dict[str, str]]] = {
    "openai": [
        {
            "name": "text-embedding-ada-002",
            "description": "Most capable embedding model",
            "dimension": "1536",
        },
        {
            "name": "text-embedding-3-small",
            "description": "Smaller, faster embedding model",
            "dimension": "1536",
        },
        {
            "name": "text-embedding-3-large",
            "description": "Largest embedding model",
            "dimension": "3072",
        },
    ],
    "openrouter": [
        {
            "name": "text-embedding-ada-002",
            "description": "OpenAI embedding via OpenRouter",
            "dimension": "1536",
        },
    ],
    "gemini": [
        {
            "name": "gemini-embedding-001",
            "description": "Google embedding model with adjustable output size",
            "dimension": "768",
        },
    ],
}


def available_providers() -> list[str]:
    return [*_HTTP_BACKENDS, GeminiBackend.name]


def recommended_models(provider: str) -> list[dict[str, str]]:
    """Return suggested models for *provider* (empty for unknown providers)."""
    return [dict(model) for model in _RECOMMENDED_MODELS.get(provider, [])]


def create_backend(
    settings: EmbeddingSettings,
    *,
    session: Any | None = None,
    client: Any | None = None,
) -> EmbeddingBackend:
    """Instantiate the backend variant named by `settings.provider`."""
    if settings.provider == "gemini":
        return GeminiBackend(settings, client=client)
    return _HTTP_BACKENDS[settings.provider](settings, session=session)
