"""Tests for the caching embedding client."""

from __future__ import annotations

import os

import pytest

from hybrid_retrieval.config import EmbeddingSettings
from hybrid_retrieval.embeddings import EmbeddingClient, estimate_tokens, simple_hash
from hybrid_retrieval.errors import (
    EmbeddingTimeout,
    MissingCredential,
    ProviderError,
    ProviderHttpError,
)

LIVE_OPENAI_KEY = os.getenv("OPENAI_API_KEY")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_simple_hash_is_deterministic_and_text_sensitive() -> None:
    assert simple_hash("hello") == simple_hash("hello")
    assert simple_hash("hello") != simple_hash("hellp")
    assert simple_hash("") == 5381


def test_estimate_tokens_rounds_up_bytes_over_four() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_cache_key_includes_model_and_length(embedding_settings, fake_backend) -> None:
    client = EmbeddingClient(embedding_settings, backend=fake_backend)
    key = client.cache_key("héllo")
    model, length, digest = key.split(":")
    assert model == "text-embedding-ada-002"
    assert length == "6"
    assert digest == str(simple_hash("héllo"))


# ---------------------------------------------------------------------------
# get_embeddings
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_second_call_is_served_from_cache(embedding_settings, fake_backend) -> None:
    client = EmbeddingClient(embedding_settings, backend=fake_backend)

    first = await client.get_embedding("purchase price")
    second = await client.get_embedding("purchase price")

    assert first == second
    assert len(fake_backend.calls) == 1
    stats = await client.usage_stats()
    assert stats.cache_hits == 1


@pytest.mark.asyncio
async def test_query_embeddings_are_requested_and_cached_separately(
    embedding_settings, fake_backend
) -> None:
    client = EmbeddingClient(embedding_settings, backend=fake_backend)

    await client.get_embedding("purchase price")
    await client.embed_query("purchase price")
    await client.embed_query("purchase price")

    assert fake_backend.query_flags == [False, True]
    assert await client.cache_size() == 2
    assert client.cache_key("purchase price", query=True).endswith(":query")
    stats = await client.usage_stats()
    assert stats.total_requests == 1
    assert stats.errors == 0


@pytest.mark.asyncio
async def test_partial_hits_preserve_input_order(embedding_settings, fake_backend) -> None:
    client = EmbeddingClient(embedding_settings, backend=fake_backend)
    await client.get_embeddings(["alpha", "beta"])

    vectors = await client.get_embeddings(["gamma", "alpha", "beta", "delta"])

    assert vectors == [
        fake_backend.vector_for("gamma"),
        fake_backend.vector_for("alpha"),
        fake_backend.vector_for("beta"),
        fake_backend.vector_for("delta"),
    ]
    # Only the misses reached the provider on the second call.
    assert fake_backend.calls[-1] == ["gamma", "delta"]
    assert (await client.usage_stats()).cache_hits == 2


@pytest.mark.asyncio
async def test_misses_are_sent_in_batches(backend_factory) -> None:
    backend = backend_factory(dim=4)
    settings = EmbeddingSettings(api_key="k", dimension=4, batch_size=2)
    client = EmbeddingClient(settings, backend=backend)

    vectors = await client.get_embeddings([f"text {i}" for i in range(5)])

    assert len(vectors) == 5
    assert [len(call) for call in backend.calls] == [2, 2, 1]
    assert (await client.usage_stats()).total_requests == 3


@pytest.mark.asyncio
async def test_token_usage_prefers_provider_count(embedding_settings, backend_factory) -> None:
    reported = EmbeddingClient(embedding_settings, backend=backend_factory(total_tokens=42))
    await reported.get_embeddings(["one", "two"])
    assert (await reported.usage_stats()).total_tokens == 42

    estimated = EmbeddingClient(embedding_settings, backend=backend_factory())
    await estimated.get_embeddings(["abcdefgh", "abc"])
    assert (await estimated.usage_stats()).total_tokens == 3


@pytest.mark.asyncio
async def test_empty_input_makes_no_request(embedding_settings, fake_backend) -> None:
    client = EmbeddingClient(embedding_settings, backend=fake_backend)
    assert await client.get_embeddings([]) == []
    assert fake_backend.calls == []


@pytest.mark.asyncio
async def test_slow_provider_raises_embedding_timeout(backend_factory) -> None:
    settings = EmbeddingSettings(api_key="k", dimension=4, timeout_seconds=0.05)
    client = EmbeddingClient(settings, backend=backend_factory(delay=0.5))

    with pytest.raises(EmbeddingTimeout) as excinfo:
        await client.get_embeddings(["slow"])

    assert excinfo.value.timeout_seconds == pytest.approx(0.05)
    stats = await client.usage_stats()
    assert stats.errors == 1
    assert await client.cache_size() == 0


def test_timeout_is_capped() -> None:
    settings = EmbeddingSettings(api_key="k", timeout_seconds=120)
    assert settings.effective_timeout == 20.0


@pytest.mark.asyncio
async def test_provider_error_is_surfaced_unchanged(embedding_settings, backend_factory) -> None:
    error = ProviderHttpError("fake", 429, "rate limited")
    client = EmbeddingClient(embedding_settings, backend=backend_factory(error=error))

    with pytest.raises(ProviderHttpError) as excinfo:
        await client.get_embeddings(["text"])

    assert excinfo.value is error
    assert excinfo.value.status_code == 429
    assert (await client.usage_stats()).errors == 1


@pytest.mark.asyncio
async def test_short_provider_response_is_rejected(embedding_settings, backend_factory) -> None:
    client = EmbeddingClient(embedding_settings, backend=backend_factory(drop_last=True))

    with pytest.raises(ProviderError):
        await client.get_embeddings(["a1", "b2"])
    assert await client.cache_size() == 0


@pytest.mark.asyncio
async def test_missing_credential_fails_fast() -> None:
    client = EmbeddingClient(EmbeddingSettings(provider="openai", api_key=None))

    with pytest.raises(MissingCredential) as excinfo:
        await client.get_embedding("text")

    assert excinfo.value.env_var == "OPENAI_API_KEY"


# ---------------------------------------------------------------------------
# Cache management and helpers
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_clear_cache_forces_new_request(embedding_settings, fake_backend) -> None:
    client = EmbeddingClient(embedding_settings, backend=fake_backend)
    await client.get_embeddings(["a1", "b2"])
    assert await client.cache_size() == 2

    await client.clear_cache()
    assert await client.cache_size() == 0
    await client.get_embedding("a1")
    assert len(fake_backend.calls) == 2


@pytest.mark.asyncio
async def test_embed_chunks_returns_records_keyed_by_chunk(
    embedding_settings, fake_backend, make_chunk
) -> None:
    client = EmbeddingClient(embedding_settings, backend=fake_backend)
    chunks = [make_chunk("doc1", 0, "first"), make_chunk("doc1", 1, "second")]

    records = await client.embed_chunks(chunks)

    assert [record.chunk_id for record in records] == ["doc1:0", "doc1:1"]
    assert records[1].vector == fake_backend.vector_for("second")


@pytest.mark.asyncio
async def test_test_connection_reports_failure_without_raising(caplog) -> None:
    client = EmbeddingClient(EmbeddingSettings(provider="openrouter", api_key=None))

    assert await client.test_connection() is False
    assert "connection test failed" in caplog.text


@pytest.mark.asyncio
async def test_test_connection_succeeds_with_working_backend(
    embedding_settings, fake_backend
) -> None:
    client = EmbeddingClient(embedding_settings, backend=fake_backend)
    assert await client.test_connection() is True


# ---------------------------------------------------------------------------
# Integration test (requires OPENAI_API_KEY)
# ---------------------------------------------------------------------------


@pytest.mark.skipif(not LIVE_OPENAI_KEY, reason="OPENAI_API_KEY not set")
@pytest.mark.asyncio
async def test_live_openai_embedding() -> None:
    client = EmbeddingClient(EmbeddingSettings(provider="openai", api_key=LIVE_OPENAI_KEY))
    vector = await client.get_embedding("Hello, world!")
    assert len(vector) == 1536
