"""
Caller-visible error kinds for the retrieval engine.
"""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for every error raised by this package."""


class EmbeddingError(RetrievalError):
    """An embedding request could not be completed."""


class MissingCredential(EmbeddingError):
    """A provider call was attempted without a configured API key."""

    def __init__(self, provider: str, env_var: str | None = None) -> None:
        self.provider = provider
        self.env_var = env_var
        hint = f" Provide api_key or set {env_var}." if env_var else ""
        super().__init__(f"{provider} API key not configured.{hint}")


class ProviderError(EmbeddingError):
    """The provider could not be reached or returned an unusable response."""


class ProviderHttpError(ProviderError):
    """The provider answered with a non-success HTTP status."""

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} API error ({status_code}): {body}")


class EmbeddingTimeout(EmbeddingError, TimeoutError):
    """The hard timeout around a provider call elapsed."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Embedding generation timed out after {timeout_seconds:g} seconds; "
            "the provider may be slow or unreachable."
        )


class DimensionMismatch(RetrievalError, ValueError):
    """A vector or snapshot does not match the store's configured dimension."""

    def __init__(self, expected: int, actual: int, *, context: str = "Embedding") -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{context} dimension mismatch: expected {expected}, got {actual}"
        )


class LockAcquisitionFailure(RetrievalError):
    """A store lock could not be acquired within its configured timeout."""

    def __init__(self, name: str, timeout_seconds: float) -> None:
        self.name = name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Could not acquire {name} lock within {timeout_seconds:g} seconds"
        )


class PersistenceIOError(RetrievalError):
    """Reading, writing or renaming a snapshot file failed."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{message}: {path}")
