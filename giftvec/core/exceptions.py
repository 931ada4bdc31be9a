"""
Error taxonomy for the embedding and recommendation core.

Per-item failures inside batch operations are caught and reported by the
caller; everything here propagates out of single-item operations.
"""
from typing import Optional


class GiftVecError(Exception):
    """Base exception for the vector core."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(self.message)


class InvalidEmbedding(GiftVecError):
    """Wrong dimensionality or non-finite values."""

    def __init__(self, message: str, expected_dim: Optional[int] = None, actual_dim: Optional[int] = None):
        super().__init__(message, code="INVALID_EMBEDDING")
        self.expected_dim = expected_dim
        self.actual_dim = actual_dim


class DimensionMismatch(GiftVecError):
    """Two vectors of different length were compared."""

    def __init__(self, left: int, right: int):
        super().__init__(
            f"Embeddings must have the same dimensions (got {left} and {right})",
            code="DIMENSION_MISMATCH",
        )
        self.left = left
        self.right = right


class ProviderUnavailable(GiftVecError):
    """No credentials or client configured for the embedding provider."""

    def __init__(self, message: str = "Embedding provider not configured - check OPENAI_API_KEY"):
        super().__init__(message, code="PROVIDER_UNAVAILABLE")


class ProviderStatusError(GiftVecError):
    """Transport-level failure carrying an HTTP-style status code."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message, code="PROVIDER_STATUS")
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or 500 <= self.status_code < 600


class ProviderError(GiftVecError):
    """Non-retryable provider response."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: str = "PROVIDER_ERROR"):
        super().__init__(message, code=code)
        self.status_code = status_code


class ProviderRateLimited(ProviderError):
    """429 from the provider after retries were exhausted."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message, status_code=429, code="PROVIDER_RATE_LIMITED")
        self.attempts = attempts


class ProviderServerError(ProviderError):
    """5xx from the provider after retries were exhausted."""

    def __init__(self, message: str, status_code: int, attempts: int):
        super().__init__(message, status_code=status_code, code="PROVIDER_SERVER_ERROR")
        self.attempts = attempts


class StorageFailure(GiftVecError):
    """Datastore read or write error."""

    def __init__(self, message: str, entity_id: Optional[str] = None):
        super().__init__(message, code="STORAGE_FAILURE")
        self.entity_id = entity_id
