# giftvec/domain/services/embedding_svc.py

from __future__ import annotations
from typing import Dict, List, Optional, Sequence
import asyncio
import logging
import time

from openai import AsyncOpenAI, APIConnectionError, APIStatusError, APITimeoutError
from redis.exceptions import RedisError

from giftvec.core.exceptions import (
    InvalidEmbedding,
    ProviderError,
    ProviderRateLimited,
    ProviderServerError,
    ProviderStatusError,
    ProviderUnavailable,
)
from giftvec.domain.models.embedding import (
    BatchEmbeddingResult,
    EmbeddingCost,
    EmbeddingResult,
    ProviderEmbedding,
    ProviderResponse,
)
from giftvec.domain.ports import EmbeddingProvider
from giftvec.domain.repositories.vector_cache_repo import VectorCacheRepo
from giftvec.domain.services.constants import (
    DEFAULT_EMBEDDING_MODEL,
    DESCRIPTION_CHAR_BUDGET,
    MAX_PRODUCT_TAGS,
    MODEL_COSTS_PER_1M,
)
from giftvec.domain.services.vector_codec import validate_embedding

logger = logging.getLogger(__name__)

# ---------- Text builders ----------------------------------------------------

def build_product_text(product) -> str:
    """Searchable representation: title, capped description, category, first tags."""
    parts = [product.title]
    if product.description:
        parts.append(product.description[:DESCRIPTION_CHAR_BUDGET])
    if product.category:
        parts.append(f"Category: {product.category}")
    if product.tags:
        parts.append(f"Tags: {', '.join(product.tags[:MAX_PRODUCT_TAGS])}")
    return ". ".join(parts)

def normalize_query(query: str) -> str:
    return query.strip().lower()

# ---------- Provider adapter -------------------------------------------------

class OpenAIEmbeddingProvider:
    """
    EmbeddingProvider backed by the OpenAI embeddings endpoint.
    SDK retries are disabled; EmbeddingClient owns the retry policy.
    """

    def __init__(self, api_key: str, timeout_s: float = 30):
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)

    async def create_embeddings(self, model: str, inputs: List[str]) -> ProviderResponse:
        try:
            resp = await self.client.embeddings.create(model=model, input=inputs)
        except APIStatusError as e:
            raise ProviderStatusError(e.status_code, str(e)) from e
        except (APIConnectionError, APITimeoutError) as e:
            raise ProviderError(f"OpenAI connection failed: {e}") from e
        return ProviderResponse(
            data=[ProviderEmbedding(index=d.index, embedding=d.embedding) for d in resp.data],
            total_tokens=resp.usage.total_tokens if resp.usage else 0,
        )

# ---------- Client -----------------------------------------------------------

class EmbeddingClient:
    """
    Wraps the embedding provider: chunking, index re-ordering, retry/backoff,
    validation, cost accounting and an optional Redis cache for query vectors.
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider],
        *,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int = 1536,
        max_batch_size: int = 100,
        max_retries: int = 3,
        retry_base_delay_s: float = 1.0,
        query_cache: Optional[VectorCacheRepo] = None,
        query_cache_ttl: int = 24 * 3600,
    ):
        self.provider = provider
        self.model = model
        self.dimensions = dimensions
        self.max_batch_size = max_batch_size
        self.max_retries = max_retries
        self.retry_base_delay_s = retry_base_delay_s
        self.query_cache = query_cache
        self.query_cache_ttl = query_cache_ttl
        if provider is None:
            logger.warning("No embedding provider configured - embedding generation will fail")

    # ----- Public API ------------------------------------------------------

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed one text as-is."""
        provider = self._require_provider()
        t0 = time.perf_counter()
        resp = await self._with_retry(lambda: provider.create_embeddings(self.model, [text]))
        if not resp.data:
            raise ProviderError("Provider returned no embedding")
        vec = resp.data[0].embedding
        self._check(vec)
        logger.debug(
            f"Generated embedding: {len(vec)} dimensions, {resp.total_tokens} tokens, "
            f"{(time.perf_counter() - t0) * 1000:.1f}ms"
        )
        return EmbeddingResult(embedding=vec, model=self.model, tokens_used=resp.total_tokens)

    async def embed_query(self, query: str) -> EmbeddingResult:
        """Trim + lower-case the query, then embed (Redis cache first when configured)."""
        text = normalize_query(query)
        cache_key = self.query_cache.key(text, self.model) if self.query_cache else None
        if cache_key:
            try:
                if vec := await self.query_cache.get(cache_key):
                    logger.debug(f"Query embedding cache hit key={cache_key}")
                    return EmbeddingResult(embedding=vec, model=self.model, tokens_used=0)
            except RedisError as e:
                logger.warning(f"Query embedding cache read failed key={cache_key}: {e}")

        result = await self.embed(text)

        if cache_key:
            try:
                await self.query_cache.set(cache_key, result.embedding, ttl=self.query_cache_ttl)
            except RedisError as e:
                logger.warning(f"Query embedding cache write failed key={cache_key}: {e}")
        return result

    async def embed_product(self, product) -> EmbeddingResult:
        return await self.embed(build_product_text(product))

    async def embed_batch(self, texts: Sequence[str]) -> BatchEmbeddingResult:
        """
        Embed many texts, one provider call per `max_batch_size` chunk.
        Each chunk's items are re-sorted by the provider's index so the output
        order always matches the input order.
        """
        provider = self._require_provider()
        texts = list(texts)
        if not texts:
            return BatchEmbeddingResult(embeddings=[], model=self.model, tokens_used=0)

        embeddings: List[List[float]] = []
        total_tokens = 0
        for start in range(0, len(texts), self.max_batch_size):
            chunk = texts[start:start + self.max_batch_size]
            resp = await self._with_retry(lambda chunk=chunk: provider.create_embeddings(self.model, chunk))
            if len(resp.data) != len(chunk):
                raise ProviderError(f"batch_mismatch expected={len(chunk)} got={len(resp.data)}")
            for item in sorted(resp.data, key=lambda d: d.index):
                embeddings.append(item.embedding)
            total_tokens += resp.total_tokens
            logger.debug(
                f"Batch {start // self.max_batch_size + 1}: {len(chunk)} texts, {resp.total_tokens} tokens"
            )

        logger.info(f"Generated {len(embeddings)} embeddings, {total_tokens} total tokens")
        return BatchEmbeddingResult(embeddings=embeddings, model=self.model, tokens_used=total_tokens)

    def validate(self, embedding, expected_dim: Optional[int] = None) -> bool:
        expected = expected_dim or self.dimensions
        ok = validate_embedding(embedding, expected)
        if not ok:
            size = len(embedding) if hasattr(embedding, "__len__") else "?"
            logger.warning(f"Invalid embedding: {size} dimensions (expected {expected}) or non-finite values")
        return ok

    def cost(self, tokens_used: int, model: Optional[str] = None) -> EmbeddingCost:
        """tokens / 1M * price; unknown models are priced like the default model."""
        model_name = model or self.model
        per_million = MODEL_COSTS_PER_1M.get(model_name, MODEL_COSTS_PER_1M[DEFAULT_EMBEDDING_MODEL])
        return EmbeddingCost(
            tokens_used=tokens_used,
            estimated_cost=tokens_used / 1_000_000 * per_million,
            model=model_name,
        )

    # ----- Internals -------------------------------------------------------

    def _require_provider(self) -> EmbeddingProvider:
        if self.provider is None:
            raise ProviderUnavailable()
        return self.provider

    def _check(self, vec) -> None:
        if not self.validate(vec):
            raise InvalidEmbedding(
                "Provider returned an invalid embedding",
                expected_dim=self.dimensions,
                actual_dim=len(vec) if hasattr(vec, "__len__") else None,
            )

    async def _with_retry(self, operation):
        """
        Retry 429/5xx up to `max_retries` times, sleeping base * 2^attempt.
        Anything else propagates immediately. The sleep is cancellable and a
        cancelled retry is never re-attempted.
        """
        for attempt in range(self.max_retries + 1):
            try:
                return await operation()
            except ProviderStatusError as e:
                if not e.retryable:
                    raise ProviderError(e.message, status_code=e.status_code) from e
                if attempt == self.max_retries:
                    if e.status_code == 429:
                        raise ProviderRateLimited(e.message, attempts=attempt + 1) from e
                    raise ProviderServerError(e.message, status_code=e.status_code, attempts=attempt + 1) from e
                delay = self.retry_base_delay_s * (2 ** attempt)
                logger.warning(
                    f"Provider returned {e.status_code}, retrying in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
