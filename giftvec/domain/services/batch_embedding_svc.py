# giftvec/domain/services/batch_embedding_svc.py
"""
Bulk (re-)embedding of the catalog.

Batches sit in a shared queue drained by exactly `concurrency` workers; a
worker claims its next batch only after finishing the current one, which
bounds concurrent provider calls. Failures are isolated at two levels: a
failed provider call marks only its batch as failed, and a failed write marks
only that product as failed.
"""
from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, List, Optional, Sequence, Tuple
import asyncio
import logging
import math
import time

from giftvec.core.exceptions import InvalidEmbedding, StorageFailure
from giftvec.domain.models.batch import BatchError, BatchOptions, BatchProgress, BatchResult, CostEstimate
from giftvec.domain.models.product import Product
from giftvec.domain.ports import ProductStore
from giftvec.domain.services.constants import CHARS_PER_TOKEN, COST_SAMPLE_SIZE, MS_PER_ITEM_ESTIMATE
from giftvec.domain.services.embedding_svc import EmbeddingClient, build_product_text

logger = logging.getLogger(__name__)

_QueueItem = Tuple[int, list]


@dataclass
class _JobState:
    """Running counters; only touched from the event loop thread."""
    total_items: int
    total_batches: int
    started: float = field(default_factory=time.perf_counter)
    successful_items: int = 0
    failed_items: int = 0
    tokens_used: int = 0
    errors: List[BatchError] = field(default_factory=list)

    @property
    def processed_items(self) -> int:
        return self.successful_items + self.failed_items


def create_batches(items: Sequence, batch_size: int) -> List[list]:
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def estimate_remaining_ms(processed: int, total: int, elapsed_ms: float) -> float:
    """Remaining items / observed items-per-ms; 0 when there is no throughput yet."""
    items_per_ms = processed / elapsed_ms if elapsed_ms > 0 else 0.0
    if items_per_ms <= 0:
        return 0.0
    return (total - processed) / items_per_ms


class BatchEmbeddingPipeline:

    def __init__(self, embedding_client: EmbeddingClient, products: ProductStore, *, scan_limit: int = 10_000):
        self.embedding_client = embedding_client
        self.products = products
        self.scan_limit = scan_limit

    # ----- Public API ------------------------------------------------------

    async def process_all(self, options: Optional[BatchOptions] = None) -> BatchResult:
        """Embed every active product that has no embedding yet (up to `scan_limit`)."""
        opts = options or BatchOptions()
        products = await self.products.get_products_without_embeddings(self.scan_limit)
        if not products:
            logger.info("No products missing embeddings")
            return BatchResult()

        logger.info(f"Starting batch embedding for {len(products)} products")

        async def load(batch: List[Product]) -> Tuple[List[Product], List[str]]:
            return batch, []

        return await self._run(create_batches(products, opts.batch_size), len(products), load, opts)

    async def process_by_ids(self, product_ids: Sequence[str], options: Optional[BatchOptions] = None) -> BatchResult:
        """Same contract as process_all, for a caller-provided id list."""
        opts = options or BatchOptions()
        ids = list(dict.fromkeys(product_ids))  # preserve order, dedupe
        if not ids:
            return BatchResult()

        async def load(batch_ids: List[str]) -> Tuple[List[Product], List[str]]:
            found = await self.products.get_many_by_product_ids(batch_ids)
            by_id = {p.product_id: p for p in found}
            return [by_id[i] for i in batch_ids if i in by_id], [i for i in batch_ids if i not in by_id]

        return await self._run(create_batches(ids, opts.batch_size), len(ids), load, opts)

    async def estimate_cost(self, product_ids: Sequence[str]) -> CostEstimate:
        """
        Extrapolate tokens from a small sample (~4 chars/token) and duration
        from ~50ms/item. Reads only; never calls the provider.
        """
        if not product_ids:
            return CostEstimate(estimated_tokens=0, estimated_cost=0.0, estimated_duration_ms=0)
        sample_ids = list(product_ids[:COST_SAMPLE_SIZE])
        sample = await self.products.get_many_by_product_ids(sample_ids)
        if not sample:
            avg_tokens = 0.0
        else:
            sample_tokens = sum(math.ceil(len(build_product_text(p)) / CHARS_PER_TOKEN) for p in sample)
            avg_tokens = sample_tokens / len(sample)
        estimated_tokens = math.ceil(avg_tokens * len(product_ids))
        return CostEstimate(
            estimated_tokens=estimated_tokens,
            estimated_cost=self.embedding_client.cost(estimated_tokens).estimated_cost,
            estimated_duration_ms=len(product_ids) * MS_PER_ITEM_ESTIMATE,
        )

    # ----- Internals -------------------------------------------------------

    async def _run(
        self,
        batches: List[list],
        total_items: int,
        load: Callable[[list], Awaitable[Tuple[List[Product], List[str]]]],
        opts: BatchOptions,
    ) -> BatchResult:
        state = _JobState(total_items=total_items, total_batches=len(batches))
        queue: Deque[_QueueItem] = deque(enumerate(batches))
        cancelled = False

        async def worker(worker_id: int) -> None:
            nonlocal cancelled
            while True:
                if opts.cancel_event is not None and opts.cancel_event.is_set():
                    cancelled = True
                    logger.info(f"[batch_embed] worker={worker_id} stopping: cancellation requested")
                    return
                # popleft on an empty deque raises; check-and-pop happens without an await in between
                if not queue:
                    return
                index, batch = queue.popleft()
                await self._process_batch(index, batch, load, state, opts)
                if opts.batch_delay_s > 0:
                    await asyncio.sleep(opts.batch_delay_s)

        await asyncio.gather(*(worker(i) for i in range(max(1, opts.concurrency))))

        duration_ms = (time.perf_counter() - state.started) * 1000
        cost = self.embedding_client.cost(state.tokens_used).estimated_cost
        logger.info(
            f"[batch_embed] done {state.successful_items}/{total_items} successful, "
            f"{state.failed_items} failed, {state.tokens_used} tokens used, {duration_ms:.0f}ms"
        )
        return BatchResult(
            total_items=total_items,
            successful_items=state.successful_items,
            failed_items=state.failed_items,
            tokens_used=state.tokens_used,
            estimated_cost=cost,
            duration_ms=duration_ms,
            errors=state.errors,
            cancelled=cancelled,
        )

    async def _process_batch(self, index: int, batch: list, load, state: _JobState, opts: BatchOptions) -> None:
        batch_number = index + 1
        # ids that already have an outcome; a batch-level failure only reports the rest
        settled: set = set()

        def fail(item_id: str, message: str) -> None:
            settled.add(item_id)
            self._record_failure(state, opts, item_id, message, batch_number)

        try:
            products, missing = await load(batch)
            for item_id in missing:
                fail(item_id, "Product not found")

            if products:
                texts = [build_product_text(p) for p in products]
                response = await self.embedding_client.embed_batch(texts)
                state.tokens_used += response.tokens_used

                outcomes = await asyncio.gather(
                    *(self._store(p.product_id, vec, response.model) for p, vec in zip(products, response.embeddings)),
                    return_exceptions=True,
                )
                for product, outcome in zip(products, outcomes):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    if isinstance(outcome, Exception):
                        fail(product.product_id, str(outcome))
                    else:
                        settled.add(product.product_id)
                        state.successful_items += 1
        except Exception as e:
            logger.error(f"[batch_embed] batch {batch_number} failed: {e}")
            for item in batch:
                item_id = item.product_id if isinstance(item, Product) else item
                if item_id not in settled:
                    fail(item_id, str(e))

        if opts.on_progress is not None:
            elapsed_ms = (time.perf_counter() - state.started) * 1000
            opts.on_progress(
                BatchProgress(
                    total_items=state.total_items,
                    processed_items=state.processed_items,
                    successful_items=state.successful_items,
                    failed_items=state.failed_items,
                    current_batch=batch_number,
                    total_batches=state.total_batches,
                    percent_complete=state.processed_items / state.total_items * 100 if state.total_items else 100.0,
                    estimated_remaining_ms=estimate_remaining_ms(state.processed_items, state.total_items, elapsed_ms),
                    tokens_used=state.tokens_used,
                    estimated_cost=self.embedding_client.cost(state.tokens_used).estimated_cost,
                )
            )

    async def _store(self, product_id: str, vector: List[float], model: str) -> None:
        if not self.embedding_client.validate(vector):
            raise InvalidEmbedding(f"Invalid embedding for {product_id}", expected_dim=self.embedding_client.dimensions)
        await self.products.set_vector(product_id, vector, model=model)

    @staticmethod
    def _record_failure(state: _JobState, opts: BatchOptions, item_id: str, message: str, batch_number: int) -> None:
        err = BatchError(item_id=item_id, error=message or "Unknown error", batch_number=batch_number)
        state.failed_items += 1
        state.errors.append(err)
        logger.error(f"[batch_embed] item={item_id} batch={batch_number} failed: {err.error}")
        if opts.on_error is not None:
            try:
                opts.on_error(err)
            except Exception:
                logger.exception(f"[batch_embed] on_error callback failed for item={item_id}")
