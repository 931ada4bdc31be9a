# giftvec/domain/services/benchmark_svc.py
"""
Latency benchmarks for the vector operations plus a numCandidates sweep.

Percentiles use the nearest-rank-below rule: sorted[min(int(n * p), n - 1)].
Throughput is iterations / total measured seconds. Recommendations come
from a fixed rule table.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence
import logging
import time

import numpy as np

from giftvec.domain.models.benchmark import (
    BenchmarkResult,
    BenchmarkSuiteResult,
    EffortTuningPoint,
    IndexStatistics,
)
from giftvec.domain.ports import ProductStore
from giftvec.domain.repositories.product_search_repo import default_num_candidates
from giftvec.domain.services.constants import DEFAULT_MATCH_COUNT
from giftvec.domain.services.embedding_svc import EmbeddingClient
from giftvec.domain.services.similarity_svc import HybridSearchOptions, SearchOptions, SimilaritySearchService
from giftvec.domain.services.vector_math import random_unit_vector

logger = logging.getLogger(__name__)

SUITE_NAME = "Vector Operations Benchmark"
DEFAULT_EFFORT_VALUES = (10, 20, 40, 80, 100, 200)
GROUND_TRUTH_EFFORT = 10_000
BATCH_BENCH_SIZE = 10
MAX_EMBEDDING_ITERATIONS = 50
MAX_BATCH_ITERATIONS = 10
SAMPLE_PRODUCTS = 10

HYBRID_QUERIES = (
    "birthday gift for mom",
    "christmas present for kids",
    "tech gadget for dad",
    "romantic anniversary gift",
    "outdoor adventure gear",
)
EMBEDDING_TEXTS = (
    "A beautiful handcrafted wooden jewelry box",
    "High-tech wireless noise-canceling headphones",
    "Organic cotton sustainable clothing collection",
    "Vintage leather messenger bag for professionals",
    "Smart fitness tracker with heart rate monitor",
)

# rule table thresholds
SIMILARITY_P95_TARGET_MS = 100
HYBRID_P95_TARGET_MS = 200
EMBEDDING_AVG_TARGET_MS = 500
COVERAGE_TARGET_PERCENT = 90
RECALL_TARGET = 0.95
ALL_CLEAR = "All metrics within acceptable ranges. No immediate optimizations needed."


def calculate_result(operation: str, dataset_size: int, latencies: Sequence[float]) -> BenchmarkResult:
    """Summarize per-call latencies (ms)."""
    n = len(latencies)
    if n == 0:
        return BenchmarkResult(operation=operation, dataset_size=dataset_size, iterations=0)

    ordered = sorted(latencies)

    def pct(p: float) -> float:
        return round(ordered[min(int(n * p), n - 1)], 2)

    total_ms = sum(ordered)
    return BenchmarkResult(
        operation=operation,
        dataset_size=dataset_size,
        iterations=n,
        avg_latency_ms=round(total_ms / n, 2),
        p50_latency_ms=pct(0.50),
        p95_latency_ms=pct(0.95),
        p99_latency_ms=pct(0.99),
        min_latency_ms=round(ordered[0], 2),
        max_latency_ms=round(ordered[-1], 2),
        throughput_ops_per_sec=round(n / (total_ms / 1000), 2) if total_ms > 0 else 0.0,
    )


def generate_recommendations(
    results: Sequence[BenchmarkResult],
    stats: IndexStatistics,
    tuning: Sequence[EffortTuningPoint] = (),
) -> List[str]:
    by_op = {r.operation: r for r in results}
    out: List[str] = []

    sim = by_op.get("similarity_search")
    if sim and sim.p95_latency_ms > SIMILARITY_P95_TARGET_MS:
        out.append(
            f"Similarity search p95 latency ({sim.p95_latency_ms}ms) exceeds target ({SIMILARITY_P95_TARGET_MS}ms). "
            "Consider lowering numCandidates or scaling the search nodes."
        )

    hyb = by_op.get("hybrid_search")
    if hyb and hyb.p95_latency_ms > HYBRID_P95_TARGET_MS:
        out.append(
            f"Hybrid search p95 latency ({hyb.p95_latency_ms}ms) exceeds target ({HYBRID_P95_TARGET_MS}ms). "
            "Consider adding caching for common queries."
        )

    emb = by_op.get("embedding_generation")
    if emb and emb.avg_latency_ms > EMBEDDING_AVG_TARGET_MS:
        out.append(
            f"Embedding generation is slow ({emb.avg_latency_ms}ms avg). "
            "Consider caching embeddings or using a faster model."
        )

    coverage = stats.coverage_percent
    if coverage < COVERAGE_TARGET_PERCENT:
        out.append(
            f"Only {coverage:.1f}% of products have embeddings. "
            "Run embedding backfill to improve search coverage."
        )

    best = next((p for p in sorted(tuning, key=lambda p: p.search_effort) if p.recall >= RECALL_TARGET), None)
    if best is not None:
        out.append(
            f"numCandidates={best.search_effort} reaches recall {best.recall} "
            f"at {best.avg_latency_ms}ms avg; use it as the default search effort."
        )

    return out or [ALL_CLEAR]


class BenchmarkHarness:

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        similarity: SimilaritySearchService,
        products: ProductStore,
        *,
        rng: Optional[np.random.Generator] = None,
    ):
        self.embedding_client = embedding_client
        self.similarity = similarity
        self.products = products
        self.rng = rng or np.random.default_rng()

    async def run_suite(self, iterations: int = 100, *, tune: bool = False) -> BenchmarkSuiteResult:
        start = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        logger.info(f"Starting benchmark suite with {iterations} iterations")

        stats = await self.get_index_statistics()
        results = [
            await self.benchmark_similarity_search(iterations, dataset_size=stats.products_with_embedding),
            await self.benchmark_hybrid_search(iterations, dataset_size=stats.products_with_embedding),
            await self.benchmark_embedding_generation(min(iterations, MAX_EMBEDDING_ITERATIONS)),
            await self.benchmark_batch_embedding(min(iterations, MAX_BATCH_ITERATIONS)),
            await self.benchmark_similar_products(iterations, dataset_size=stats.products_with_embedding),
        ]
        tuning = await self.tune_search_effort() if tune else []

        total_ms = (time.perf_counter() - t0) * 1000
        logger.info(f"Benchmark suite completed in {total_ms:.0f}ms")
        return BenchmarkSuiteResult(
            suite_name=SUITE_NAME,
            start_time=start,
            end_time=datetime.now(timezone.utc),
            total_duration_ms=total_ms,
            results=results,
            index_stats=stats,
            tuning=tuning,
            recommendations=generate_recommendations(results, stats, tuning),
        )

    async def benchmark_similarity_search(self, iterations: int = 100, *, dataset_size: int = 0) -> BenchmarkResult:
        vector = random_unit_vector(self.embedding_client.dimensions, self.rng)
        opts = SearchOptions(threshold=0.5, count=DEFAULT_MATCH_COUNT)
        latencies = await self._time(iterations, lambda i: self.similarity.find_similar(vector, opts))
        return calculate_result("similarity_search", dataset_size, latencies)

    async def benchmark_hybrid_search(self, iterations: int = 100, *, dataset_size: int = 0) -> BenchmarkResult:
        opts = HybridSearchOptions()
        latencies = await self._time(
            iterations,
            lambda i: self.similarity.hybrid_search_by_text(HYBRID_QUERIES[i % len(HYBRID_QUERIES)], opts),
        )
        return calculate_result("hybrid_search", dataset_size, latencies)

    async def benchmark_embedding_generation(self, iterations: int = MAX_EMBEDDING_ITERATIONS) -> BenchmarkResult:
        latencies = await self._time(
            iterations, lambda i: self.embedding_client.embed(EMBEDDING_TEXTS[i % len(EMBEDDING_TEXTS)])
        )
        return calculate_result("embedding_generation", 0, latencies)

    async def benchmark_batch_embedding(self, iterations: int = MAX_BATCH_ITERATIONS) -> BenchmarkResult:
        texts = [f"Test product description {i} with various attributes and features" for i in range(BATCH_BENCH_SIZE)]
        latencies = await self._time(iterations, lambda i: self.embedding_client.embed_batch(texts))
        return calculate_result(f"batch_embedding_{BATCH_BENCH_SIZE}", BATCH_BENCH_SIZE, latencies)

    async def benchmark_similar_products(self, iterations: int = 100, *, dataset_size: int = 0) -> BenchmarkResult:
        ids = await self.products.sample_embedded_product_ids(SAMPLE_PRODUCTS)
        if not ids:
            logger.warning("No embedded products; skipping similar_products benchmark")
            return calculate_result("similar_products", 0, [])
        opts = SearchOptions(count=DEFAULT_MATCH_COUNT)
        latencies = await self._time(
            iterations, lambda i: self.similarity.find_similar_to_product(ids[i % len(ids)], opts)
        )
        return calculate_result("similar_products", dataset_size, latencies)

    async def get_index_statistics(self) -> IndexStatistics:
        status = await self.products.get_embedding_status()
        return IndexStatistics(
            total_products=status.total_products,
            products_with_embedding=status.products_with_embedding,
            default_search_effort=default_num_candidates(DEFAULT_MATCH_COUNT),
        )

    async def tune_search_effort(
        self,
        effort_values: Sequence[int] = DEFAULT_EFFORT_VALUES,
        iterations: int = 20,
        count: int = DEFAULT_MATCH_COUNT,
    ) -> List[EffortTuningPoint]:
        """
        Latency/recall per numCandidates value. Ground truth is the top-k at a
        very high effort; recall = |found & truth| / |truth|.
        """
        query = await self._tuning_query()
        base = SearchOptions(threshold=-1.0, count=count)

        truth = await self.similarity.find_similar(query, base.model_copy(update={"search_effort": GROUND_TRUTH_EFFORT}))
        truth_ids = {r.product_id for r in truth}

        points: List[EffortTuningPoint] = []
        for effort in effort_values:
            opts = base.model_copy(update={"search_effort": effort})
            latencies: List[float] = []
            found_ids: set = set()
            for _ in range(iterations):
                t0 = time.perf_counter()
                results = await self.similarity.find_similar(query, opts)
                latencies.append((time.perf_counter() - t0) * 1000)
                found_ids = {r.product_id for r in results}
            recall = len(found_ids & truth_ids) / len(truth_ids) if truth_ids else 1.0
            point = EffortTuningPoint(
                search_effort=effort,
                avg_latency_ms=round(sum(latencies) / len(latencies), 2) if latencies else 0.0,
                recall=round(recall, 3),
            )
            logger.info(f"[tune] effort={effort} avg={point.avg_latency_ms}ms recall={point.recall}")
            points.append(point)
        return points

    async def _tuning_query(self) -> List[float]:
        # a stored product vector sits inside the populated region of the space
        ids = await self.products.sample_embedded_product_ids(1)
        if ids:
            vec = await self.products.get_vector(ids[0])
            if vec:
                return vec
        return random_unit_vector(self.embedding_client.dimensions, self.rng)

    @staticmethod
    async def _time(iterations: int, call: Callable[[int], Awaitable[object]]) -> List[float]:
        latencies: List[float] = []
        for i in range(iterations):
            t0 = time.perf_counter()
            await call(i)
            latencies.append((time.perf_counter() - t0) * 1000)
        return latencies
