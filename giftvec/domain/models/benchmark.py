from datetime import datetime, timezone
from typing import List
from pydantic import BaseModel, Field

class BenchmarkResult(BaseModel):
    operation: str
    dataset_size: int
    iterations: int
    avg_latency_ms: float = 0.0
    p50_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    throughput_ops_per_sec: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class IndexStatistics(BaseModel):
    total_products: int = 0
    products_with_embedding: int = 0
    index_type: str = "atlas-hnsw"
    default_search_effort: int = 0

    @property
    def coverage_percent(self) -> float:
        if self.total_products <= 0:
            return 0.0
        return self.products_with_embedding / self.total_products * 100

class EffortTuningPoint(BaseModel):
    search_effort: int
    avg_latency_ms: float
    recall: float

class BenchmarkSuiteResult(BaseModel):
    suite_name: str
    start_time: datetime
    end_time: datetime
    total_duration_ms: float
    results: List[BenchmarkResult]
    index_stats: IndexStatistics
    tuning: List[EffortTuningPoint] = Field(default_factory=list)
    recommendations: List[str]
