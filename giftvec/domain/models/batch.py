import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional
from pydantic import BaseModel, Field

class BatchError(BaseModel):
    item_id: str
    error: str
    batch_number: int

class BatchProgress(BaseModel):
    total_items: int
    processed_items: int
    successful_items: int
    failed_items: int
    current_batch: int
    total_batches: int
    percent_complete: float
    estimated_remaining_ms: float
    tokens_used: int
    estimated_cost: float

class BatchResult(BaseModel):
    total_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    tokens_used: int = 0
    estimated_cost: float = 0.0
    duration_ms: float = 0.0
    errors: List[BatchError] = Field(default_factory=list)
    cancelled: bool = False

class CostEstimate(BaseModel):
    estimated_tokens: int
    estimated_cost: float
    estimated_duration_ms: float

@dataclass
class BatchOptions:
    """Knobs for a pipeline run. Callbacks are invoked synchronously after each batch."""
    batch_size: int = 100
    concurrency: int = 3
    batch_delay_s: float = 0.1
    on_progress: Optional[Callable[[BatchProgress], None]] = None
    on_error: Optional[Callable[[BatchError], None]] = None
    # Set to stop workers from claiming further batches
    cancel_event: Optional[asyncio.Event] = None
