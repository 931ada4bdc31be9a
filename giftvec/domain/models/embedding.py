from pydantic import BaseModel, Field
from typing import List
from datetime import datetime, timezone

class EmbeddingResult(BaseModel):
    embedding: List[float]
    model: str
    tokens_used: int = 0
    model_config = {"frozen": True}

class BatchEmbeddingResult(BaseModel):
    """Embeddings in input order plus the token total of every provider call."""
    embeddings: List[List[float]]
    model: str
    tokens_used: int = 0
    model_config = {"frozen": True}

class EmbeddingCost(BaseModel):
    tokens_used: int
    estimated_cost: float
    model: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class ProviderEmbedding(BaseModel):
    index: int
    embedding: List[float]

class ProviderResponse(BaseModel):
    """Raw provider reply; items may arrive in any index order."""
    data: List[ProviderEmbedding]
    total_tokens: int = 0
