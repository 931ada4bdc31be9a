from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

class Product(BaseModel):
    product_id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    price: float = 0.0
    tags: List[str] = []
    image_url: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"frozen": True}  # immuable = safe

class SearchResult(BaseModel):
    product_id: str
    title: str
    description: Optional[str] = None
    price: float = 0.0
    category: Optional[str] = None
    similarity: float
    model_config = {"frozen": True} # immuable = safe

class HybridSearchResult(BaseModel):
    product_id: str
    title: str
    description: Optional[str] = None
    price: float = 0.0
    category: Optional[str] = None
    keyword_score: float = 0.0
    semantic_score: float = 0.0
    combined_score: float = 0.0
    model_config = {"frozen": True} # immuable = safe

class EmbeddingStatus(BaseModel):
    total_products: int
    products_with_embedding: int

    @property
    def coverage_percent(self) -> float:
        if self.total_products <= 0:
            return 0.0
        return self.products_with_embedding / self.total_products * 100

class TrendingProduct(BaseModel):
    product: Product
    interaction_count: int
