from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

class InteractionType(str, Enum):
    VIEW = "view"
    CLICK = "click"
    ADD_TO_CART = "add_to_cart"
    PURCHASE = "purchase"
    SAVE = "save"
    SEARCH = "search"

class Interaction(BaseModel):
    """Append-only interaction event."""
    user_id: str
    interaction_type: InteractionType
    timestamp: datetime
    product_id: Optional[str] = None
    search_query: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    model_config = {"frozen": True}

class InteractionRecord(BaseModel):
    """An interaction joined with the referenced product's fields."""
    product_id: Optional[str] = None
    interaction_type: str
    created_at: datetime
    category: Optional[str] = None
    price: Optional[float] = None
    embedding: Optional[List[float]] = None

class CategoryScore(BaseModel):
    category: str
    score: float

class PriceRange(BaseModel):
    min: float = 0.0
    max: float = 1000.0
    avg: float = 50.0

class StoredPreference(BaseModel):
    user_id: str
    preference_embedding: Optional[List[float]] = None
    updated_at: Optional[datetime] = None

class UserPreferenceProfile(BaseModel):
    user_id: str
    preference_embedding: Optional[List[float]] = None
    interaction_count: int = 0
    last_updated: datetime
    top_categories: List[CategoryScore] = Field(default_factory=list)
    price_range: PriceRange = Field(default_factory=PriceRange)

    def has_category(self, category: Optional[str]) -> bool:
        return bool(category) and any(c.category == category for c in self.top_categories)

class SimilarUser(BaseModel):
    user_id: str
    similarity: float
