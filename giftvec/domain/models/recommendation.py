from typing import List, Literal, Optional
from pydantic import BaseModel, Field

FactorType = Literal[
    "category_match",
    "price_range",
    "similar_products",
    "user_history",
    "trending",
    "context_match",
    "occasion_match",
    "interest_match",
]

class Budget(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None

class RecommendationContext(BaseModel):
    """Who is asking, for whom, and what has been said so far."""
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    query: Optional[str] = None
    occasion: Optional[str] = None
    relationship: Optional[str] = None
    recipient_age: Optional[str] = None
    recipient_gender: Optional[str] = None
    recipient_interests: List[str] = Field(default_factory=list)
    budget: Optional[Budget] = None
    categories: List[str] = Field(default_factory=list)
    exclude_product_ids: List[str] = Field(default_factory=list)
    conversation_history: List[str] = Field(default_factory=list)

class RecommendationOptions(BaseModel):
    limit: int = Field(20, ge=1)
    enable_personalization: bool = True
    enable_diversity: bool = True
    diversity_threshold: float = Field(0.3, ge=0, le=1)
    include_explanations: bool = True
    exploration_factor: float = Field(0.1, ge=0, le=1)

class ExplanationFactor(BaseModel):
    type: FactorType
    description: str
    weight: float

class RecommendationExplanation(BaseModel):
    primary_reason: str = ""
    factors: List[ExplanationFactor] = Field(default_factory=list)
    confidence: float = 0.0

class RecommendationWithExplanation(BaseModel):
    """Scored candidate; mutable while the engine diversifies and explains it."""
    product_id: str
    title: str
    description: Optional[str] = None
    price: float = 0.0
    category: Optional[str] = None
    image_url: Optional[str] = None
    score: float = 0.0
    preference_score: float = 0.0
    context_score: float = 0.0
    diversity_score: float = 0.0
    explanation: RecommendationExplanation = Field(default_factory=RecommendationExplanation)
