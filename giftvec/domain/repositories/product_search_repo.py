# giftvec/domain/repositories/product_search_repo.py
from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence
import logging
import time

from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from giftvec.core.exceptions import StorageFailure
from giftvec.domain.models.product import HybridSearchResult, SearchResult
from giftvec.domain.repositories.product_repo import EMBEDDING_PATH

logger = logging.getLogger(__name__)

# Atlas reports cosine as (1 + cos) / 2; convert back to [-1, 1].
_COSINE_FROM_SCORE = {"$subtract": [{"$multiply": [2, {"$meta": "vectorSearchScore"}]}, 1]}

_RESULT_FIELDS = {
    "_id": 0,
    "product_id": 1,
    "title": 1,
    "description": 1,
    "price": 1,
    "category": 1,
}


def build_vector_filter(
    category: Optional[str] = None,
    price_min: Optional[float] = None,
    price_max: Optional[float] = None,
) -> Dict[str, Any]:
    """
    $vectorSearch pre-filter. One explicit clause per present filter;
    `category` and `price` must be declared as filter fields on the index.
    """
    clauses: List[Dict[str, Any]] = [{"is_active": {"$eq": True}}]
    if category is not None:
        clauses.append({"category": {"$eq": category}})
    if price_min is not None and price_max is not None:
        clauses.append({"price": {"$gte": price_min, "$lte": price_max}})
    elif price_min is not None:
        clauses.append({"price": {"$gte": price_min}})
    elif price_max is not None:
        clauses.append({"price": {"$lte": price_max}})
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


def default_num_candidates(count: int) -> int:
    return max(200, 10 * count)


def build_vector_search_pipeline(
    vector: Sequence[float],
    *,
    index: str,
    threshold: float,
    count: int,
    category: Optional[str] = None,
    price_min: Optional[float] = None,
    price_max: Optional[float] = None,
    search_effort: Optional[int] = None,
) -> List[Dict[str, Any]]:
    num_candidates = max(search_effort, count) if search_effort else default_num_candidates(count)
    return [
        {
            "$vectorSearch": {
                "index": index,
                "path": EMBEDDING_PATH,
                "queryVector": list(vector),
                "numCandidates": num_candidates,
                "limit": count,
                "filter": build_vector_filter(category, price_min, price_max),
            }
        },
        {"$addFields": {"similarity": _COSINE_FROM_SCORE}},
        {"$match": {"similarity": {"$gt": threshold}}},
        {"$project": {**_RESULT_FIELDS, "similarity": 1}},
    ]


def build_hybrid_pipeline(
    text: str,
    vector: Sequence[float],
    *,
    vector_index: str,
    text_index: str,
    collection: str,
    keyword_weight: float,
    semantic_weight: float,
    count: int,
) -> List[Dict[str, Any]]:
    """
    Keyword ($search) and semantic ($vectorSearch) scores are computed
    independently, merged per product with $unionWith/$group, scaled by their
    weights and summed. Products found by only one side score 0 on the other.
    """
    per_side = count * 2
    return [
        {
            "$vectorSearch": {
                "index": vector_index,
                "path": EMBEDDING_PATH,
                "queryVector": list(vector),
                "numCandidates": default_num_candidates(per_side),
                "limit": per_side,
                "filter": build_vector_filter(),
            }
        },
        {"$addFields": {"semantic_score": _COSINE_FROM_SCORE, "keyword_score": 0.0}},
        {"$project": {**_RESULT_FIELDS, "semantic_score": 1, "keyword_score": 1}},
        {
            "$unionWith": {
                "coll": collection,
                "pipeline": [
                    {
                        "$search": {
                            "index": text_index,
                            "compound": {
                                "must": [{"text": {"query": text, "path": ["title", "description"]}}],
                                "filter": [{"equals": {"path": "is_active", "value": True}}],
                            },
                        }
                    },
                    {"$limit": per_side},
                    {"$addFields": {"keyword_score": {"$meta": "searchScore"}, "semantic_score": 0.0}},
                    {"$project": {**_RESULT_FIELDS, "semantic_score": 1, "keyword_score": 1}},
                ],
            }
        },
        {
            "$group": {
                "_id": "$product_id",
                "title": {"$first": "$title"},
                "description": {"$first": "$description"},
                "price": {"$first": "$price"},
                "category": {"$first": "$category"},
                "keyword_score": {"$max": "$keyword_score"},
                "semantic_score": {"$max": "$semantic_score"},
            }
        },
        {
            "$addFields": {
                "combined_score": {
                    "$add": [
                        {"$multiply": [keyword_weight, "$keyword_score"]},
                        {"$multiply": [semantic_weight, "$semantic_score"]},
                    ]
                }
            }
        },
        {"$sort": {"combined_score": -1}},
        {"$limit": count},
        {
            "$project": {
                "_id": 0,
                "product_id": "$_id",
                "title": 1,
                "description": 1,
                "price": 1,
                "category": 1,
                "keyword_score": 1,
                "semantic_score": 1,
                "combined_score": 1,
            }
        },
    ]


class ProductSearchRepo:
    """
    MongoDB Atlas Search: vector ($vectorSearch) + hybrid keyword/vector ranking.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection_name: str = "products",
        vector_index: str = "products_embedding_index",
        text_index: str = "products_text_index",
    ):
        self.col: AsyncIOMotorCollection = db[collection_name]
        self.collection_name = collection_name
        self.vector_index = vector_index
        self.text_index = text_index

    async def find_similar(
        self,
        vector: Sequence[float],
        *,
        threshold: float,
        count: int,
        category: Optional[str] = None,
        price_min: Optional[float] = None,
        price_max: Optional[float] = None,
        search_effort: Optional[int] = None,
    ) -> List[SearchResult]:
        pipeline = build_vector_search_pipeline(
            vector,
            index=self.vector_index,
            threshold=threshold,
            count=count,
            category=category,
            price_min=price_min,
            price_max=price_max,
            search_effort=search_effort,
        )
        t0 = time.perf_counter()
        try:
            docs = [doc async for doc in self.col.aggregate(pipeline)]
        except PyMongoError as e:
            raise StorageFailure(f"Vector search failed: {e}") from e
        logger.debug(
            "vector_search ok n=%s threshold=%s count=%s effort=%s time=%.3fs",
            len(docs), threshold, count, search_effort, time.perf_counter() - t0,
        )
        return [SearchResult.model_validate(d) for d in docs]

    async def hybrid_search(
        self,
        text: str,
        vector: Sequence[float],
        *,
        keyword_weight: float,
        semantic_weight: float,
        count: int,
    ) -> List[HybridSearchResult]:
        pipeline = build_hybrid_pipeline(
            text,
            vector,
            vector_index=self.vector_index,
            text_index=self.text_index,
            collection=self.collection_name,
            keyword_weight=keyword_weight,
            semantic_weight=semantic_weight,
            count=count,
        )
        t0 = time.perf_counter()
        try:
            docs = [doc async for doc in self.col.aggregate(pipeline)]
        except PyMongoError as e:
            raise StorageFailure(f"Hybrid search failed: {e}") from e
        logger.debug("hybrid_search ok n=%s time=%.3fs", len(docs), time.perf_counter() - t0)
        return [HybridSearchResult.model_validate(d) for d in docs]
