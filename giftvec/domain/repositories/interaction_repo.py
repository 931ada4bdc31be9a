# giftvec/domain/repositories/interaction_repo.py
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import logging
import time

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from giftvec.core.exceptions import StorageFailure
from giftvec.domain.models.product import Product, TrendingProduct
from giftvec.domain.models.user import Interaction, InteractionRecord

logger = logging.getLogger(__name__)


class InteractionRepo:
    """
    Append-only interaction log in the 'events' collection:
      { user_id, product_id, search_query, event_type, metadata, timestamp }
    Reads join each event with its product via $lookup.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "events", products_collection: str = "products"):
        self.col = db[collection_name]
        self.products_collection = products_collection

    async def insert(self, interaction: Interaction) -> None:
        doc = {
            "user_id": interaction.user_id,
            "product_id": interaction.product_id,
            "search_query": interaction.search_query,
            "event_type": interaction.interaction_type.value,
            "metadata": interaction.metadata,
            "timestamp": interaction.timestamp,
        }
        try:
            await self.col.insert_one(doc)
        except PyMongoError as e:
            raise StorageFailure(f"Failed to record interaction for {interaction.user_id}: {e}", entity_id=interaction.user_id) from e

    async def recent_with_products(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        require_embedding: bool = False,
    ) -> List[InteractionRecord]:
        """Most recent first; events without a product are skipped."""
        match: Dict[str, Any] = {"user_id": user_id, "product_id": {"$ne": None}}
        if since is not None:
            match["timestamp"] = {"$gt": since}

        pipeline: List[Dict[str, Any]] = [
            {"$match": match},
            {"$sort": {"timestamp": -1}},
            {
                "$lookup": {
                    "from": self.products_collection,
                    "localField": "product_id",
                    "foreignField": "product_id",
                    "as": "product",
                }
            },
            {"$unwind": "$product"},
        ]
        if require_embedding:
            pipeline.append({"$match": {"product.embedding.vector": {"$exists": True}}})
        if limit:
            pipeline.append({"$limit": limit})
        pipeline.append(
            {
                "$project": {
                    "_id": 0,
                    "product_id": 1,
                    "interaction_type": "$event_type",
                    "created_at": "$timestamp",
                    "category": "$product.category",
                    "price": "$product.price",
                    "embedding": "$product.embedding.vector",
                }
            }
        )

        t0 = time.perf_counter()
        try:
            docs = [doc async for doc in self.col.aggregate(pipeline)]
        except PyMongoError as e:
            raise StorageFailure(f"Failed to load interactions for {user_id}: {e}", entity_id=user_id) from e
        logger.debug("interactions user_id=%s n=%s time=%.3fs", user_id, len(docs), time.perf_counter() - t0)
        return [InteractionRecord.model_validate(d) for d in docs]

    async def count(self, user_id: str) -> int:
        try:
            return await self.col.count_documents({"user_id": user_id})
        except PyMongoError as e:
            raise StorageFailure(f"Failed to count interactions for {user_id}: {e}", entity_id=user_id) from e

    async def trending(
        self,
        *,
        since: datetime,
        limit: int,
        categories: Optional[Sequence[str]] = None,
        price_min: Optional[float] = None,
        price_max: Optional[float] = None,
    ) -> List[TrendingProduct]:
        """Products with the most interactions since `since` (embedded, active products only)."""
        product_match: Dict[str, Any] = {
            "product.is_active": True,
            "product.embedding.vector": {"$exists": True},
        }
        if categories:
            product_match["product.category"] = {"$in": list(categories)}
        price: Dict[str, float] = {}
        if price_min is not None:
            price["$gte"] = price_min
        if price_max is not None:
            price["$lte"] = price_max
        if price:
            product_match["product.price"] = price

        pipeline: List[Dict[str, Any]] = [
            {"$match": {"timestamp": {"$gt": since}, "product_id": {"$ne": None}}},
            {"$group": {"_id": "$product_id", "interaction_count": {"$sum": 1}}},
            {
                "$lookup": {
                    "from": self.products_collection,
                    "localField": "_id",
                    "foreignField": "product_id",
                    "as": "product",
                }
            },
            {"$unwind": "$product"},
            {"$match": product_match},
            {"$sort": {"interaction_count": -1}},
            {"$limit": limit},
            {"$project": {"_id": 0, "interaction_count": 1, "product": 1}},
        ]
        try:
            docs = [doc async for doc in self.col.aggregate(pipeline)]
        except PyMongoError as e:
            raise StorageFailure(f"Failed to compute trending products: {e}") from e
        out: List[TrendingProduct] = []
        for d in docs:
            prod = {k: v for k, v in d["product"].items() if k not in ("_id", "embedding")}
            out.append(TrendingProduct(product=Product.model_validate(prod), interaction_count=d["interaction_count"]))
        return out
