# giftvec/domain/repositories/product_repo.py

from __future__ import annotations
from typing import Dict, List, Optional, Sequence
from datetime import datetime, timezone
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from giftvec.core.exceptions import StorageFailure
from giftvec.domain.models.product import EmbeddingStatus, Product

logger = logging.getLogger(__name__)

EMBEDDING_PATH = "embedding.vector"

_PRODUCT_PROJECTION = {
    "_id": 0,
    "product_id": 1,
    "title": 1,
    "description": 1,
    "category": 1,
    "price": 1,
    "tags": 1,
    "image_url": 1,
    "is_active": 1,
    "created_at": 1,
    "updated_at": 1,
}

class ProductRepo:
    """
    Product repository backed by the 'products' collection.
    The embedding lives in a subdocument:
      embedding = { model, vector, updated_at }
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "products"):
        self.col = db[collection_name]

    async def get_by_product_id(self, product_id: str) -> Optional[Product]:
        try:
            doc = await self.col.find_one({"product_id": product_id}, _PRODUCT_PROJECTION)
        except PyMongoError as e:
            raise StorageFailure(f"Failed to load product {product_id}: {e}", entity_id=product_id) from e
        return Product.model_validate(doc) if doc else None

    async def get_many_by_product_ids(self, product_ids: Sequence[str]) -> List[Product]:
        try:
            cursor = self.col.find({"product_id": {"$in": list(product_ids)}}, _PRODUCT_PROJECTION)
            return [Product.model_validate(doc) async for doc in cursor]
        except PyMongoError as e:
            raise StorageFailure(f"Failed to load {len(product_ids)} products: {e}") from e

    # ----- Vector persistence ----------------------------------------------

    async def get_vector(self, product_id: str) -> Optional[List[float]]:
        """Load the stored embedding for one product (None when absent)."""
        try:
            doc = await self.col.find_one({"product_id": product_id}, {EMBEDDING_PATH: 1, "_id": 0})
        except PyMongoError as e:
            raise StorageFailure(f"Failed to load embedding for {product_id}: {e}", entity_id=product_id) from e
        return _vector_of(doc)

    async def get_vectors(self, product_ids: Sequence[str]) -> Dict[str, List[float]]:
        """Batch variant of get_vector; products without an embedding are omitted."""
        if not product_ids:
            return {}
        try:
            cursor = self.col.find(
                {"product_id": {"$in": list(product_ids)}, EMBEDDING_PATH: {"$exists": True}},
                {"_id": 0, "product_id": 1, EMBEDDING_PATH: 1},
            )
            found: Dict[str, List[float]] = {}
            async for doc in cursor:
                if vec := _vector_of(doc):
                    found[doc["product_id"]] = vec
            return found
        except PyMongoError as e:
            raise StorageFailure(f"Failed to load embeddings for {len(product_ids)} products: {e}") from e

    async def set_vector(self, product_id: str, vector: Sequence[float], *, model: str) -> None:
        """
        Persist an embedding under:
          embedding = { model, vector, updated_at }
        """
        now = datetime.now(timezone.utc)
        try:
            res = await self.col.update_one(
                {"product_id": product_id},
                {
                    "$set": {
                        "embedding.model": model,
                        EMBEDDING_PATH: list(vector),
                        "embedding.updated_at": now,
                    }
                },
                upsert=False,  # products are owned by the catalog service
            )
        except PyMongoError as e:
            raise StorageFailure(f"Failed to store embedding for {product_id}: {e}", entity_id=product_id) from e
        if res.matched_count == 0:
            raise StorageFailure(f"Product {product_id} not found", entity_id=product_id)

    # ----- Catalog scans ---------------------------------------------------

    async def get_products_without_embeddings(self, limit: int) -> List[Product]:
        try:
            cursor = (
                self.col.find({EMBEDDING_PATH: {"$exists": False}, "is_active": True}, _PRODUCT_PROJECTION)
                .sort("created_at", 1)
                .limit(limit)
            )
            return [Product.model_validate(doc) async for doc in cursor]
        except PyMongoError as e:
            raise StorageFailure(f"Failed to scan products without embeddings: {e}") from e

    async def get_embedding_status(self) -> EmbeddingStatus:
        try:
            total = await self.col.count_documents({"is_active": True})
            embedded = await self.col.count_documents({"is_active": True, EMBEDDING_PATH: {"$exists": True}})
        except PyMongoError as e:
            raise StorageFailure(f"Failed to count embedded products: {e}") from e
        return EmbeddingStatus(total_products=total, products_with_embedding=embedded)

    async def sample_embedded_product_ids(self, limit: int) -> List[str]:
        try:
            cursor = self.col.find(
                {EMBEDDING_PATH: {"$exists": True}}, {"_id": 0, "product_id": 1}
            ).limit(limit)
            return [doc["product_id"] async for doc in cursor]
        except PyMongoError as e:
            raise StorageFailure(f"Failed to sample embedded products: {e}") from e


def _vector_of(doc: Optional[dict]) -> Optional[List[float]]:
    if not doc:
        return None
    node = doc.get("embedding")
    if isinstance(node, dict) and node.get("vector"):
        return node["vector"]
    return None
