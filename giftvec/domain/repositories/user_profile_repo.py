# giftvec/domain/repositories/user_profile_repo.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from giftvec.core.exceptions import StorageFailure
from giftvec.domain.models.user import SimilarUser, StoredPreference


class UserProfileRepo:
    """
    Preference vectors in the 'user_profiles' collection:
      { user_id, preference_embedding, updated_at }
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection_name: str = "user_profiles",
        vector_index: str = "user_profiles_embedding_index",
    ):
        self.col = db[collection_name]
        self.vector_index = vector_index

    async def get_preference(self, user_id: str) -> Optional[StoredPreference]:
        try:
            doc = await self.col.find_one({"user_id": user_id}, {"_id": 0})
        except PyMongoError as e:
            raise StorageFailure(f"Failed to load profile for {user_id}: {e}", entity_id=user_id) from e
        return StoredPreference.model_validate(doc) if doc else None

    async def set_preference(self, user_id: str, vector: Sequence[float]) -> None:
        try:
            await self.col.update_one(
                {"user_id": user_id},
                {"$set": {"preference_embedding": list(vector), "updated_at": datetime.now(timezone.utc)}},
                upsert=True,
            )
        except PyMongoError as e:
            raise StorageFailure(f"Failed to store preference for {user_id}: {e}", entity_id=user_id) from e

    async def find_similar_users(
        self,
        vector: Sequence[float],
        *,
        exclude_user_id: str,
        threshold: float,
        count: int,
    ) -> List[SimilarUser]:
        pipeline = [
            {
                "$vectorSearch": {
                    "index": self.vector_index,
                    "path": "preference_embedding",
                    "queryVector": list(vector),
                    "numCandidates": max(100, 10 * (count + 1)),
                    "limit": count + 1,  # the user may match itself
                }
            },
            {"$addFields": {"similarity": {"$subtract": [{"$multiply": [2, {"$meta": "vectorSearchScore"}]}, 1]}}},
            {"$match": {"user_id": {"$ne": exclude_user_id}, "similarity": {"$gt": threshold}}},
            {"$limit": count},
            {"$project": {"_id": 0, "user_id": 1, "similarity": 1}},
        ]
        try:
            docs = [doc async for doc in self.col.aggregate(pipeline)]
        except PyMongoError as e:
            raise StorageFailure(f"Similar-user search failed for {exclude_user_id}: {e}", entity_id=exclude_user_id) from e
        return [SimilarUser.model_validate(d) for d in docs]
