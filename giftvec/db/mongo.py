# giftvec/db/mongo.py
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from giftvec.core.config import Settings
import certifi
import logging

logger = logging.getLogger(__name__)

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


def get_client() -> AsyncIOMotorClient:
    assert _client is not None, "Mongo client not initialized"
    return _client


def get_db() -> AsyncIOMotorDatabase:
    assert _db is not None, "Mongo DB not initialized"
    return _db


async def connect(settings: Settings) -> AsyncIOMotorDatabase:
    """
    Create the Motor client with an explicit CA bundle.
    A failed startup ping is logged, not raised: the client stays lazy and
    the first real query retries the connection.
    """
    global _client, _db

    _client = AsyncIOMotorClient(
        settings.MONGO_URI,
        tlsCAFile=certifi.where(),          # containers often lack a system CA store
        uuidRepresentation="standard",
        tz_aware=True,
        serverSelectionTimeoutMS=6000,
        connectTimeoutMS=6000,
    )
    _db = _client[settings.MONGO_DB]
    try:
        await _client.admin.command("ping")
        logger.info("Mongo connected (ping ok)")
    except Exception as e:
        logger.warning(f"Mongo ping at startup failed, connecting lazily: {e}")
    return _db


async def disconnect():
    global _client, _db
    if _client:
        _client.close()
        logger.info("Mongo disconnected")
    _client = None
    _db = None
