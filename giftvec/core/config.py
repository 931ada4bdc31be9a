from functools import lru_cache
from typing import Literal, Optional
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["development", "production"]

def _env_file_for(app_env: EnvName) -> str:
    return ".env.development" if app_env == "development" else ".env.production"

class Settings(BaseSettings):

    # Core
    APP_ENV: EnvName = "development"
    APP_NAME: str = "GiftVec"
    DEBUG: bool = False

    # Mongo (products, events, user_profiles)
    MONGO_URI: str # ✅ declared
    MONGO_DB: str # ✅ declared

    # Redis (query vectors + preference profiles); optional
    REDIS_URL: Optional[str] = None

    # OpenAI; a missing key turns every embedding call into ProviderUnavailable
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = 1536
    openai_timeout_s: int = 30  # seconds

    # Embedding client
    embedding_max_batch_size: int = 100        # provider max inputs per call
    embedding_max_retries: int = 3
    embedding_retry_base_delay_s: float = 1.0  # base * 2^attempt

    # Query vector cache config
    vector_cache_ttl: int = 24 * 3600          # 24h
    vector_cache_prefix: str = "qvec"          # redis key namespace
    backfill_lock_ttl: int = 3600              # seconds

    # Preference profiles
    preference_cache_ttl: int = 30 * 60        # 30 minutes
    preference_cache_prefix: str = "user:pref"
    preference_cache_max_entries: int = 10_000 # in-memory fallback only
    preference_half_life_days: float = 30.0
    preference_window_days: int = 90
    preference_max_interactions: int = 100

    # Batch pipeline defaults
    batch_size: int = 100
    batch_concurrency: int = 3
    batch_delay_s: float = 0.1
    backfill_scan_limit: int = 10_000

    # Atlas indexes
    product_vector_index: str = "products_embedding_index"
    product_text_index: str = "products_text_index"
    profile_vector_index: str = "user_profiles_embedding_index"

    # pydantic-settings config will be set dynamically in the factory below
    model_config = SettingsConfigDict(env_file=None, case_sensitive=True)

@lru_cache
def get_settings() -> Settings:
    """
    Factory that chooses the right .env file based on APP_ENV.
    Cache makes it cheap to call from the composition root and the CLI.
    """
    app_env: EnvName = os.getenv("APP_ENV", "development")  # earliest switch
    env_file = _env_file_for(app_env)
    return Settings(
                _env_file=env_file,  # load .env.development or .env.production
                _env_file_encoding="utf-8"
    )
