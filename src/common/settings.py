from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    # --- LLM ------------------------------------------------------------
    model_name: str = Field(
        os.getenv("MODEL_NAME", "gpt-4o-mini"), validation_alias="OPENAI_MODEL"
    )
    openai_api_key: str = Field(
        os.getenv("OPENAI_KEY", ""), validation_alias="OPENAI_API_KEY"
    )
    llm_temperature: float = Field(0.7, validation_alias="LLM_TEMPERATURE")
    llm_max_tokens: int = Field(2000, validation_alias="LLM_MAX_TOKENS")

    # LLM microservice; when disabled we talk to OpenAI directly
    llm_service_url: str = Field(
        "http://llm_microservice:8000", validation_alias="LLM_SERVICE_URL"
    )
    llm_service_enabled: bool = Field(False, validation_alias="LLM_SERVICE_ENABLED")
    llm_request_timeout: float = Field(30.0, validation_alias="LLM_REQUEST_TIMEOUT")

    # --- retries (0 = one failure is one fallback) -----------------------
    max_retries: int = Field(0, validation_alias="EXTERNAL_MAX_RETRIES")
    retry_base_delay: float = Field(0.5, validation_alias="EXTERNAL_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(5.0, validation_alias="EXTERNAL_RETRY_MAX_DELAY")

    # --- catalog service --------------------------------------------------
    catalog_backend: str = Field("memory", validation_alias="CATALOG_BACKEND")  # memory|http
    catalog_base_url: str = Field(
        "http://catalog:8080", validation_alias="CATALOG_BASE_URL"
    )
    catalog_api_key: str | None = Field(None, validation_alias="CATALOG_API_KEY")
    catalog_request_timeout: float = Field(10.0, validation_alias="CATALOG_TIMEOUT")

    # --- metadata enrichment (Google Books) ------------------------------
    google_books_api_key: str | None = Field(None, validation_alias="GOOGLE_BOOKS_KEY")
    metadata_request_timeout: float = Field(5.0, validation_alias="METADATA_TIMEOUT")
    enrichment_concurrency: int = Field(4, validation_alias="ENRICHMENT_CONCURRENCY")
    enrichment_delay_seconds: float = Field(0.1, validation_alias="ENRICHMENT_DELAY")

    # --- result cache -----------------------------------------------------
    cache_backend: str = Field("memory", validation_alias="CACHE_BACKEND")  # memory|redis
    cache_ttl_seconds: int = Field(2 * 60 * 60, validation_alias="CACHE_TTL_SECONDS")
    cache_key_prefix: str = Field("shelfrec:", validation_alias="CACHE_KEY_PREFIX")

    # Redis - use redis:6379 for Docker, localhost:6379 for local
    redis_url: str = Field(
        os.getenv("REDIS_URL", "redis://redis:6379/0"), validation_alias="REDIS_URL"
    )
    redis_connection_timeout: int = Field(
        5, validation_alias="REDIS_CONNECTION_TIMEOUT"
    )

    # Path to weights.json (relative or absolute); missing file = defaults
    weights_path: str = Field(
        os.getenv("WEIGHTS_PATH", "src/shelf_recommender/weights.json")
    )

    @property
    def enrichment_enabled(self) -> bool:
        """Google Books lookups only run when a key is configured."""
        return bool(self.google_books_api_key)


# singleton
SettingsInstance = Settings()
# pep-8 alias
settings = SettingsInstance
