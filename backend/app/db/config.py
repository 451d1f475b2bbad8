# backend/app/db/config.py
from __future__ import annotations
import logging
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load .env before reading settings
load_dotenv()

# Create dedicated logger for this module
logger = logging.getLogger("rag.db.config")

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "ingestdb"

    store_backend: str = Field("postgres", description="postgres | memory")
    payload_cache: str = Field("memory", description="memory | file")
    payload_spool_dir: str = "/app/spool"

    embedding_backend: str = Field("ollama", description="ollama | openai | hash")
    embedding_model: str = "nomic-embed-text"
    embedding_dim: int = 768
    embedding_base_url: str | None = None
    embedding_api_key: str | None = None
    embedding_timeout: int = 600

    ingest_chunk_size: int = Field(100, ge=1)
    embedding_page_size: int = Field(50, ge=1)
    ingest_workers: int = Field(4, ge=1)
    ingest_max_upload_bytes: int = 4 * 1024 * 1024
    remote_timeout: int = 60

    red_zone_threshold: int = Field(70, ge=0, le=100)
    red_zone_max_records: int = Field(2000, ge=2)
    rank_drop_zero: bool = True

    @field_validator("store_backend", "payload_cache", "embedding_backend")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

# Instantiate settings once
settings = Settings()

if settings.store_backend == "postgres":
    # Mask password for safe logging
    masked = settings.database_url.replace(settings.db_password, "*****")
    logger.info(f"Connecting to database using DSN: {masked}")
