"""Application configuration from environment variables."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All config comes from env vars or .env.backend file."""

    # Blob storage
    FILE_STORAGE_PATH: str = "./backend/uploads"
    STORAGE_CAPACITY_BYTES: int = 1_000_000_000  # 1 GB shown as "total" in storage stats

    # Metadata index: "json" (single file, atomic replace) or "sql" (SQLAlchemy)
    METADATA_BACKEND: str = "json"
    METADATA_PATH: str = "./backend/files-metadata.json"
    DATABASE_URL: str = "sqlite+aiosqlite:///./backend/lokaldrive.db"

    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3001
    CORS_ORIGINS: str = "*"

    # LLM providers (metadata enrichment)
    LLM_PROVIDER: str = "gemini"  # "gemini" or "openai"
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.2
    ENRICHMENT_TIMEOUT_SECONDS: float = 20.0
    AUTO_ENRICH: bool = True

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env.backend"
        env_file_encoding = "utf-8"
