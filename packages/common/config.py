from __future__ import annotations

import enum
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackend(str, enum.Enum):
    """Which store implementation the process binds to at startup."""

    PERSISTENT = "persistent"
    MEMORY = "memory"


class Settings(BaseSettings):
    """Strongly-typed settings model loaded from env / .env.

    Notes:
        - Absence of `DATABASE_URL` selects the memory-resident store.
        - `STORAGE_BACKEND` overrides the choice explicitly.
        - Production requires an explicit CORS origin list.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        protected_namespaces=(),
    )

    ENV: Literal["dev", "staging", "prod"] = Field(default="dev", description="Deployment env")
    SERVICE_NAME: str = Field(default="askboard", description="Service name")

    DATABASE_URL: Optional[str] = Field(default=None, description="Async SQLAlchemy URL, e.g. postgresql+asyncpg://...")
    STORAGE_BACKEND: Optional[StorageBackend] = Field(default=None, description="Force 'persistent' or 'memory'")
    STORAGE_FALLBACK: bool = Field(default=True, description="Fall back to memory if the database is unreachable at startup")

    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=5000)
    FRONTEND_ORIGINS: str = Field(default="http://localhost:5173", description="Comma-separated CORS origins")

    LOG_LEVEL: str = Field(default="INFO")
    WS_QUEUE_SIZE: int = Field(default=1000, ge=1, description="Per-subscriber broadcast queue bound")

    @model_validator(mode="after")
    def _validate_backend(self) -> "Settings":
        if self.STORAGE_BACKEND is StorageBackend.PERSISTENT and not self.DATABASE_URL:
            raise ValueError("STORAGE_BACKEND=persistent requires DATABASE_URL.")
        if self.ENV == "prod" and not self.allowed_origins:
            raise ValueError("FRONTEND_ORIGINS must be set in production (comma-separated).")
        return self

    @property
    def backend(self) -> StorageBackend:
        """Resolve the store binding: explicit STORAGE_BACKEND, else presence of DATABASE_URL."""
        if self.STORAGE_BACKEND is not None:
            return self.STORAGE_BACKEND
        return StorageBackend.PERSISTENT if self.DATABASE_URL else StorageBackend.MEMORY

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.FRONTEND_ORIGINS.split(",") if o.strip()]

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


@lru_cache()
def get_settings() -> Settings:
    """Return a cached singleton `Settings` instance."""
    return Settings()
