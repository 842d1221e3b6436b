"""
Application configuration management using Pydantic Settings.
"""
import json
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Optional

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from app.domain.schemas.storage import LifecyclePolicy


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    APP_NAME: str = "Registry Storage"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = Field(default="development", pattern="^(development|staging|production)$")

    # API
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Registry Storage API"
    BACKEND_CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://localhost:8000"]
    )

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_URL: Optional[RedisDsn] = Field(default=None, validate_default=True)
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_KEY_PREFIX: str = "registry"

    # Storage security
    STORAGE_MAX_FILE_SIZE: int = 100 * 1024 * 1024  # 100 MB
    STORAGE_ALLOWED_FILE_EXTENSIONS: Annotated[List[str], NoDecode] = Field(default_factory=list)
    STORAGE_BLOCKED_FILE_EXTENSIONS: Annotated[List[str], NoDecode] = Field(default_factory=list)
    STORAGE_ENABLE_ENCRYPTION_AT_REST: bool = True
    STORAGE_ENCRYPTION_KEY: Optional[str] = None
    STORAGE_ALLOWED_IP_ADDRESSES: Annotated[List[str], NoDecode] = Field(default_factory=list)
    STORAGE_BLOCKED_IP_ADDRESSES: Annotated[List[str], NoDecode] = Field(default_factory=list)
    STORAGE_ENABLE_ACCESS_LOGGING: bool = True
    STORAGE_ENABLE_VIRUS_SCANNING: bool = True
    STORAGE_MAX_DOWNLOAD_ATTEMPTS_PER_HOUR: int = 100
    STORAGE_SECURITY_EVENT_HISTORY: int = 1000

    # Lifecycle
    STORAGE_LIFECYCLE_POLICIES: List[LifecyclePolicy] = Field(default_factory=list)
    STORAGE_LIFECYCLE_INTERVAL_SECONDS: int = 3600  # 1 hour

    # Backup
    STORAGE_ENABLE_BACKUP: bool = True
    STORAGE_BACKUP_CONTAINER: str = "backups"
    STORAGE_BACKUP_CONTAINERS: Annotated[List[str], NoDecode] = Field(
        default=["packages", "versions", "security-scans"]
    )
    STORAGE_BACKUP_RETENTION_DAYS: int = 30
    STORAGE_BACKUP_INTERVAL_SECONDS: int = 86400  # 24 hours

    # Monitoring
    STORAGE_ENABLE_MONITORING: bool = True
    STORAGE_METRICS_INTERVAL_SECONDS: int = 300  # 5 minutes
    STORAGE_MAX_RESPONSE_TIME_SECONDS: float = 30.0
    STORAGE_ALERT_RECIPIENTS: Annotated[List[str], NoDecode] = Field(default_factory=list)
    STORAGE_USAGE_CACHE_TTL_SECONDS: int = 300

    @field_validator("REDIS_URL", mode="before")
    @classmethod
    def assemble_redis_connection(cls, v: Optional[str], info) -> str:
        if v:
            return v
        values = info.data
        host = values.get("REDIS_HOST", "localhost")
        port = values.get("REDIS_PORT", 6379)
        db = values.get("REDIS_DB", 0)
        password = values.get("REDIS_PASSWORD")
        if password:
            return f"redis://:{password}@{host}:{port}/{db}"
        return f"redis://{host}:{port}/{db}"

    @field_validator(
        "BACKEND_CORS_ORIGINS",
        "STORAGE_BACKUP_CONTAINERS",
        "STORAGE_ALERT_RECIPIENTS",
        "STORAGE_ALLOWED_FILE_EXTENSIONS",
        "STORAGE_BLOCKED_FILE_EXTENSIONS",
        "STORAGE_ALLOWED_IP_ADDRESSES",
        "STORAGE_BLOCKED_IP_ADDRESSES",
        mode="before",
    )
    @classmethod
    def split_comma_separated(cls, v: str | List[str]) -> List[str]:
        if isinstance(v, str):
            if v.startswith("["):
                return json.loads(v)
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator(
        "STORAGE_ALLOWED_FILE_EXTENSIONS",
        "STORAGE_BLOCKED_FILE_EXTENSIONS",
        mode="after",
    )
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in v
        ]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == "development"

    def get_security_config(self) -> Dict[str, Any]:
        """Get storage security summary for diagnostics."""
        return {
            "max_file_size": self.STORAGE_MAX_FILE_SIZE,
            "encryption_at_rest": self.STORAGE_ENABLE_ENCRYPTION_AT_REST,
            "has_encryption_key": bool(self.STORAGE_ENCRYPTION_KEY),
            "virus_scanning": self.STORAGE_ENABLE_VIRUS_SCANNING,
            "access_logging": self.STORAGE_ENABLE_ACCESS_LOGGING,
            "max_downloads_per_hour": self.STORAGE_MAX_DOWNLOAD_ATTEMPTS_PER_HOUR,
        }


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()


# Create a settings instance for easy import
settings = get_settings()
