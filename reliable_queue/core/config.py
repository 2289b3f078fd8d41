from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "reliable-queue"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Relational backend
    DATABASE_URL: str = "sqlite:///./messages.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # Key/sorted-set backend
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # Queue defaults
    REDELIVER_TIMEOUT: int = 3600  # seconds
    AUTO_SETUP: bool = True

    # Transient error retry
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_MS: int = 100
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_JITTER: float = 0.1

    # Circuit breaker
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5
    CIRCUIT_BREAKER_SUCCESS_THRESHOLD: int = 1
    CIRCUIT_BREAKER_COOLDOWN: float = 30.0  # seconds
    CIRCUIT_BREAKER_COOLDOWN_MULTIPLIER: float = 2.0
    CIRCUIT_BREAKER_MAX_COOLDOWN: float = 300.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True


# Global settings instance
settings = Settings()
