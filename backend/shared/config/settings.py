"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Bundled entry page and assets shipped with the gateway package
DEFAULT_STATIC_ROOT = Path(__file__).resolve().parents[2] / "ws_gateway" / "static"


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    # Redis
    # Matches the broker address the relay has always used in development
    redis_url: str = "redis://localhost:4245"

    # Redis pool
    redis_pool_max_active: int = 80  # Max clients checked out at once
    redis_pool_idle_timeout: float = 240.0  # Idle clients older than this are closed
    redis_pool_acquire_timeout: float | None = None  # None = wait for a free slot
    redis_socket_timeout: float = 5.0  # Connect timeout in seconds

    # WebSocket bridge
    ws_bridge_poll_interval: float = 1.0  # Seconds per pubsub get_message wait
    ws_bridge_shutdown_timeout: float = 5.0  # Max wait for a cancelled bridge to exit

    # Server
    ws_gateway_host: str = "0.0.0.0"
    ws_gateway_port: int = 8080

    # Static assets (empty uses the bundled ws_gateway/static directory)
    static_root: str = ""

    # Environment
    environment: str = "development"
    debug: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def static_root_path(self) -> Path:
        """Resolved directory that static assets are served from."""
        if self.static_root:
            return Path(self.static_root).resolve()
        return DEFAULT_STATIC_ROOT

    def validate_pool_limits(self) -> list[str]:
        """
        Validate pool configuration.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []
        if self.redis_pool_max_active <= 0:
            errors.append("REDIS_POOL_MAX_ACTIVE must be a positive integer")
        if self.redis_pool_idle_timeout <= 0:
            errors.append("REDIS_POOL_IDLE_TIMEOUT must be positive")
        if self.redis_pool_acquire_timeout is not None and self.redis_pool_acquire_timeout <= 0:
            errors.append("REDIS_POOL_ACQUIRE_TIMEOUT must be positive when set")
        if self.ws_bridge_poll_interval <= 0:
            errors.append("WS_BRIDGE_POLL_INTERVAL must be positive")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
