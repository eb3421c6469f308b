"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings with defaults for development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = True

    # WebSocket transport
    ws_open_timeout: float = 10.0  # Connect + opening handshake, seconds
    ws_close_timeout: float = 5.0  # Closing handshake, seconds
    ws_ping_interval: float = 20.0  # Keepalive pings, 0 disables
    ws_max_message_size: int = 1024 * 1024  # 1 MiB per inbound frame

    # Event delivery
    ws_event_queue_size: int = 1000  # Pending events per connection before the read loop waits
    ws_event_slow_callback_threshold: float = 5.0  # Deliver calls slower than this are logged

    def validate_production(self) -> list[str]:
        """
        Check settings that must not keep development values in production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        if self.environment == "production":
            if self.debug:
                errors.append("DEBUG must be False in production")

            if self.ws_ping_interval <= 0:
                errors.append(
                    "WS_PING_INTERVAL must be positive in production to detect dead peers"
                )

        if self.ws_event_queue_size <= 0:
            errors.append("WS_EVENT_QUEUE_SIZE must be positive")

        if self.ws_event_slow_callback_threshold <= 0:
            errors.append("WS_EVENT_SLOW_CALLBACK_THRESHOLD must be positive")

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
