"""Redis infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class RedisSettings(InfrastructureSettings):
    """Redis connection configuration (used by the shared dedup index).

    Environment Variables:
        REDIS_URL: Connection URL (default: redis://localhost:6379/0)
        REDIS_SOCKET_TIMEOUT: Socket read/write timeout in seconds
        REDIS_SOCKET_CONNECT_TIMEOUT: Connect timeout in seconds
        REDIS_MAX_CONNECTIONS: Connection pool size
        REDIS_KEY_PREFIX: Prefix prepended to every key
    """

    REDIS_URL: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    REDIS_SOCKET_TIMEOUT: float = Field(default=2.0, alias="REDIS_SOCKET_TIMEOUT")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(
        default=2.0, alias="REDIS_SOCKET_CONNECT_TIMEOUT"
    )
    REDIS_MAX_CONNECTIONS: int = Field(default=20, alias="REDIS_MAX_CONNECTIONS")
    REDIS_KEY_PREFIX: str = Field(default="notify", alias="REDIS_KEY_PREFIX")
