"""Dedup index infrastructure settings."""

from pydantic import Field, field_validator

from infrastructure.configuration.base import InfrastructureSettings


class DedupSettings(InfrastructureSettings):
    """Dedup index configuration for collapsing duplicate notifications.

    Environment Variables:
        DEDUP_BACKEND: 'memory' (single process) or 'redis' (shared)
        DEDUP_NAMESPACE: Key namespace for dedup claims

    Example:
        ```python
        from infrastructure.configuration import settings

        backend = settings.dedup.DEDUP_BACKEND
        ```
    """

    DEDUP_BACKEND: str = Field(default="memory", alias="DEDUP_BACKEND")
    DEDUP_NAMESPACE: str = Field(default="notify-dedup", alias="DEDUP_NAMESPACE")

    @field_validator("DEDUP_BACKEND")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Only the in-memory and Redis backends exist."""
        if v not in ("memory", "redis"):
            raise ValueError("DEDUP_BACKEND must be 'memory' or 'redis'")
        return v
