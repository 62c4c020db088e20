"""Server infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class ServerSettings(InfrastructureSettings):
    """HTTP server configuration for the webhook and health endpoints.

    Environment Variables:
        BACKEND_URL: Public base URL of this service
        WEBHOOK_DEFAULT_TENANT_ID: Tenant used when a webhook omits one
        RUN_BACKGROUND_JOBS: Start the scheduler and queue worker threads

    Example:
        ```python
        from infrastructure.configuration import settings

        backend_url = settings.server.BACKEND_URL
        ```
    """

    BACKEND_URL: str = Field(default="http://127.0.0.1:8000", alias="BACKEND_URL")
    WEBHOOK_DEFAULT_TENANT_ID: str | None = Field(
        default=None, alias="WEBHOOK_DEFAULT_TENANT_ID"
    )
    RUN_BACKGROUND_JOBS: bool = Field(default=True, alias="RUN_BACKGROUND_JOBS")
