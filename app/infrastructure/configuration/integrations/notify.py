"""GC Notify integration settings."""

from pydantic import Field

from infrastructure.configuration.base import IntegrationSettings


class NotifySettings(IntegrationSettings):
    """GC Notify API configuration used by the email and SMS adapters.

    Environment Variables:
        NOTIFY_SRE_USER_NAME: GC Notify service account username (JWT issuer)
        NOTIFY_SRE_CLIENT_SECRET: GC Notify service account secret
        NOTIFY_API_URL: GC Notify API endpoint URL
        NOTIFY_EMAIL_TEMPLATE_ID: Pass-through email template (subject + body)
        NOTIFY_SMS_TEMPLATE_ID: Pass-through SMS template (body)
        NOTIFY_TIMEOUT_SECONDS: HTTP timeout for GC Notify calls

    Example:
        ```python
        from infrastructure.services import get_settings

        settings = get_settings()

        api_url = settings.notify.NOTIFY_API_URL
        ```
    """

    NOTIFY_SRE_USER_NAME: str | None = Field(default=None, alias="NOTIFY_SRE_USER_NAME")
    NOTIFY_SRE_CLIENT_SECRET: str | None = Field(
        default=None, alias="NOTIFY_SRE_CLIENT_SECRET"
    )
    NOTIFY_API_URL: str = Field(default="", alias="NOTIFY_API_URL")
    NOTIFY_EMAIL_TEMPLATE_ID: str = Field(default="", alias="NOTIFY_EMAIL_TEMPLATE_ID")
    NOTIFY_SMS_TEMPLATE_ID: str = Field(default="", alias="NOTIFY_SMS_TEMPLATE_ID")
    NOTIFY_TIMEOUT_SECONDS: int = Field(default=30, alias="NOTIFY_TIMEOUT_SECONDS")
