"""Web Push (VAPID) integration settings."""

from pydantic import Field

from infrastructure.configuration.base import IntegrationSettings


class WebPushSettings(IntegrationSettings):
    """VAPID configuration for the web push adapter.

    Environment Variables:
        WEB_PUSH_VAPID_PRIVATE_KEY: PEM encoded EC (P-256) private key
        WEB_PUSH_VAPID_PUBLIC_KEY: Application server public key (base64url)
        WEB_PUSH_VAPID_SUBJECT: Contact URI sent as the JWT ``sub`` claim
        WEB_PUSH_TTL_SECONDS: Push service TTL header
        WEB_PUSH_TIMEOUT_SECONDS: HTTP timeout per push endpoint
    """

    WEB_PUSH_VAPID_PRIVATE_KEY: str | None = Field(
        default=None, alias="WEB_PUSH_VAPID_PRIVATE_KEY"
    )
    WEB_PUSH_VAPID_PUBLIC_KEY: str = Field(default="", alias="WEB_PUSH_VAPID_PUBLIC_KEY")
    WEB_PUSH_VAPID_SUBJECT: str = Field(
        default="mailto:notifications@example.com", alias="WEB_PUSH_VAPID_SUBJECT"
    )
    WEB_PUSH_TTL_SECONDS: int = Field(default=86400, alias="WEB_PUSH_TTL_SECONDS")
    WEB_PUSH_TIMEOUT_SECONDS: int = Field(default=15, alias="WEB_PUSH_TIMEOUT_SECONDS")
