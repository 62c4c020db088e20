"""WhatsApp (Meta Cloud API) integration settings."""

from pydantic import Field

from infrastructure.configuration.base import IntegrationSettings


class WhatsAppSettings(IntegrationSettings):
    """Meta Cloud API configuration for the WhatsApp adapter.

    Environment Variables:
        WHATSAPP_PHONE_NUMBER_ID: Sending phone number id
        WHATSAPP_ACCESS_TOKEN: System user access token
        WHATSAPP_API_VERSION: Graph API version (default: v21.0)
        WHATSAPP_GRAPH_URL: Graph API base URL
        WHATSAPP_VERIFY_TOKEN: Token echoed during webhook verification
        WHATSAPP_TIMEOUT_SECONDS: HTTP timeout for Graph API calls
        WHATSAPP_CONVERSATION_WINDOW_HOURS: Customer service window length
    """

    WHATSAPP_PHONE_NUMBER_ID: str = Field(default="", alias="WHATSAPP_PHONE_NUMBER_ID")
    WHATSAPP_ACCESS_TOKEN: str | None = Field(
        default=None, alias="WHATSAPP_ACCESS_TOKEN"
    )
    WHATSAPP_API_VERSION: str = Field(default="v21.0", alias="WHATSAPP_API_VERSION")
    WHATSAPP_GRAPH_URL: str = Field(
        default="https://graph.facebook.com", alias="WHATSAPP_GRAPH_URL"
    )
    WHATSAPP_VERIFY_TOKEN: str | None = Field(
        default=None, alias="WHATSAPP_VERIFY_TOKEN"
    )
    WHATSAPP_TIMEOUT_SECONDS: int = Field(default=30, alias="WHATSAPP_TIMEOUT_SECONDS")
    WHATSAPP_CONVERSATION_WINDOW_HOURS: int = Field(
        default=24, alias="WHATSAPP_CONVERSATION_WINDOW_HOURS"
    )
