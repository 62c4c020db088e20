"""Slack integration settings."""

from infrastructure.configuration.base import IntegrationSettings


class SlackSettings(IntegrationSettings):
    """Slack Web API configuration for the chat adapter.

    Environment Variables:
        SLACK_TOKEN: Slack bot token (xoxb-*)
        SLACK_TIMEOUT_SECONDS: Web API request timeout

    Example:
        ```python
        from infrastructure.services import get_settings

        settings = get_settings()

        slack_token = settings.slack.SLACK_TOKEN
        ```
    """

    SLACK_TOKEN: str = ""
    SLACK_TIMEOUT_SECONDS: int = 30
