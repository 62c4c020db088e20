from slack_sdk import WebClient

from infrastructure.configuration.integrations import SlackSettings


class SlackClientManager:
    """Manages the Slack API client. Ensures a single instance is used per adapter."""

    def __init__(self, slack_settings: SlackSettings):
        self._settings = slack_settings
        self._client = None

    def get_client(self) -> WebClient:
        """Returns a lazily created Slack WebClient."""
        if self._client is None:
            self._client = WebClient(
                token=self._settings.SLACK_TOKEN,
                timeout=self._settings.SLACK_TIMEOUT_SECONDS,
            )
        return self._client
