"""Slack Integration Package.

- client: Lazily created Slack WebClient used by the chat adapter.
"""

from integrations.slack.client import SlackClientManager

__all__ = ["SlackClientManager"]
