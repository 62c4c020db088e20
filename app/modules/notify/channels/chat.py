"""Chat adapter using Slack."""

from slack_sdk.errors import SlackApiError

from infrastructure.configuration.integrations import SlackSettings
from infrastructure.logging import get_module_logger, redact_identifier
from infrastructure.operations import OperationResult
from infrastructure.operations.classifiers import classify_slack_error
from integrations.slack import SlackClientManager
from modules.notify.channels.base import ChannelAdapter, config_result, result_to_delivery
from modules.notify.domain import (
    ChannelCode,
    DeliveryRequest,
    DeliveryResult,
    ErrorCategory,
)

logger = get_module_logger()


class SlackChatAdapter(ChannelAdapter):
    """Posts direct messages via the Slack Web API.

    The recipient address is a Slack user or channel id; posting to a user
    id delivers into the app's DM with that user.
    """

    channel_code = ChannelCode.CHAT
    provider_code = "slack"

    def __init__(self, slack_settings: SlackSettings, client_manager=None):
        self.settings = slack_settings
        self._client_manager = client_manager or SlackClientManager(slack_settings)

    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        if not self.settings.SLACK_TOKEN:
            return DeliveryResult.failed(ErrorCategory.AUTH, "SLACK_TOKEN is not set")

        text = request.body_text or request.subject or "(No content)"
        if request.subject and request.body_text:
            text = f"*{request.subject}*\n\n{request.body_text}"

        kwargs = {"channel": request.recipient_addr, "text": text}
        if request.body_json and isinstance(request.body_json.get("blocks"), list):
            kwargs["blocks"] = request.body_json["blocks"]

        try:
            response = self._client_manager.get_client().chat_postMessage(**kwargs)
        except SlackApiError as e:
            logger.warning(
                "slack_message_failed",
                delivery_id=request.delivery_id,
                recipient=redact_identifier(request.recipient_addr),
                error=str(e),
            )
            return result_to_delivery(classify_slack_error(e))
        except Exception as e:
            logger.error(
                "slack_message_error",
                delivery_id=request.delivery_id,
                error=str(e),
                exc_info=True,
            )
            return result_to_delivery(classify_slack_error(e))

        logger.info(
            "slack_message_sent",
            delivery_id=request.delivery_id,
            recipient=redact_identifier(request.recipient_addr),
        )
        return DeliveryResult.sent(
            external_id=response.get("ts"),
            provider_response={"channel": response.get("channel")},
        )

    def validate_config(self) -> OperationResult:
        errors = [] if self.settings.SLACK_TOKEN else ["SLACK_TOKEN is not set"]
        return config_result(errors)

    def health_check(self) -> OperationResult:
        """Check Slack API connectivity with auth.test."""
        configured = self.validate_config()
        if not configured.is_success:
            return configured
        try:
            auth_test = self._client_manager.get_client().auth_test()
        except SlackApiError as e:
            logger.error("slack_health_check_failed", error=str(e))
            return classify_slack_error(e)
        if auth_test["ok"]:
            return OperationResult.success(
                data={"team": auth_test.get("team"), "user": auth_test.get("user")},
                message="Slack API healthy",
            )
        return OperationResult.permanent_error(
            "Slack auth test failed", error_code=auth_test.get("error") or "AUTH_FAILED"
        )
