"""Email adapter using GC Notify."""

import requests

from infrastructure.configuration.integrations import NotifySettings
from infrastructure.logging import get_module_logger, redact_identifier
from infrastructure.operations import OperationResult
from infrastructure.operations.classifiers import (
    classify_http_error,
    classify_request_exception,
)
from integrations.notify import parse_error_message, post_notification
from modules.notify.channels.base import ChannelAdapter, config_result, result_to_delivery
from modules.notify.domain import (
    ChannelCode,
    DeliveryRequest,
    DeliveryResult,
    ErrorCategory,
)

logger = get_module_logger()

PROVIDER_CODE = "gc_notify"


def notify_config_errors(notify_settings: NotifySettings, template_id: str) -> list:
    errors = []
    if not notify_settings.NOTIFY_API_URL:
        errors.append("NOTIFY_API_URL is not set")
    if not notify_settings.NOTIFY_SRE_USER_NAME:
        errors.append("NOTIFY_SRE_USER_NAME is not set")
    if not notify_settings.NOTIFY_SRE_CLIENT_SECRET:
        errors.append("NOTIFY_SRE_CLIENT_SECRET is not set")
    if not template_id:
        errors.append("GC Notify template id is not set")
    return errors


def send_via_notify(
    notify_settings: NotifySettings,
    path: str,
    payload: dict,
    request: DeliveryRequest,
    channel: str,
) -> DeliveryResult:
    """POST to GC Notify and classify the outcome."""
    try:
        response = post_notification(notify_settings, path, payload)
    except ValueError as e:
        return DeliveryResult.failed(ErrorCategory.AUTH, str(e))
    except requests.RequestException as e:
        logger.warning(
            "gc_notify_request_failed",
            delivery_id=request.delivery_id,
            channel=channel,
            error=str(e),
        )
        return result_to_delivery(classify_request_exception(e, provider="GC Notify"))

    if response.status_code == 201:
        try:
            notification_id = response.json().get("id")
        except ValueError:
            notification_id = None
        logger.info(
            "gc_notify_sent",
            delivery_id=request.delivery_id,
            channel=channel,
            recipient=redact_identifier(request.recipient_addr),
            notification_id=notification_id,
        )
        return DeliveryResult.sent(external_id=notification_id)

    message = parse_error_message(response) or ""
    logger.warning(
        "gc_notify_send_failed",
        delivery_id=request.delivery_id,
        channel=channel,
        status_code=response.status_code,
        error=message,
    )
    return result_to_delivery(
        classify_http_error(
            response.status_code,
            message,
            retry_after=response.headers.get("Retry-After"),
            provider="GC Notify",
        )
    )


class GCNotifyEmailAdapter(ChannelAdapter):
    """Sends email through a GC Notify pass-through template.

    The template is expected to expose ``subject`` and ``body``
    personalisation fields.
    """

    channel_code = ChannelCode.EMAIL
    provider_code = PROVIDER_CODE

    def __init__(self, notify_settings: NotifySettings):
        self.settings = notify_settings

    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        errors = notify_config_errors(self.settings, self.settings.NOTIFY_EMAIL_TEMPLATE_ID)
        if errors:
            return DeliveryResult.failed(ErrorCategory.AUTH, "; ".join(errors))

        payload = {
            "email_address": request.recipient_addr,
            "template_id": self.settings.NOTIFY_EMAIL_TEMPLATE_ID,
            "personalisation": {
                "subject": request.subject or "",
                "body": request.body_text or request.body_html or "",
            },
            "reference": request.delivery_id,
        }
        return send_via_notify(
            self.settings, "/v2/notifications/email", payload, request, "email"
        )

    def validate_config(self) -> OperationResult:
        return config_result(
            notify_config_errors(self.settings, self.settings.NOTIFY_EMAIL_TEMPLATE_ID)
        )
