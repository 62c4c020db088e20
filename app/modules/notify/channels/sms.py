"""SMS adapter using GC Notify.

Requires phone numbers in E.164 format (+1234567890).
"""

from infrastructure.configuration.integrations import NotifySettings
from infrastructure.logging import get_module_logger, redact_identifier
from infrastructure.operations import OperationResult
from modules.notify.channels.base import ChannelAdapter, config_result
from modules.notify.channels.email import (
    PROVIDER_CODE,
    notify_config_errors,
    send_via_notify,
)
from modules.notify.domain import (
    ChannelCode,
    DeliveryRequest,
    DeliveryResult,
    ErrorCategory,
)

logger = get_module_logger()

# GC Notify SMS limit
MAX_SMS_LENGTH = 1600


def validate_phone(phone: str) -> OperationResult:
    """Validate an E.164 phone number."""
    phone = (phone or "").strip()
    if not phone.startswith("+"):
        return OperationResult.permanent_error(
            message="Phone number must be in E.164 format (+1234567890)",
            error_code="INVALID_PHONE_FORMAT",
        )
    digits = phone[1:]
    if not digits.isdigit() or len(digits) < 1 or len(digits) > 15:
        return OperationResult.permanent_error(
            message="Phone number must have 1-15 digits after +",
            error_code="INVALID_PHONE_LENGTH",
        )
    return OperationResult.success(data={"phone_number": phone})


class GCNotifySmsAdapter(ChannelAdapter):
    channel_code = ChannelCode.SMS
    provider_code = PROVIDER_CODE

    def __init__(self, notify_settings: NotifySettings):
        self.settings = notify_settings

    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        errors = notify_config_errors(self.settings, self.settings.NOTIFY_SMS_TEMPLATE_ID)
        if errors:
            return DeliveryResult.failed(ErrorCategory.AUTH, "; ".join(errors))

        phone = validate_phone(request.recipient_addr)
        if not phone.is_success:
            return DeliveryResult.failed(ErrorCategory.PERMANENT, phone.message)

        body = request.body_text or request.subject or ""
        if request.subject and request.body_text:
            body = f"{request.subject}: {request.body_text}"
        if len(body) > MAX_SMS_LENGTH:
            logger.warning(
                "sms_message_truncated",
                recipient=redact_identifier(request.recipient_addr),
                original_length=len(body),
            )
            body = body[: MAX_SMS_LENGTH - 3] + "..."

        payload = {
            "phone_number": phone.data["phone_number"],
            "template_id": self.settings.NOTIFY_SMS_TEMPLATE_ID,
            "personalisation": {"body": body},
            "reference": request.delivery_id,
        }
        return send_via_notify(
            self.settings, "/v2/notifications/sms", payload, request, "sms"
        )

    def validate_config(self) -> OperationResult:
        return config_result(
            notify_config_errors(self.settings, self.settings.NOTIFY_SMS_TEMPLATE_ID)
        )
