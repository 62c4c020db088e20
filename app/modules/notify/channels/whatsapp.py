"""WhatsApp adapter using the Meta Cloud API.

Supports two message types:
- Template messages (business-initiated, pre-approved by Meta), selected
  when ``body_json["type"] == "template"``
- Text messages, only inside the 24h customer service window opened by
  the recipient's last inbound message

Consent and the conversation window are checked before any network call.
"""

from typing import Any, Dict, Optional, Tuple

import requests

from infrastructure.configuration.integrations import WhatsAppSettings
from infrastructure.logging import get_module_logger, redact_identifier
from infrastructure.operations import OperationResult
from infrastructure.operations.classifiers import (
    classify_http_error,
    classify_request_exception,
)
from modules.notify.channels.base import ChannelAdapter, config_result, result_to_delivery
from modules.notify.domain import (
    ChannelCode,
    DeliveryRequest,
    DeliveryResult,
    ErrorCategory,
    utc_now,
)
from modules.notify.persistence import ConsentRepository

logger = get_module_logger()

# Meta error codes: 131xxx are message/recipient errors, 80007 is throttling
PERMANENT_CODE_RANGE = (131000, 132000)
RATE_LIMIT_CODES = (80007,)


def parse_error_response(response: requests.Response) -> Tuple[Optional[int], str]:
    """Return (error code, message) from a Graph API error body."""
    try:
        error = response.json().get("error") or {}
        return error.get("code"), error.get("message") or ""
    except (ValueError, AttributeError):
        return None, (response.text or "")[:200]


class WhatsAppAdapter(ChannelAdapter):
    channel_code = ChannelCode.WHATSAPP
    provider_code = "meta_cloud_api"

    def __init__(
        self,
        whatsapp_settings: WhatsAppSettings,
        consents: Optional[ConsentRepository] = None,
        clock=utc_now,
    ):
        self.settings = whatsapp_settings
        self.consents = consents
        self.clock = clock

    @property
    def messages_url(self) -> str:
        return (
            f"{self.settings.WHATSAPP_GRAPH_URL.rstrip('/')}/"
            f"{self.settings.WHATSAPP_API_VERSION}/"
            f"{self.settings.WHATSAPP_PHONE_NUMBER_ID}/messages"
        )

    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        if not self.settings.WHATSAPP_ACCESS_TOKEN:
            return DeliveryResult.failed(
                ErrorCategory.AUTH, "WHATSAPP_ACCESS_TOKEN is not set"
            )

        recipient = redact_identifier(request.recipient_addr)
        is_template = self._is_template(request)

        if self.consents is not None:
            if not self.consents.is_opted_in(request.tenant_id, request.recipient_addr):
                logger.info(
                    "whatsapp_recipient_not_opted_in",
                    delivery_id=request.delivery_id,
                    recipient=recipient,
                )
                return DeliveryResult.failed(
                    ErrorCategory.PERMANENT,
                    "Recipient has not opted in to WhatsApp notifications",
                )
            if not is_template and not self.consents.is_in_conversation_window(
                request.tenant_id, request.recipient_addr, self.clock()
            ):
                logger.info(
                    "whatsapp_outside_conversation_window",
                    delivery_id=request.delivery_id,
                    recipient=recipient,
                )
                return DeliveryResult.failed(
                    ErrorCategory.PERMANENT,
                    "Non-template message requires an active 24h conversation window",
                )

        try:
            response = requests.post(
                self.messages_url,
                json=self.build_payload(request),
                headers={
                    "Authorization": f"Bearer {self.settings.WHATSAPP_ACCESS_TOKEN}",
                    "Content-Type": "application/json",
                },
                timeout=self.settings.WHATSAPP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(
                "whatsapp_network_error",
                delivery_id=request.delivery_id,
                error=str(e),
            )
            return result_to_delivery(classify_request_exception(e, provider="WhatsApp"))

        if response.ok:
            try:
                messages = response.json().get("messages") or []
            except ValueError:
                messages = []
            message_id = messages[0].get("id") if messages else None
            logger.info(
                "whatsapp_message_sent",
                delivery_id=request.delivery_id,
                recipient=recipient,
                message_id=message_id,
            )
            return DeliveryResult.sent(external_id=message_id)

        code, message = parse_error_response(response)
        logger.warning(
            "whatsapp_send_failed",
            delivery_id=request.delivery_id,
            status_code=response.status_code,
            error_code=code,
            error=message[:500],
        )
        return result_to_delivery(
            classify_http_error(
                response.status_code,
                message,
                provider_error_code=code,
                permanent_code_range=PERMANENT_CODE_RANGE,
                rate_limit_codes=RATE_LIMIT_CODES,
                retry_after=response.headers.get("Retry-After"),
                provider="WhatsApp",
            )
        )

    @staticmethod
    def _is_template(request: DeliveryRequest) -> bool:
        return bool(request.body_json) and request.body_json.get("type") == "template"

    def build_payload(self, request: DeliveryRequest) -> Dict[str, Any]:
        """Build the Cloud API message body (template or text)."""
        payload: Dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": request.recipient_addr,
        }
        if self._is_template(request):
            body = request.body_json
            payload["type"] = "template"
            payload["template"] = {
                "name": body.get("name"),
                "language": {"code": body.get("language_code") or "en"},
                "components": body.get("components") or [],
            }
            return payload

        payload["type"] = "text"
        payload["text"] = {
            "preview_url": False,
            "body": request.body_text or request.subject or "(No content)",
        }
        return payload

    def validate_config(self) -> OperationResult:
        errors = []
        if not self.settings.WHATSAPP_ACCESS_TOKEN:
            errors.append("WHATSAPP_ACCESS_TOKEN is not set")
        if not self.settings.WHATSAPP_PHONE_NUMBER_ID:
            errors.append("WHATSAPP_PHONE_NUMBER_ID is not set")
        return config_result(errors)
