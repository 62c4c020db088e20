"""Web push adapter (VAPID).

Subscriptions are registered per recipient; a delivery is sent to every
subscription of the recipient and succeeds if any endpoint accepts it.
Expired subscriptions (404/410) are removed.
"""

import json
import time
from typing import Dict, Optional
from urllib.parse import urlparse

import jwt
import requests

from infrastructure.configuration.integrations import WebPushSettings
from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult
from modules.notify.channels.base import ChannelAdapter, config_result
from modules.notify.domain import (
    ChannelCode,
    DeliveryRequest,
    DeliveryResult,
    ErrorCategory,
    PushSubscription,
)
from modules.notify.persistence import PushSubscriptionRepository

logger = get_module_logger()

VAPID_TOKEN_LIFETIME_SECONDS = 12 * 3600
GONE_STATUS_CODES = (404, 410)


def create_vapid_token(private_key: str, audience: str, subject: str) -> str:
    """Sign a VAPID JWT (ES256) for a push service origin."""
    claims = {
        "aud": audience,
        "exp": int(time.time()) + VAPID_TOKEN_LIFETIME_SECONDS,
        "sub": subject,
    }
    return jwt.encode(claims, private_key, algorithm="ES256")


class WebPushAdapter(ChannelAdapter):
    channel_code = ChannelCode.PUSH
    provider_code = "web_push"

    def __init__(
        self,
        web_push_settings: WebPushSettings,
        subscriptions: PushSubscriptionRepository,
    ):
        self.settings = web_push_settings
        self.subscriptions = subscriptions

    def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        if not self.settings.WEB_PUSH_VAPID_PRIVATE_KEY:
            return DeliveryResult.failed(
                ErrorCategory.AUTH, "WEB_PUSH_VAPID_PRIVATE_KEY is not set"
            )

        subscriptions = self.subscriptions.list_for_recipient(
            request.tenant_id, request.recipient_id
        )
        if not subscriptions:
            return DeliveryResult.failed(
                ErrorCategory.PERMANENT, "No push subscriptions found for recipient"
            )

        body = json.dumps(
            {
                "title": request.subject or "Notification",
                "body": request.body_text or "",
                "tag": request.metadata.get("message_id"),
                "data": {
                    "delivery_id": request.delivery_id,
                    "message_id": request.metadata.get("message_id"),
                    "url": request.metadata.get("action_url"),
                },
            }
        )

        accepted = 0
        gone = 0
        last_error: Optional[str] = None
        for subscription in subscriptions:
            try:
                status_code = self._send(subscription, body)
            except (jwt.PyJWTError, ValueError) as e:
                logger.error("vapid_signing_failed", error=str(e))
                return DeliveryResult.failed(
                    ErrorCategory.AUTH, f"VAPID signing failed: {e}"
                )
            except requests.RequestException as e:
                last_error = f"Push service unreachable: {type(e).__name__}"
                continue

            if status_code in (200, 201, 202):
                accepted += 1
            elif status_code in GONE_STATUS_CODES:
                gone += 1
                logger.info(
                    "push_subscription_expired",
                    delivery_id=request.delivery_id,
                    endpoint_host=urlparse(subscription.endpoint).hostname,
                    status_code=status_code,
                )
                self.subscriptions.remove(request.tenant_id, subscription.endpoint)
            else:
                last_error = f"Push service returned {status_code}"

        if accepted:
            logger.info(
                "push_notification_sent",
                delivery_id=request.delivery_id,
                recipient_id=request.recipient_id,
                accepted=accepted,
                subscriptions=len(subscriptions),
            )
            return DeliveryResult.sent(
                provider_response={"accepted": accepted, "targeted": len(subscriptions)}
            )

        if gone == len(subscriptions):
            return DeliveryResult.failed(
                ErrorCategory.PERMANENT, "All push subscriptions have expired"
            )
        return DeliveryResult.failed(
            ErrorCategory.TRANSIENT, last_error or "All push subscriptions failed"
        )

    def _send(self, subscription: PushSubscription, body: str) -> int:
        endpoint = urlparse(subscription.endpoint)
        token = create_vapid_token(
            self.settings.WEB_PUSH_VAPID_PRIVATE_KEY,
            f"{endpoint.scheme}://{endpoint.netloc}",
            self.settings.WEB_PUSH_VAPID_SUBJECT,
        )
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "TTL": str(self.settings.WEB_PUSH_TTL_SECONDS),
            "Urgency": "normal",
            "Authorization": f"vapid t={token}, k={self.settings.WEB_PUSH_VAPID_PUBLIC_KEY}",
        }
        response = requests.post(
            subscription.endpoint,
            data=body,
            headers=headers,
            timeout=self.settings.WEB_PUSH_TIMEOUT_SECONDS,
        )
        return response.status_code

    def validate_config(self) -> OperationResult:
        errors = []
        if not self.settings.WEB_PUSH_VAPID_PRIVATE_KEY:
            errors.append("WEB_PUSH_VAPID_PRIVATE_KEY is not set")
        if not self.settings.WEB_PUSH_VAPID_PUBLIC_KEY:
            errors.append("WEB_PUSH_VAPID_PUBLIC_KEY is not set")
        if not self.settings.WEB_PUSH_VAPID_SUBJECT:
            errors.append("WEB_PUSH_VAPID_SUBJECT is not set")
        return config_result(errors)
