"""Provider callback normalization.

Turns raw webhook bodies from Meta (WhatsApp Cloud API) and GC Notify
into ProcessCallbackPayload records the delivery executor understands.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from infrastructure.logging import get_module_logger
from modules.notify.channels.email import PROVIDER_CODE as GC_NOTIFY_PROVIDER
from modules.notify.channels.whatsapp import WhatsAppAdapter
from modules.notify.domain import CallbackError, ProcessCallbackPayload, utc_now

logger = get_module_logger()

WHATSAPP_PROVIDER = WhatsAppAdapter.provider_code

# GC Notify delivery receipts use their own status vocabulary
GC_NOTIFY_STATUS_MAP = {
    "delivered": "delivered",
    "permanent-failure": "bounced",
    "temporary-failure": "failed",
    "technical-failure": "failed",
}

PROVIDER_ALIASES = {
    "whatsapp": WHATSAPP_PROVIDER,
    WHATSAPP_PROVIDER: WHATSAPP_PROVIDER,
    "notify": GC_NOTIFY_PROVIDER,
    GC_NOTIFY_PROVIDER: GC_NOTIFY_PROVIDER,
}


def _from_epoch(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return utc_now()


def _from_iso(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        return utc_now()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return utc_now()
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_whatsapp_webhook(
    body: Dict[str, Any], tenant_id: Optional[str]
) -> List[ProcessCallbackPayload]:
    """Extract status updates and incoming messages from a Meta webhook."""
    callbacks: List[ProcessCallbackPayload] = []
    for entry in body.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for status in value.get("statuses") or []:
                callbacks.append(
                    ProcessCallbackPayload(
                        provider_code=WHATSAPP_PROVIDER,
                        kind="status",
                        tenant_id=tenant_id,
                        external_id=status.get("id"),
                        status=status.get("status"),
                        timestamp=_from_epoch(status.get("timestamp")),
                        errors=[
                            CallbackError(
                                code=error.get("code"),
                                title=error.get("title"),
                                message=error.get("message")
                                or (error.get("error_data") or {}).get("details"),
                            )
                            for error in status.get("errors") or []
                        ],
                        raw=status,
                    )
                )
            for message in value.get("messages") or []:
                callbacks.append(
                    ProcessCallbackPayload(
                        provider_code=WHATSAPP_PROVIDER,
                        kind="incoming",
                        tenant_id=tenant_id,
                        external_id=message.get("id"),
                        sender=message.get("from"),
                        timestamp=_from_epoch(message.get("timestamp")),
                        raw=message,
                    )
                )
    return callbacks


def parse_gc_notify_callback(
    body: Dict[str, Any], tenant_id: Optional[str]
) -> List[ProcessCallbackPayload]:
    """Map a GC Notify delivery receipt onto a status callback."""
    raw_status = body.get("status")
    status = GC_NOTIFY_STATUS_MAP.get(raw_status)
    if status is None or not body.get("id"):
        logger.debug("gc_notify_callback_ignored", status=raw_status)
        return []

    errors = []
    if status != "delivered":
        errors.append(CallbackError(title=raw_status, message=body.get("provider_response")))
    return [
        ProcessCallbackPayload(
            provider_code=GC_NOTIFY_PROVIDER,
            kind="status",
            tenant_id=tenant_id,
            external_id=body["id"],
            status=status,
            timestamp=_from_iso(body.get("completed_at") or body.get("sent_at")),
            errors=errors,
            raw=body,
        )
    ]


PARSERS = {
    WHATSAPP_PROVIDER: parse_whatsapp_webhook,
    GC_NOTIFY_PROVIDER: parse_gc_notify_callback,
}


def normalize_callbacks(
    provider: str, body: Dict[str, Any], tenant_id: Optional[str] = None
) -> Optional[List[ProcessCallbackPayload]]:
    """Normalize a webhook body.

    Returns:
        The callbacks found in body, or None when the provider is unknown.
    """
    provider_code = PROVIDER_ALIASES.get(provider.lower())
    if provider_code is None:
        return None
    return PARSERS[provider_code](body, tenant_id)
