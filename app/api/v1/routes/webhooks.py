import json
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Body, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from api.dependencies.rate_limits import get_limiter
from infrastructure.logging import bind_request_context, get_module_logger
from infrastructure.queue import BackoffOptions, JobOptions
from infrastructure.services import JobQueueDep, SettingsDep
from modules.notify.callbacks import normalize_callbacks
from modules.notify.domain import JobType

logger = get_module_logger()
router = APIRouter(tags=["Webhooks"])
limiter = get_limiter()

CALLBACK_JOB_ATTEMPTS = 5
CALLBACK_JOB_BACKOFF_MS = 1000


@router.get("/webhooks/whatsapp", response_class=PlainTextResponse)
def verify_whatsapp_webhook(
    settings: SettingsDep,
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Answer Meta's webhook subscription handshake."""
    expected = settings.whatsapp.WHATSAPP_VERIFY_TOKEN
    if mode == "subscribe" and expected and token == expected:
        logger.info("whatsapp_webhook_verified")
        return challenge or ""
    logger.warning("whatsapp_webhook_verification_failed", mode=mode)
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhooks/{provider}")
@limiter.limit("600/minute")
def receive_provider_webhook(
    provider: str,
    request: Request,
    settings: SettingsDep,
    queue: JobQueueDep,
    payload: Union[Dict[Any, Any], str] = Body(...),
    tenant_id: Optional[str] = Query(default=None),
):
    """Accept a provider status or incoming-message webhook.

    Each normalized callback is enqueued as a process-callback job and the
    provider gets an immediate response.

    Returns:
        dict: ``{"accepted": n}`` with the number of callbacks enqueued.
    """
    tenant = tenant_id or settings.server.WEBHOOK_DEFAULT_TENANT_ID
    with bind_request_context(
        tenant_id=tenant,
        provider=provider,
        request_path=request.url.path,
        request_method=request.method,
    ):
        if isinstance(payload, dict):
            body = payload
        else:
            try:
                body = json.loads(payload)
            except json.JSONDecodeError as e:
                logger.error("webhook_payload_invalid", error=str(e))
                raise HTTPException(status_code=400, detail=str(e)) from e
            if not isinstance(body, dict):
                raise HTTPException(status_code=400, detail="Payload must be an object")

        callbacks = normalize_callbacks(provider, body, tenant)
        if callbacks is None:
            raise HTTPException(status_code=404, detail="Unknown provider")

        for callback in callbacks:
            queue.add(
                JobType.PROCESS_CALLBACK.value,
                callback.model_dump(mode="json"),
                JobOptions(
                    attempts=CALLBACK_JOB_ATTEMPTS,
                    backoff=BackoffOptions(
                        type="exponential", delay_ms=CALLBACK_JOB_BACKOFF_MS
                    ),
                    remove_on_complete=True,
                ),
            )
        logger.info("webhook_callbacks_enqueued", accepted=len(callbacks))
        return {"accepted": len(callbacks)}
