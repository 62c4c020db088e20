"""Request and job context binding for structured logging.

This module binds request-scoped (webhooks) and job-scoped (queue workers)
context to logs so correlation IDs, tenant ids and job ids flow through
every log entry emitted while handling one unit of work.

Usage:
    from infrastructure.logging import bind_request_context, bind_job_context

    with bind_request_context(provider="whatsapp", tenant_id="t1"):
        logger.info("webhook_received")

    with bind_job_context(job_id=job.id, job_type=job.job_type):
        handler(job.payload)

Dependencies:
    - structlog.contextvars
"""

import uuid
from contextlib import contextmanager
from typing import Optional, Any, Generator
import structlog


def _bind(context: dict[str, Any]) -> Generator[None, None, None]:
    structlog.contextvars.bind_contextvars(**context)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*context.keys())


@contextmanager
def bind_request_context(
    correlation_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    provider: Optional[str] = None,
    request_path: Optional[str] = None,
    request_method: Optional[str] = None,
    **extra_context: Any,
) -> Generator[None, None, None]:
    """Bind request-scoped context to all logs within the context manager.

    Args:
        correlation_id: Unique request identifier. Auto-generated if not provided.
        tenant_id: Tenant the request belongs to (if known).
        provider: Provider code of an inbound webhook.
        request_path: HTTP request path.
        request_method: HTTP method.
        **extra_context: Additional key-value pairs to include in logs.

    Yields:
        None - context is bound to structlog's context vars.
    """
    context: dict[str, Any] = {"correlation_id": correlation_id or str(uuid.uuid4())}

    if tenant_id is not None:
        context["tenant_id"] = tenant_id

    if provider is not None:
        context["provider"] = provider

    if request_path is not None:
        context["request_path"] = request_path

    if request_method is not None:
        context["request_method"] = request_method

    context.update(extra_context)

    yield from _bind(context)


@contextmanager
def bind_job_context(
    job_id: str,
    job_type: str,
    worker_id: Optional[str] = None,
    **extra_context: Any,
) -> Generator[None, None, None]:
    """Bind job-scoped context while a queue worker runs a handler.

    The job id doubles as the correlation id unless one is already bound.
    """
    context: dict[str, Any] = {"job_id": job_id, "job_type": job_type}
    if worker_id is not None:
        context["worker_id"] = worker_id
    if get_correlation_id() is None:
        context["correlation_id"] = job_id
    context.update(extra_context)

    yield from _bind(context)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from the logging context.

    Returns:
        The correlation ID if set, None otherwise.
    """
    ctx = structlog.contextvars.get_contextvars()
    return ctx.get("correlation_id")


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID in the current logging context."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_request_context() -> None:
    """Clear all request-scoped context from the logging context.

    Called at the end of request processing to prevent context leakage
    between requests.
    """
    structlog.contextvars.clear_contextvars()
