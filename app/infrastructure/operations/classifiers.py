"""Error classifiers for provider responses and exceptions.

Converts provider-specific failures (HTTP status codes with optional
provider sub-codes, ``requests`` exceptions, Slack API errors) into
standardized OperationResult objects so adapters share one mapping.

Key Functions:
- classify_http_error(): HTTP status + provider error code → OperationResult
- classify_request_exception(): requests exceptions → OperationResult
- classify_slack_error(): slack_sdk SlackApiError → OperationResult

Usage:
    from infrastructure.operations.classifiers import classify_http_error

    response = requests.post(url, json=payload, timeout=30)
    if response.status_code >= 400:
        return classify_http_error(response.status_code, response.text)
"""

from typing import Iterable, Optional, Tuple

import requests
from slack_sdk.errors import SlackApiError

from infrastructure.operations.result import OperationResult

SLACK_AUTH_ERRORS = frozenset(
    {
        "not_authed",
        "invalid_auth",
        "account_inactive",
        "token_revoked",
        "token_expired",
        "missing_scope",
    }
)

SLACK_PERMANENT_ERRORS = frozenset(
    {
        "channel_not_found",
        "user_not_found",
        "is_archived",
        "msg_too_long",
        "no_text",
        "cannot_dm_bot",
        "not_in_channel",
    }
)


def _parse_retry_after(value: Optional[str], default: int = 60) -> int:
    if not value:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def classify_http_error(
    status_code: int,
    message: str = "",
    provider_error_code: Optional[int] = None,
    permanent_code_range: Optional[Tuple[int, int]] = None,
    rate_limit_codes: Iterable[int] = (),
    retry_after: Optional[str] = None,
    provider: str = "provider",
) -> OperationResult:
    """Classify an HTTP error response into OperationResult.

    Status Code Mapping (first match wins):
    - 429 or provider rate-limit code: TRANSIENT_ERROR flagged RATE_LIMITED
    - 401/403: UNAUTHORIZED
    - provider code inside permanent_code_range: PERMANENT_ERROR
    - 5xx: TRANSIENT_ERROR
    - other 4xx: PERMANENT_ERROR

    Args:
        status_code: HTTP status code of the response
        message: Provider error message, used for logs and DLQ context
        provider_error_code: Numeric error code from the provider body
        permanent_code_range: Half-open [low, high) range of provider codes
            documented as permanent failures
        rate_limit_codes: Provider codes documented as throttling
        retry_after: Raw Retry-After header value, if any
        provider: Provider name used in messages

    Returns:
        OperationResult with appropriate status, message, error_code, and
        retry_after (if applicable)
    """
    detail = f"{provider} error ({status_code})"
    if message:
        detail = f"{detail}: {message}"

    if status_code == 429 or (
        provider_error_code is not None and provider_error_code in rate_limit_codes
    ):
        return OperationResult.rate_limited(
            f"{provider} rate limited",
            retry_after=_parse_retry_after(retry_after),
        )

    if status_code in (401, 403):
        return OperationResult.unauthorized(
            detail, error_code="FORBIDDEN" if status_code == 403 else "UNAUTHORIZED"
        )

    if provider_error_code is not None and permanent_code_range is not None:
        low, high = permanent_code_range
        if low <= provider_error_code < high:
            return OperationResult.permanent_error(
                detail, error_code=f"PROVIDER_{provider_error_code}"
            )

    if 500 <= status_code < 600:
        return OperationResult.transient_error(detail, error_code="SERVER_ERROR")

    if 400 <= status_code < 500:
        return OperationResult.permanent_error(detail, error_code="HTTP_ERROR")

    return OperationResult.permanent_error(detail, error_code="UNKNOWN_ERROR")


def classify_request_exception(
    exc: Exception, provider: str = "provider"
) -> OperationResult:
    """Classify an exception raised while calling a provider.

    Timeouts and connection failures are transient. Anything else raised by
    ``requests`` is treated as transient as well since no response was
    received; non-requests exceptions are permanent.
    """
    if isinstance(exc, requests.Timeout):
        return OperationResult.transient_error(
            f"{provider} request timed out", error_code="TIMEOUT"
        )
    if isinstance(exc, requests.RequestException):
        return OperationResult.transient_error(
            f"{provider} connection error: {type(exc).__name__}: {str(exc)}",
            error_code="CONNECTION_ERROR",
        )
    return OperationResult.permanent_error(
        f"{provider} unexpected error: {type(exc).__name__}: {str(exc)}",
        error_code="UNEXPECTED_ERROR",
    )


def classify_slack_error(exc: Exception) -> OperationResult:
    """Classify slack_sdk errors into OperationResult.

    Error Mapping:
    - ratelimited / HTTP 429: RATE_LIMITED with Retry-After
    - auth error codes: UNAUTHORIZED
    - unknown target / invalid message: PERMANENT_ERROR
    - everything else (including network errors): TRANSIENT_ERROR
    """
    if not isinstance(exc, SlackApiError):
        return OperationResult.transient_error(
            f"Slack connection error: {type(exc).__name__}: {str(exc)}",
            error_code="CONNECTION_ERROR",
        )

    response = exc.response
    error = response.get("error", "") if response is not None else ""
    status_code = getattr(response, "status_code", None)

    if error == "ratelimited" or status_code == 429:
        headers = getattr(response, "headers", None) or {}
        return OperationResult.rate_limited(
            "Slack API rate limited",
            retry_after=_parse_retry_after(headers.get("Retry-After")),
        )

    if error in SLACK_AUTH_ERRORS:
        return OperationResult.unauthorized(f"Slack auth error: {error}")

    if error in SLACK_PERMANENT_ERRORS:
        return OperationResult.permanent_error(
            f"Slack rejected message: {error}", error_code=error.upper()
        )

    return OperationResult.transient_error(
        f"Slack API error: {error or 'unknown'}", error_code="SLACK_API_ERROR"
    )
