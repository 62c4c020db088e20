"""GC Notify client."""

import calendar
import json
import time
from typing import Any, Dict, Optional

import jwt
import requests

from infrastructure.configuration.integrations import NotifySettings
from infrastructure.logging import get_module_logger

logger = get_module_logger()


# generate the epoch seconds for the jwt token
def epoch_seconds():
    return calendar.timegm(time.gmtime())


def create_jwt_token(secret, client_id):
    """
    Generate a JWT Token for the Notify API

    Tokens have a header consisting of:
    {
        "typ": "JWT",
        "alg": "HS256"
    }

    Parameters:
    secret: Application signing secret
    client_id: Identifier for the client

    Claims are:
    iss: identifier for the client
    iat: epoch seconds for the token (UTC)

    Returns a JWT token for this request
    """
    if not secret:
        logger.error("jwt_token_creation_failed", error="Missing secret key")
        raise ValueError("Missing secret key")
    if not client_id:
        logger.error("jwt_token_creation_failed", error="Missing client id")
        raise ValueError("Missing client id")

    headers = {"typ": "JWT", "alg": "HS256"}

    claims = {"iss": client_id, "iat": epoch_seconds()}
    return jwt.encode(payload=claims, key=secret, headers=headers)


def create_authorization_header(notify_settings: NotifySettings):
    """Create the authorization header for the Notify API"""
    client_id = notify_settings.NOTIFY_SRE_USER_NAME
    secret = notify_settings.NOTIFY_SRE_CLIENT_SECRET

    if not client_id:
        error = "NOTIFY_SRE_USER_NAME is missing"
        logger.error("authorization_header_creation_failed", error=error)
        raise ValueError(error)
    if not secret:
        error = "NOTIFY_SRE_CLIENT_SECRET is missing"
        logger.error("authorization_header_creation_failed", error=error)
        raise ValueError(error)

    token = create_jwt_token(secret=secret, client_id=client_id)
    return "Authorization", "Bearer {}".format(token)


def post_notification(
    notify_settings: NotifySettings, path: str, payload: Dict[str, Any]
) -> requests.Response:
    """POST a notification request to GC Notify.

    Args:
        notify_settings: Credentials, base URL and timeout
        path: API path, e.g. ``/v2/notifications/email``
        payload: JSON body

    Raises:
        ValueError: If credentials are missing
        requests.RequestException: On network failures
    """
    header_key, header_value = create_authorization_header(notify_settings)
    headers = {header_key: header_value, "Content-Type": "application/json"}

    url = notify_settings.NOTIFY_API_URL.rstrip("/") + path
    return requests.post(
        url,
        data=json.dumps(payload),
        headers=headers,
        timeout=notify_settings.NOTIFY_TIMEOUT_SECONDS,
    )


def parse_error_message(response: requests.Response) -> Optional[str]:
    """First error message from a GC Notify error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] if response.text else None
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors:
        first = errors[0]
        return first.get("message") or first.get("error")
    return None
