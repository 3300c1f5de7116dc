"""Shared HTTP session helpers for source and target clients."""

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

# 429 is left out: rate limits are surfaced to the pipeline, never retried here
RETRY_STATUSES = [500, 502, 503, 504]


def create_session(
    headers: Optional[Dict[str, str]] = None,
    max_retries: int = 3,
    backoff_factor: float = 1.0
) -> requests.Session:
    """
    Create a requests session with retry logic for transient server errors.

    Args:
        headers: Default headers (authentication, API version, ...)
        max_retries: Retries per request for 5xx responses
        backoff_factor: Exponential backoff factor between retries

    Returns:
        Configured session
    """
    session = requests.Session()

    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=["GET"],
        respect_retry_after_header=False,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    session.headers["Accept"] = "application/json"
    if headers:
        session.headers.update(headers)

    return session


def retry_after_seconds(response: requests.Response) -> Optional[float]:
    """Read the Retry-After header as seconds; None if absent or not numeric."""
    value = response.headers.get("Retry-After") or response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        logger.debug(f"Ignoring non-numeric Retry-After header: {value!r}")
        return None


def response_json(response: requests.Response) -> Any:
    """Decode a JSON body, returning None for empty or non-JSON bodies."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def error_details(response: requests.Response) -> Dict[str, Optional[str]]:
    """
    Pull a readable message and error code out of an error response.

    Understands the common shapes: {"error": {"message", "code"}},
    {"errors": [{"detail"}]}, {"message", "code"} and {"detail"}.
    """
    body = response_json(response)
    message = None
    code = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            code = error.get("code") or error.get("type")
        elif isinstance(error, str):
            message = error

        errors = body.get("errors")
        if message is None and isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("detail") or errors[0].get("title")
            code = code or errors[0].get("code")

        if message is None:
            detail = body.get("detail")
            if isinstance(detail, list):
                detail = "; ".join(
                    str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail
                )
            message = body.get("message") or detail
        code = code or body.get("code")

    if message is None:
        text = (response.text or "").strip()
        message = text[:200] if text else response.reason or f"HTTP {response.status_code}"

    return {"message": str(message), "code": str(code) if code is not None else None}
