"""
Community Mail - Sentry Integration

Error tracking with Sentry. Membership secrets, one-time passwords, bearer
tokens and avatar payloads are stripped from events before they leave the
process.
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = (
    "password", "token", "secret", "api_key", "authorization",
    "jwt", "cookie", "private_key", "photo", "avatar",
)

REDACTED = "[REDACTED]"


def init_sentry(
    dsn: Optional[str],
    environment: str = "development",
    release: Optional[str] = None,
    sample_rate: float = 1.0,
    traces_sample_rate: float = 0.1,
) -> bool:
    """
    Initialize Sentry error tracking.

    Returns:
        True if Sentry was initialized, False when no DSN is configured
    """
    if not dsn:
        logger.info("Sentry DSN not configured. Error tracking disabled.")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        sample_rate=sample_rate,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        send_default_pii=False,
        before_send=filter_sensitive_data,
        ignore_errors=[ConnectionResetError, BrokenPipeError],
    )
    logger.info(f"Sentry initialized for environment: {environment}")
    return True


def redact(value: Any) -> Any:
    """Recursively replace values under sensitive keys"""
    if isinstance(value, dict):
        return {
            key: REDACTED if any(s in str(key).lower() for s in SENSITIVE_KEYS) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    request = event.get("request")
    if isinstance(request, dict):
        for key in ("headers", "data", "cookies"):
            if key in request:
                request[key] = redact(request[key])

    if "extra" in event:
        event["extra"] = redact(event["extra"])

    return event


def capture_exception(exception: Exception, **context) -> Optional[str]:
    """Capture an exception with extra context; returns the event id"""
    with sentry_sdk.new_scope() as scope:
        for key, value in redact(context).items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)
