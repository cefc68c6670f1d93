"""Universal logfire setup for the application."""

import logging
import logfire

from typing import Any

from fastapi import FastAPI, Request

from utils.settings import Settings

SERVICE_NAME = "session-gateway"

# Matched against attribute keys on top of logfire's default patterns
SCRUB_PATTERNS = ["token", "password_hash"]


def configure_logging(settings: Settings) -> None:
    """Configure logfire and route standard-library logging into it.

    Records are only shipped to logfire when `LOGFIRE_WRITE_TOKEN` is present;
    otherwise they stay on the console.
    """
    logfire.configure(
        token=settings.logfire_token,
        send_to_logfire="if-token-present",
        service_name=SERVICE_NAME,
        environment=settings.environment,
        scrubbing=logfire.ScrubbingOptions(extra_patterns=SCRUB_PATTERNS),
    )
    logging.basicConfig(level=logging.INFO, handlers=[logfire.LogfireLoggingHandler()])


def redact_request_attributes(request: Request, attributes: dict[str, Any]) -> dict[str, Any] | None:
    """Keep validation error locations, never endpoint argument values.

    Request bodies carry passwords and refresh tokens, and pydantic errors
    echo the offending input.
    """
    errors = [
        {key: value for key, value in error.items() if key not in {"input", "ctx"}}
        for error in attributes.get("errors") or []
    ]
    if not errors:
        return None
    return {"errors": errors}


def instrument_libraries(app: FastAPI) -> None:
    """Instrument the app and its storage drivers for better observability."""
    logfire.instrument_fastapi(app, request_attributes_mapper=redact_request_attributes)
    logfire.instrument_pymongo()
    logfire.instrument_redis()
