import os
from typing import Optional

import sentry_sdk
from sentry_sdk import capture_exception
from sentry_sdk import capture_message


def is_production() -> bool:
    return os.getenv("ROSTERSYNC_APP_ENV") == "PRODUCTION"


def init_sentry() -> bool:
    dsn = os.environ.get("ROSTERSYNC_SENTRY_DSN")
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("ROSTERSYNC_APP_ENV", "development").lower(),
        traces_sample_rate=0.0,
    )
    return True


def capture_error(
    message: str,
    error: BaseException,
    extra: Optional[dict],
) -> None:
    if not is_production():
        return

    if extra:
        extra = dict(extra)
        extra["message"] = message
        sentry_sdk.set_extra("context", extra)

    capture_exception(error)


def capture_warning(message: str, extra: Optional[dict] = None) -> None:
    if not is_production():
        return

    if extra:
        sentry_sdk.set_context("context", extra)

    capture_message(message, level="warning")
