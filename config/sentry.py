# coding: utf-8
"""
Sentry configuration for error monitoring and tracking
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT


def init_sentry() -> None:
    """
    Initialize Sentry SDK for error monitoring

    Crediting failures that exhaust their retries are logged at ERROR and
    end up here through the loguru sentry sink.
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,  # IP addresses stay out of Sentry
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """
    Filter events before sending to Sentry
    """
    if "exc_info" in hint:
        exc_type, exc_value, tb = hint["exc_info"]

        if isinstance(exc_value, KeyboardInterrupt):
            return None

    # Strip network identifiers attached through logger.bind()
    extra = event.get("extra")
    if extra:
        for key in ("ip_address", "user_agent"):
            if key in extra:
                extra[key] = "[Filtered]"

    return event


def capture_exception(error: Exception, **extra_context):
    """
    Manually capture an exception with extra context

    Args:
        error: Exception to capture
        extra_context: Additional context data
    """
    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)

        sentry_sdk.capture_exception(error)
