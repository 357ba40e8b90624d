"""
Completion Engine - Background Worker Entry Point

Runs the auto-approval sweep on APScheduler until interrupted.
"""

import asyncio
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from config.config import (
    AUTO_APPROVAL_ENABLED,
    AUTO_APPROVAL_INTERVAL_SECONDS,
    ENVIRONMENT,
    validate_config,
)
from config.logging import setup_logging
from config.sentry import init_sentry
from completion_engine.database.engine import check_connection, dispose_engine, init_db
from completion_engine.tasks.auto_approval_scheduler import schedule_auto_approval_tasks

# Background scheduler reference
_scheduler = None


async def on_startup() -> None:
    """Actions to perform on worker startup"""
    global _scheduler

    if not await check_connection():
        raise RuntimeError("Database is not reachable")

    # Create tables only outside production (migrations own the schema there)
    if ENVIRONMENT != "production":
        await init_db()

    if not AUTO_APPROVAL_ENABLED:
        logger.warning("Auto-approval disabled (AUTO_APPROVAL_ENABLED=false)")
        return

    _scheduler = AsyncIOScheduler()
    schedule_auto_approval_tasks(_scheduler, AUTO_APPROVAL_INTERVAL_SECONDS)
    _scheduler.start()
    logger.info("Auto-approval scheduler started")


async def on_shutdown() -> None:
    """Actions to perform on worker shutdown"""
    global _scheduler

    logger.info("Shutting down worker...")

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Auto-approval scheduler stopped")

    await dispose_engine()
    logger.info("Database connections closed")


async def main() -> None:
    """Main worker function"""

    # Setup logging
    setup_logging()

    # Initialize Sentry error monitoring
    init_sentry()

    # Validate configuration
    try:
        validate_config()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        sys.exit(1)

    logger.info("Configuration validated successfully")

    try:
        await on_startup()
        # Run until cancelled (Ctrl+C / SIGTERM)
        await asyncio.Event().wait()
    except Exception as e:
        logger.exception(f"Critical error during worker operation: {e}")
        raise
    finally:
        await on_shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)
