"""
Gavel Governance Service
========================

Runs the community governance engine as a long-lived service: opens the
governance database, wires the collaborators, and keeps the periodic signal
rebuild and rogue-moderator sweep running until interrupted.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.
    Resolution order:
    1. GAVEL_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("GAVEL_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
from typing import Optional

import discord
from dotenv import load_dotenv

from gavel.collaborators.interfaces import NotificationDispatcher
from gavel.collaborators.sqlite_collaborators import (
    SQLiteAccountStatusEngine,
    SQLiteAnomalyFeed,
    SQLiteContentReportStore,
    SQLiteTrustProfileReader,
)
from gavel.configuration.app_configuration import app_config
from gavel.database.database import Database
from gavel.engine import GovernanceEngine
from gavel.governance.rate_limiter import build_rules
from gavel.notifications.discord_notifier import (
    DiscordNotificationDispatcher,
    LoggingNotificationDispatcher,
)
from gavel.scheduler.batch_jobs import rebuild_signals, sweep_moderators
from gavel.scheduler.periodic_scheduler import PeriodicJobScheduler
from gavel.util.logger import get_logger, handle_exception

logger = get_logger("main")


def load_environment() -> Optional[str]:
    """Load ``.env`` from the base directory and return the Discord bot token, if any."""
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.warning("'DISCORD_BOT_TOKEN' not set; enforcement notices will only be logged.")
    return token or None


async def create_notifier(token: Optional[str]) -> tuple[NotificationDispatcher, Optional[discord.Client]]:
    """Log a py-cord client in for DM delivery, or fall back to the logging dispatcher."""
    if not token or not app_config.notifications_enabled:
        return LoggingNotificationDispatcher(), None

    client = discord.Client(intents=discord.Intents.none())
    try:
        await client.login(token)
    except discord.LoginFailure as exc:
        logger.error("Discord login failed (%s); enforcement notices will only be logged.", exc)
        await client.close()
        return LoggingNotificationDispatcher(), None

    logger.info("Discord notifications enabled.")
    return DiscordNotificationDispatcher(client), client


def build_engine(db: Database, notifier: NotificationDispatcher) -> GovernanceEngine:
    """Wire the engine to the database-backed collaborators and configured limits."""
    return GovernanceEngine(
        db,
        trust_profiles=SQLiteTrustProfileReader(db),
        reports=SQLiteContentReportStore(db),
        anomalies=SQLiteAnomalyFeed(db),
        account_status=SQLiteAccountStatusEngine(db),
        notifier=notifier,
        rate_limits=build_rules(app_config.rate_limits),
        notifications_enabled=app_config.notifications_enabled,
    )


def build_schedulers(engine: GovernanceEngine) -> list[PeriodicJobScheduler]:
    settings = app_config.batch_jobs
    return [
        PeriodicJobScheduler(
            "SIGNAL REBUILD",
            lambda: rebuild_signals(engine, settings),
            lambda: settings.signal_rebuild_interval_seconds,
        ),
        PeriodicJobScheduler(
            "ROGUE SWEEP",
            lambda: sweep_moderators(engine, settings),
            lambda: settings.rogue_sweep_interval_seconds,
        ),
    ]


async def shutdown_runtime(
    schedulers: list[PeriodicJobScheduler],
    db: Database,
    client: Optional[discord.Client] = None,
) -> None:
    """Stop the schedulers, close the Discord client and the database."""
    for scheduler in schedulers:
        try:
            await scheduler.shutdown()
        except Exception as exc:
            logger.exception("Error during scheduler shutdown: %s", exc)

    if client is not None:
        try:
            await client.close()
        except Exception as exc:
            logger.exception("Error closing Discord client: %s", exc)

    await db.shutdown()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the database, engine and schedulers, returning an exit code."""
    token = load_environment()

    db = Database(app_config.database_path)
    if not await db.initialize():
        logger.critical("Failed to initialize database at %s", db.db_path)
        return 1

    notifier, client = await create_notifier(token)
    engine = build_engine(db, notifier)
    schedulers = build_schedulers(engine)

    try:
        for scheduler in schedulers:
            scheduler.start()
        logger.info("Gavel governance service running.")
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Service cancelled; proceeding to shutdown")
    finally:
        await shutdown_runtime(schedulers, db, client)

    return 0


def main() -> int:
    """Entrypoint that runs the async service and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Gavel governance service…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the service: %s", exc)
        return 1


if __name__ == "__main__":
    print(f"Exited with code: {main()}")
