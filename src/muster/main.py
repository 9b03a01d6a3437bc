"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from muster.api.bot_api import register_error_handlers
from muster.api.bot_api import router as bot_api_router
from muster.config import Settings
from muster.db.engine import create_engine
from muster.db.migrations import apply_migrations

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine and migrate, optionally start Discord bot and scheduler."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    async with engine.begin() as conn:
        applied = await apply_migrations(conn)
    if applied:
        logger.info("migrations_applied names=%s", ",".join(applied))
    app.state.engine = engine

    # Start Discord bot if configured
    discord_bot = None
    from muster.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from muster.discord.bot import start_discord_bot

        discord_bot = await start_discord_bot(settings, engine)
        logger.info("discord_bot_integration_started")
    else:
        logger.info("discord_bot_integration_disabled")
    app.state.discord_bot = discord_bot

    # APScheduler: reclaim reservations of ended events, send reminders
    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    from muster.core.reclaimer import reclaim_ended_events

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        reclaim_ended_events,
        trigger=IntervalTrigger(minutes=settings.muster_reclaim_interval_minutes),
        kwargs={"engine": engine},
        id="reclaim_ended_events",
        name="Reclaim equipment from ended events",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    if discord_bot is not None and settings.muster_reminders_enabled:
        from muster.core.reminders import send_due_reminders

        scheduler.add_job(
            send_due_reminders,
            trigger=IntervalTrigger(minutes=1),
            kwargs={
                "engine": engine,
                "send": discord_bot.send_event_reminder,
                "lead_minutes": settings.muster_reminder_lead_minutes,
            },
            id="send_due_reminders",
            name="Send event reminders",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info(
        "scheduler_started reclaim_minutes=%d reminders=%s",
        settings.muster_reclaim_interval_minutes,
        discord_bot is not None and settings.muster_reminders_enabled,
    )

    yield

    scheduler.shutdown(wait=False)
    logger.info("scheduler_stopped")

    # Shutdown Discord bot if running
    if discord_bot is not None:
        await discord_bot.close()
        logger.info("discord_bot_integration_stopped")

    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the Muster FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.muster_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Muster",
        version="0.1.0",
        description="Community bot API: events, equipment requests and certifications",
        docs_url="/docs" if settings.muster_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(bot_api_router)
    register_error_handlers(app)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.muster_env}

    return app


app = create_app()
