"""
CampusDesk - Main Application
=============================

Campus support-ticket service.

Modules:
- Tickets: intake, routing, status/TAT lifecycle, escalation, groups and reminders
- Notifications: transactional outbox delivered to Slack and email

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, external senders, schedulers
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from campusdesk.config import settings

# Infrastructure
from campusdesk.infrastructure.database import (
    close_database,
    create_tables,
    init_database,
    ping_database,
    unit_of_work,
)

# Notifications Module
from campusdesk.notifications.application import (
    OutboxDispatcher,
    OutboxPublisher,
    TicketNotificationHandler,
)
from campusdesk.notifications.infrastructure import (
    HttpEmailSender,
    JobScheduler,
    NotificationConfigManager,
    SlackChatSender,
    SQLAlchemyOutboxRepository,
    outbox_unit_of_work,
)
from campusdesk.notifications.interfaces import router as outbox_router

# Tickets Module
from campusdesk.tickets.application import ReminderService
from campusdesk.tickets.infrastructure import (
    SQLAlchemyStatusProvider,
    SQLAlchemyTicketRepository,
    seed_statuses,
    status_cache,
)
from campusdesk.tickets.interfaces import cron_router, group_router, router as ticket_router

# Shared
from campusdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    install_exception_handlers,
)
from campusdesk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database (tables and status catalog in development)
    3. Load notification routing and watch it for changes
    4. Build senders and the outbox dispatcher
    5. Start the outbox sweep scheduler

    SHUTDOWN:
    1. Stop the sweep scheduler
    2. Stop the config watcher
    3. Close HTTP clients
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(level=settings.log_level, environment=settings.environment)
    logger.info("Starting CampusDesk", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "worker_id": settings.worker_id,
    })

    logger.info("Initializing database")
    init_database()

    # Production uses migrations
    if settings.environment == "development":
        try:
            await create_tables()
            async with unit_of_work() as session:
                await seed_statuses(session)
        except Exception as e:
            logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading notification configuration")
    config_manager = NotificationConfigManager()
    config_manager.load(settings.notification_config_path)
    config_manager.start_watching()

    chat_sender = SlackChatSender()
    email_sender = HttpEmailSender()
    if not chat_sender.enabled:
        logger.info("Slack not configured - chat notifications disabled")
    if not email_sender.enabled:
        logger.info("Email API not configured - email notifications disabled")

    handler = TicketNotificationHandler(chat_sender, email_sender, config_manager)
    dispatcher = OutboxDispatcher(
        outbox_unit_of_work,
        handler.registry(),
        worker_id=settings.worker_id,
        max_attempts=settings.outbox_max_attempts,
        lease_seconds=settings.outbox_lease_seconds,
        retry_delay_seconds=settings.dispatch_retry_delay_seconds,
        batch_size=settings.outbox_sweep_batch_size,
    )
    app.state.dispatcher = dispatcher

    async def reminder_job():
        async with unit_of_work() as session:
            publisher = OutboxPublisher(SQLAlchemyOutboxRepository(session))
            service = ReminderService(
                tickets=SQLAlchemyTicketRepository(session),
                statuses=SQLAlchemyStatusProvider(session, status_cache),
                publisher=publisher,
            )
            await service.run_sweep()
        # After commit, so the dispatcher can see the events
        await dispatcher.dispatch_many(publisher.drain())

    scheduler = JobScheduler(timezone=settings.timezone)
    if settings.outbox_sweep_interval_seconds > 0:
        scheduler.add_interval_job("outbox_sweep", dispatcher.sweep, settings.outbox_sweep_interval_seconds)
    if settings.reminder_run_hour is not None:
        scheduler.add_daily_job("tat_reminders", reminder_job, hour=settings.reminder_run_hour)
    await scheduler.start()
    app.state.scheduler = scheduler

    logger.info("CampusDesk started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down CampusDesk")

    if scheduler.is_running:
        await scheduler.stop()

    config_manager.stop_watching()

    await chat_sender.close()
    await email_sender.close()

    await close_database()

    logger.info("CampusDesk shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="CampusDesk API",
    description="""
    ## Campus Support Tickets

    Students raise tickets; admins pick them up from a routed queue,
    set turnaround times (TAT), move them through the status catalog,
    and close them individually or as a group.

    ---

    ### Tickets
    - `POST /tickets` - Create a ticket (routed to an admin)
    - `GET /tickets/queue` - Admin work queue with due buckets
    - `GET /tickets/{id}` - Ticket detail
    - `POST /tickets/{id}/status | comments | tat | escalate | assign`

    ### Groups
    - `POST /groups` - Create a group
    - `PATCH /groups/{id}/tickets` - Add or remove members
    - `POST /groups/{id}/tat` - Set a TAT on the whole group
    - `POST /groups/{id}/bulk-action` - Comment on or close every member

    ### Cron
    - `POST /cron/reminders` - Daily TAT reminders
    - `POST /cron/process-outbox` - Deliver pending notifications

    Callers identify themselves with `X-Actor-Id` and `X-Actor-Role`.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(LoggingMiddleware)
install_exception_handlers(app)

# === Include Module Routers ===
app.include_router(ticket_router)
app.include_router(group_router)
app.include_router(cron_router)
app.include_router(outbox_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint for load balancers and orchestrators."""
    scheduler = getattr(request.app.state, "scheduler", None)
    database_ok = await ping_database()
    checks = {
        "database": "ok" if database_ok else "unavailable",
        "outbox_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "dispatcher": "ready" if getattr(request.app.state, "dispatcher", None) else "not_started",
    }
    return {
        "status": "healthy" if database_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "tickets": {"prefix": "/tickets"},
            "groups": {"prefix": "/groups"},
            "cron": {"prefix": "/cron"},
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "campusdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
