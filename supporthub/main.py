from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from supporthub.api.routes import ping, tickets
from supporthub.core.config import get_settings
from supporthub.core.logging import configure_logging, init_tracer, shutdown_tracer
from supporthub.core.retry import RetryPolicy
from supporthub.customers.repository import CustomerRepository
from supporthub.tickets.orchestrator import TicketCreationOrchestrator
from supporthub.tickets.recovery import TicketRecoveryService
from supporthub.tickets.repository import TicketRepository
from supporthub.tickets.service import TicketService


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    retry_policy = RetryPolicy.from_settings(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.ticket_service = None
    app.state.ticket_orchestrator = None
    app.state.recovery_service = None

    pool = await asyncpg.create_pool(
        dsn=settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    customers_engine = create_async_engine(settings.customers_database_url, future=True)
    recovery_service: TicketRecoveryService | None = None
    try:
        ticket_repository = TicketRepository(pool)
        await ticket_repository.ensure_schema()
        customer_repository = CustomerRepository(
            async_sessionmaker(customers_engine, expire_on_commit=False),
            engine=customers_engine,
            retry_policy=retry_policy,
        )
        await customer_repository.ensure_schema()

        ticket_service = TicketService(ticket_repository, retry_policy=retry_policy)
        orchestrator = TicketCreationOrchestrator(ticket_service, customer_repository)
        recovery_service = TicketRecoveryService(
            ticket_repository,
            orchestrator,
            interval_seconds=settings.recovery_interval_seconds,
        )

        app.state.ticket_service = ticket_service
        app.state.ticket_orchestrator = orchestrator
        app.state.recovery_service = recovery_service
        if settings.recovery_enabled:
            recovery_service.start()
        else:
            logger.warning("Ticket recovery sweeper is disabled")

        yield
    finally:
        if recovery_service is not None:
            await recovery_service.stop()
        await customers_engine.dispose()
        await pool.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    return app


app = create_app()
