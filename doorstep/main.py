import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status

from doorstep.api.v1.admin import router as admin_router
from doorstep.api.v1.bookings import router as bookings_router
from doorstep.api.v1.events import router as events_router
from doorstep.core.config import DISABLE_SCHEDULER, PROJECT_NAME, REDIS_URL, VERSION
from doorstep.core.db import close_db, init_db
from doorstep.core.exception_handlers import setup_exception_handlers
from doorstep.events.dispatch import SideEffectDispatcher
from doorstep.jobs.lock import JobLock, create_redis_client
from doorstep.jobs.runner import JobRunner
from doorstep.jobs.tasks import build_jobs
from doorstep.realtime.bus import NotificationBus
from doorstep.realtime.registry import ConnectionRegistry
from doorstep.realtime.relay import RedisRelay
from doorstep.services.booking_service import BookingService

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("doorstep")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wires the services once per process and tears them down in reverse order."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db()  # Connect to DB and generate schemas

    redis = create_redis_client(REDIS_URL)
    registry = ConnectionRegistry()
    dispatcher = SideEffectDispatcher()
    bus = NotificationBus(registry, dispatcher=dispatcher)

    relay = None
    if redis is not None:
        relay = RedisRelay(redis, bus.deliver_local)
        try:
            await relay.start()
            bus.relay = relay
        except Exception as exc:
            log.warning(f"Realtime relay unavailable, delivering locally only: {exc}")
            relay = None

    service = BookingService(bus, dispatcher)
    runner = JobRunner(JobLock(redis), build_jobs(service, bus))
    if DISABLE_SCHEDULER:
        log.info("Scheduler disabled via DISABLE_SCHEDULER")
    else:
        runner.start()

    app.state.registry = registry
    app.state.bus = bus
    app.state.dispatcher = dispatcher
    app.state.booking_service = service
    app.state.job_runner = runner

    yield

    await runner.shutdown()
    if relay is not None:
        await relay.stop()
    registry.close_all()
    await dispatcher.drain()
    if redis is not None:
        await redis.aclose()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")


app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.include_router(bookings_router, prefix="/api/v1/bookings", tags=["Bookings"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["Admin"])
app.include_router(events_router, prefix="/api", tags=["Realtime"])


setup_exception_handlers(app)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}


@app.get("/health/jobs", status_code=status.HTTP_200_OK)
async def jobs_health(request: Request):
    """Last run and last error of each scheduled job on this instance."""
    runner = getattr(request.app.state, "job_runner", None)
    return {"status": "ok", "jobs": runner.status() if runner else {}}
