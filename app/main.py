import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import auth, gigs, applications, payments, billing, health
from app.core import config
from app.core.logging_config import setup_logging
from app.db.init_db import init_db
from app.db.migrate import run_migrations
from app.services.background import start_background_workers, stop_background_workers
from app.services.payment_gateway import configure_stripe_http_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL, config.LOG_DIR)

    if config.RUN_MIGRATIONS:
        run_migrations()
    elif config.AUTO_CREATE_TABLES:
        init_db()

    configure_stripe_http_client()

    workers = []
    if config.BACKGROUND_WORKERS_ENABLED:
        workers = start_background_workers()
    logger.info(f"Gigmarket API started (workers={len(workers)})")

    yield

    stop_background_workers(workers)
    logger.info("Gigmarket API stopped")


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="Gigmarket API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_URL,
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(auth.router)
app.include_router(gigs.router)
app.include_router(applications.router)
app.include_router(payments.router)
app.include_router(billing.router)
app.include_router(health.router)


@app.get("/")
def root():
    return {"status": "Gigmarket API running"}
