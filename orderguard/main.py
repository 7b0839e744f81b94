from contextlib import asynccontextmanager

from fastapi import FastAPI

from orderguard.database import close_connection, init_db
from orderguard.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    yield
    close_connection()


app = FastAPI(
    title="OrderGuard Fraud Mitigation API",
    description="Checkout-time cooldown, blocklist and duplicate checks, plus cached order fraud scores",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


from orderguard.routers import (  # noqa: E402
    blocked_attempts,
    blocklist,
    checkout,
    cooldowns,
    fraud_scores,
    orders,
    settings,
)

app.include_router(checkout.router, prefix="/api/v1")
app.include_router(orders.router, prefix="/api/v1")
app.include_router(cooldowns.router, prefix="/api/v1")
app.include_router(blocklist.router, prefix="/api/v1")
app.include_router(fraud_scores.router, prefix="/api/v1")
app.include_router(settings.router, prefix="/api/v1")
app.include_router(blocked_attempts.router, prefix="/api/v1")
