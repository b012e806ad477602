from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from access import router as access_router
from auth import router as auth_router
from core import config, db
from core.rate_limit import limiter
from integrations import router as integrations_router
from nodes import router as nodes_router
from scheduler import service as scheduler_service
from superset import access as superset_access
from superset import router as superset_router
from sync import router as sync_router
from tenants import router as tenants_router
from users import router as users_router

SERVICE_NAME = "school-analytics-hub api"


@asynccontextmanager
async def lifespan(_: FastAPI):
    config.configure_logging()
    # Initialize the DB pool once per process.
    await db.init_pool()
    await scheduler_service.start()
    try:
        yield
    finally:
        scheduler_service.shutdown()
        await superset_access.close_pool()
        await db.close_pool()


app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router.router, tags=["auth"])
app.include_router(tenants_router.router, tags=["tenants"])
# /api/users/me/access must be matched before /api/users/{email}/access.
app.include_router(users_router.router, tags=["users"])
app.include_router(access_router.router, tags=["access"])
app.include_router(nodes_router.router, tags=["nodes"])
app.include_router(integrations_router.router, tags=["integrations"])
app.include_router(sync_router.router, tags=["sync"])
app.include_router(superset_router.router, tags=["superset"])


@app.get("/api/health")
async def health() -> dict:
    database = "connected" if await db.ping() else "disconnected"
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": database,
        "sync_scheduler": {
            "enabled": scheduler_service.is_enabled(),
            "timezone": scheduler_service.timezone(),
        },
    }


@app.get("/")
def root() -> dict:
    return {"message": SERVICE_NAME}
