from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.errors import crm_error_handler
from app.api.health import router as health_router
from app.api.v1 import automation, leads, webhooks
from app.core.config import settings
from app.core.database import engine, init_db
from app.core.exceptions import CRMError
from app.core.logging import get_logger, setup_logging
from app.core.middleware import RequestLoggingMiddleware, ErrorHandlingMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_db()
    logger.info("startup_complete", app=settings.APP_NAME, version=settings.APP_VERSION)

    yield

    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Lead ingestion, rule-based assignment and status-driven WhatsApp automation",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_exception_handler(CRMError, crm_error_handler)

# Add middleware (order matters - last added = first executed)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
app.include_router(leads.router, prefix="/api/v1/leads", tags=["leads"])
app.include_router(automation.router, prefix="/api/v1/automation", tags=["automation"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
