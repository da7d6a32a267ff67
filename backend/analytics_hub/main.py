# backend/analytics_hub/main.py

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .db import create_db_and_tables
from .api import router as api_router
from .middleware.auth_middleware import AuthMiddleware
from .queue_mongo import ensure_indexes
from .utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

app = FastAPI(
    title="AutoML Analytics Hub",
    version="1.0.0",
    docs_url=f"{settings.API_BASE}/docs",
    openapi_url=f"{settings.API_BASE}/openapi.json",
)

app.add_middleware(AuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_BASE, tags=["api"])


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def _init():
    setup_logging(settings.LOG_LEVEL)
    create_db_and_tables()
    ensure_indexes()
    logger.info("API started under %s", settings.API_BASE)
