"""FastAPI app creation, middleware, startup."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from brain.routes import router as brain_router
from calendar_export.routes import router as calendar_router
from roadmaps.routes import router as roadmaps_router
from server.config import (
    ALLOWED_ORIGINS,
    ANTHROPIC_API_KEY,
    ANTHROPIC_MODEL,
    DB_PATH,
    ENVIRONMENT,
    LOG_LEVEL,
    PLANNER_TIMEZONE,
)
from server.database import init_db

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("PathFlow starting (environment=%s, timezone=%s)", ENVIRONMENT, PLANNER_TIMEZONE)
    logger.info("Database: %s", DB_PATH)
    logger.info("Oracle: %s", ANTHROPIC_MODEL if ANTHROPIC_API_KEY else "not configured, local planning only")
    init_db()
    yield
    logger.info("PathFlow shutting down")


app = FastAPI(title="PathFlow API", version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    # browsers reject credentials with a wildcard origin
    allow_credentials=ALLOWED_ORIGINS != ["*"],
)


# ─── API routes ──────────────────────────────────────────────
app.include_router(roadmaps_router, tags=["roadmaps"])
app.include_router(brain_router, tags=["brain"])
app.include_router(calendar_router, tags=["calendar"])


@app.get("/health")
def health_check():
    return {"status": "ok", "version": VERSION}
