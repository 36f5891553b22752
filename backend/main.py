import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    LOG_LEVEL,
)
from backend.routers import attendance, auth, core, enrollments, sessions, subjects
from database.db import NotFoundError, StoreError, create_tables

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    create_tables()
    yield


app = FastAPI(title="QR Attendance API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


@app.exception_handler(NotFoundError)
async def not_found_handler(_request: Request, _exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Not found."})


app.include_router(core.router)
app.include_router(auth.router)
app.include_router(subjects.router)
app.include_router(enrollments.router)
app.include_router(sessions.router)
app.include_router(attendance.router)
