import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

import config
from database import db, ensure_indexes
from errors import register_exception_handlers
from logging_config import generate_request_id, set_request_id, set_user_id, setup_logging
from routes import (
    announcement_routes, auth_routes, course_routes, exam_routes, fee_routes, gatepass_routes, report_routes,
    schedule_routes, user_routes,
)

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Ensuring database indexes...")
    ensure_indexes(db)
    yield


app = FastAPI(title="School Administration API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# -------------------- Request logging -------------------- #
@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or generate_request_id()
    set_request_id(request_id)
    set_user_id("")
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("HTTP %s %s - %s (%.2fms)", request.method, request.url.path, response.status_code, duration_ms)
    response.headers["X-Request-ID"] = request_id
    return response


# -------------------- Routers -------------------- #
app.include_router(auth_routes.router)
app.include_router(user_routes.router)
app.include_router(course_routes.router)
app.include_router(fee_routes.router)
app.include_router(gatepass_routes.router)
app.include_router(exam_routes.router)
app.include_router(announcement_routes.router)
app.include_router(report_routes.router)
app.include_router(schedule_routes.router)


# -------------------- Meta endpoints -------------------- #

@app.get("/")
def read_root():
    return {"message": "School Administration Backend is running", "docs": "/docs", "health": "/health"}


@app.get("/health", tags=["Health"])
def health_check():
    return {"success": True, "status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
