"""Main FastAPI application for SeatFinder."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import db
from app.config import APP_NAME, APP_VERSION, OTP_SWEEP_INTERVAL, RATE_LIMIT_SWEEP_INTERVAL
from app.rate_limit import limiter
from app.routers import auth, health
from app.services.background import PeriodicSweeper
from app.services.passcodes import passcodes

logger = logging.getLogger(__name__)

passcode_sweeper = PeriodicSweeper(passcodes.sweep, interval=OTP_SWEEP_INTERVAL, name="passcode-sweeper")
rate_limit_sweeper = PeriodicSweeper(limiter.sweep, interval=RATE_LIMIT_SWEEP_INTERVAL, name="rate-limit-sweeper")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.init_db()
    await passcode_sweeper.start()
    await rate_limit_sweeper.start()
    try:
        yield
    finally:
        await rate_limit_sweeper.stop()
        await passcode_sweeper.stop()
        await db.close_db()


app = FastAPI(
    title=f"{APP_NAME} API",
    description="Email verification with one-time passcodes, guarded by rate limits",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(auth.router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "Method not allowed"},
            headers=exc.headers,
        )
    return await http_exception_handler(request, exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )
