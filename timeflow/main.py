import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from timeflow.db import SessionLocal, engine
from timeflow.errors import ApiError, error_response
from timeflow.logging_utils import setup_json_logging
from timeflow.routers import admin, clock
from timeflow.services.incidents import report_incident
from timeflow.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from timeflow.services.sessions import load_company_shift_caps, sweep_exceeded_sessions
from timeflow.settings import get_clock_config, get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service="timeflow")
logger = logging.getLogger("timeflow.request")
autoclose_worker_logger = logging.getLogger("timeflow.autoclose_worker")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "worker_id": getattr(request.state, "worker_id", None),
                "company_id": getattr(request.state, "company_id", None),
                "event_id": getattr(request.state, "event_id", None),
                "clock_action": getattr(request.state, "clock_action", None),
                "within_geofence": getattr(request.state, "within_geofence", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        reason=exc.reason,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "NOT_AUTHENTICATED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=400,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(clock.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def run_autoclose_sweep(now_utc: datetime) -> int:
    config = get_clock_config()
    db = SessionLocal()
    try:
        closed = sweep_exceeded_sessions(
            db,
            company_id=None,
            max_shift_hours_by_company=load_company_shift_caps(db),
            fallback_hours=config.stale_session_hours,
            now_utc=now_utc,
            tz=config.timezone,
        )
        for item in closed:
            report_incident(db, item.incident)
        return len(closed)
    finally:
        db.close()


async def _autoclose_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(30, int(settings.autoclose_worker_interval_seconds))
    while not stop_event.is_set():
        try:
            closed_count = await asyncio.to_thread(run_autoclose_sweep, datetime.now(timezone.utc))
        except Exception:
            autoclose_worker_logger.exception("autoclose_worker_tick_failed")
        else:
            if closed_count:
                autoclose_worker_logger.info(
                    "autoclose_worker_tick",
                    extra={"closed_sessions": closed_count},
                )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        autoclose_worker_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    autoclose_worker_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_autoclose_worker() -> None:
    if not settings.autoclose_worker_enabled:
        return
    if getattr(app.state, "autoclose_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_autoclose_worker_loop(stop_event))
    app.state.autoclose_worker_stop_event = stop_event
    app.state.autoclose_worker_task = task
    autoclose_worker_logger.info(
        "autoclose_worker_started",
        extra={"interval_seconds": max(30, int(settings.autoclose_worker_interval_seconds))},
    )


@app.on_event("shutdown")
async def stop_autoclose_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "autoclose_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "autoclose_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.autoclose_worker_stop_event = None
    app.state.autoclose_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "autoclose_worker_enabled": settings.autoclose_worker_enabled,
    }
