"""Application and access logging setup.

- ``support_engine.*`` module loggers write to ``app.log`` through one
  handler installed on the package logger.
- The access middleware writes one JSON line per request to ``access.log``
  and echoes an ``X-Request-Id`` header for correlation.
- Customer identifiers, tokens and webhook signatures are masked before they
  reach the access log.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER_NAME = "support_engine"
ACCESS_LOGGER_NAME = "uvicorn.access"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "token",
    "sessiontoken",
    "session_token",
    "email",
    "customeremail",
    "phone",
    "x-helpdesk-hmac-sha256",
}


def _scrub(data: object) -> object:
    """Recursively mask sensitive fields in dictionaries and lists."""

    if isinstance(data, dict):
        return {
            k: ("***" if str(k).lower() in SENSITIVE_FIELDS else _scrub(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


def _install_access_logging(app: FastAPI) -> None:
    log_request_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    skip_paths = {"/api/health", "/api/metrics"}
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in skip_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        start = time.time()

        body_content = None
        if log_request_bodies:
            body_bytes = await request.body()

            async def receive() -> dict:  # pragma: no cover - internal
                return {"type": "http.request", "body": body_bytes, "more_body": False}

            request._receive = receive  # type: ignore[attr-defined]

            if body_bytes:
                try:
                    body_content = _scrub(json.loads(body_bytes))
                except ValueError:
                    body_content = body_bytes.decode("utf-8", errors="replace")

        response = await call_next(request)

        client = request.client
        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and client is not None:
            client_ip = client.host

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 2),
            "client_ip": client_ip,
            "headers": _scrub(dict(request.headers)),
        }
        if body_content is not None:
            log_data["body"] = body_content

        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(log_data, default=str))
        return response


def _rotating_handler(
    path: str, formatter: logging.Formatter, retention_days: int, rotate_utc: bool
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        path, when="midnight", backupCount=retention_days, utc=rotate_utc
    )
    handler.setFormatter(formatter)
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    """Initialise the package and access loggers, then the access middleware."""

    log_dir = os.getenv("LOG_DIR", "logs")
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("LOG_JSON", "false").lower() == "true"
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = os.getenv("LOG_ROTATE_UTC", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)
    formatter = _get_formatter(log_json)
    log_level = getattr(logging, log_level_str, logging.INFO)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(
            _rotating_handler(
                os.path.join(log_dir, "app.log"), formatter, retention_days, rotate_utc
            )
        )
    app_logger.setLevel(log_level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(
        _rotating_handler(
            os.path.join(log_dir, "access.log"), formatter, retention_days, rotate_utc
        )
    )
    access_logger.setLevel(log_level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)
