"""Flask integration helpers for logging_lib."""

from __future__ import annotations

import time
import uuid
from typing import Any, Tuple

from flask import Flask, Response, g, request

from .config import get_settings
from .logger import get_logger, pop_context, push_context


def register_flask_context(app: Flask, *, service: str | None = None) -> None:
    """Attach request lifecycle hooks for structured logging.

    Every request gets a request id (taken from the configured header or
    generated), which is pushed into the logging context together with the
    method, path and client address, echoed back on the response, and
    closed off with a single ``http_request`` line.
    """

    settings = get_settings()
    component = service or settings.service
    request_id_header = settings.request_id_header
    exclude_routes = settings.exclude_routes
    logger = get_logger(f"{component}.http")

    def _should_log_route(path: str) -> bool:
        return not any(path.startswith(prefix) for prefix in exclude_routes)

    @app.before_request
    def _logging_before_request() -> None:  # type: ignore[override]
        rid = (request.headers.get(request_id_header) or "").strip()[:64]
        if not rid:
            rid = uuid.uuid4().hex[:16]
        g.request_id = rid

        if not _should_log_route(request.path):
            return

        g._logging_start = time.perf_counter()
        g._logging_token = push_context(
            rid=rid,
            method=request.method,
            path=request.path,
            ip=_client_ip(),
        )

    @app.after_request
    def _logging_after_request(response: Response) -> Response:  # type: ignore[override]
        rid = g.get("request_id")
        if rid:
            response.headers.setdefault(request_id_header, rid)

        if not _should_log_route(request.path):
            return response

        elapsed_ms = _elapsed_ms(g.pop("_logging_start", None))
        route = request.url_rule.rule if request.url_rule else request.path
        user_id, user_type = _resolve_identity()

        logger.info(
            "http_request",
            route=route,
            method=request.method,
            status=response.status_code,
            lat_ms=elapsed_ms,
            rid=rid,
            user_id=user_id,
            user_type=user_type,
            context={
                "ip": _client_ip(),
                "user_agent": request.headers.get("User-Agent"),
            },
        )
        return response

    @app.teardown_request
    def _logging_teardown(exc: Any) -> None:  # type: ignore[override]
        token = g.pop("_logging_token", None)
        if token is not None:
            pop_context(token)
        if exc is not None and _should_log_route(request.path):
            logger.error(
                "http_exception",
                route=request.path,
                method=request.method,
                status=_status_of(exc),
                lat_ms=_elapsed_ms(g.pop("_logging_start", None)),
                rid=g.get("request_id"),
                context={"ip": _client_ip(), "exception": type(exc).__name__},
            )


def _status_of(exc: Any) -> int:
    status = getattr(exc, "code", None)
    return status if isinstance(status, int) else 500


def _client_ip() -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def _elapsed_ms(start: float | None) -> float:
    if start is None:
        return 0.0
    return round((time.perf_counter() - start) * 1000.0, 3)


def _resolve_identity() -> Tuple[str | None, str | None]:
    identity = getattr(request, "identity", None)
    if not isinstance(identity, dict):
        return None, None
    return identity.get("id"), identity.get("type")
