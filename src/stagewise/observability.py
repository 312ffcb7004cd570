"""Observability: structured logging and Prometheus metrics."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request, Response

if TYPE_CHECKING:
    from stagewise.api.rate_limit import RateLimiter

# --- Metrics constants ---
_HTTP_ERROR_THRESHOLD = 500
_MS_PER_SECOND = 1000


# ---------------------------------------------------------------------------
# Structured JSON logging
# ---------------------------------------------------------------------------

class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    EXTRA_FIELDS = (
        "trace_id", "workspace_id", "role_id",
        "method", "path", "status_code", "duration_ms",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_dict["exception"] = self.formatException(record.exc_info)
        for key in self.EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_dict[key] = val
        return json.dumps(log_dict, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger with JSON output."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # Quiet noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Prometheus-compatible metrics (no external dependency)
# ---------------------------------------------------------------------------

_metrics_lock = threading.Lock()
_request_count: dict[tuple[str, str, str], int] = defaultdict(int)
_request_latency_sum: dict[tuple[str, str], float] = defaultdict(float)
_request_latency_count: dict[tuple[str, str], int] = defaultdict(int)
_error_count: dict[tuple[str, str], int] = defaultdict(int)


def record_request(method: str, path: str, status: int, duration: float) -> None:
    with _metrics_lock:
        _request_count[(method, path, str(status))] += 1
        _request_latency_sum[(method, path)] += duration
        _request_latency_count[(method, path)] += 1
        if status >= _HTTP_ERROR_THRESHOLD:
            _error_count[(method, path)] += 1


def reset_metrics() -> None:
    with _metrics_lock:
        _request_count.clear()
        _request_latency_sum.clear()
        _request_latency_count.clear()
        _error_count.clear()


def generate_metrics(limiter: RateLimiter | None = None) -> str:
    """Render metrics in Prometheus text exposition format."""
    lines: list[str] = []

    lines.append("# HELP stagewise_http_requests_total Total HTTP requests by method, path, status.")
    lines.append("# TYPE stagewise_http_requests_total counter")
    for (method, path, status), count in sorted(_request_count.items()):
        lines.append(f'stagewise_http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}')

    lines.append("# HELP stagewise_http_request_duration_seconds Total request duration by method and path.")
    lines.append("# TYPE stagewise_http_request_duration_seconds summary")
    for (method, path), total in sorted(_request_latency_sum.items()):
        cnt = _request_latency_count[(method, path)]
        lines.append(f'stagewise_http_request_duration_seconds_sum{{method="{method}",path="{path}"}} {total:.6f}')
        lines.append(f'stagewise_http_request_duration_seconds_count{{method="{method}",path="{path}"}} {cnt}')

    lines.append("# HELP stagewise_http_errors_total Total 5xx errors.")
    lines.append("# TYPE stagewise_http_errors_total counter")
    for (method, path), count in sorted(_error_count.items()):
        lines.append(f'stagewise_http_errors_total{{method="{method}",path="{path}"}} {count}')

    if limiter is not None:
        lines.append("# HELP stagewise_rate_limit_throttled_total Total throttled requests by route class.")
        lines.append("# TYPE stagewise_rate_limit_throttled_total counter")
        for route_class, cnt in sorted(limiter.throttled_by_class.items()):
            lines.append(f'stagewise_rate_limit_throttled_total{{class="{route_class}"}} {cnt}')
        lines.append(f"stagewise_rate_limit_throttled_global {limiter.total_throttled}")

    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# FastAPI middleware
# ---------------------------------------------------------------------------

def add_observability_middleware(app: FastAPI) -> None:
    """Add request logging and metrics collection middleware."""

    @app.middleware("http")
    async def observe_request(request: Request, call_next) -> Response:
        start = time.time()
        response: Response = await call_next(request)
        duration = time.time() - start

        path = request.url.path
        method = request.method
        status = response.status_code

        record_request(method, path, status, duration)

        logger = logging.getLogger("stagewise.access")
        logger.info(
            "%s %s %d %.0fms",
            method, path, status, duration * _MS_PER_SECOND,
            extra={
                "method": method,
                "path": path,
                "status_code": status,
                "duration_ms": round(duration * _MS_PER_SECOND, 1),
                "trace_id": request.headers.get("x-trace-id", ""),
            },
        )
        return response
