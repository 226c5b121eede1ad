"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with request IDs
- Request/response logging middleware
- Metrics collection (push/pull counts, rejections by code, push latency)
- Health check utilities (store reachability, bijection invariant)

Configuration:
- LINKR_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- LINKR_LOG_FORMAT: json, text (default: json in production)
- LINKR_PRODUCTION: Enable production mode

Usage:
    from linkr.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Link created", account=account, pubkey=pubkey)
"""

import json
import logging
import os
import sys
import time
import uuid
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

# Request id of the HTTP request being served, "" outside one
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

LATENCY_WINDOW = 1000


# ============================================================
# CONFIGURATION
# ============================================================

def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def _log_level() -> int:
    level = logging.getLevelName(os.environ.get("LINKR_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _json_logs() -> bool:
    fmt = os.environ.get("LINKR_LOG_FORMAT", "").lower()
    if fmt in ("json", "text"):
        return fmt == "json"
    return _env_flag("LINKR_PRODUCTION")


# ============================================================
# STRUCTURED LOGGING
# ============================================================

# Attributes every LogRecord carries; anything else came in as a field
_STANDARD_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Structured fields attached through ContextLogger keyword arguments."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter, one object per line.

    {"timestamp": "...", "level": "INFO", "logger": "linkr.core.registry",
     "message": "Push committed", "request_id": "1f3a9c2e",
     "account": "0x...", "pubkey": "...", "superseded": 1}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(_fields(record))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development; fields trail as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        request_id = request_id_var.get()
        rid = f"[{request_id}] " if request_id else ""

        line = f"{timestamp} {record.levelname:<8} {rid}{record.name}: {record.getMessage()}"
        fields = _fields(record)
        if fields:
            line += "  " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that turns keyword arguments into structured fields.

    Usage:
        logger = get_logger(__name__)
        logger.info("Link removed", account=account, pubkey=pubkey)
    """

    _PASSTHROUGH = ("exc_info", "stack_info", "stacklevel", "extra")

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.pop("extra", None) or {})
        for key in [k for k in kwargs if k not in self._PASSTHROUGH]:
            extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """Structured logger for a module (pass __name__)."""
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure the root logger from LINKR_LOG_* settings.

    Call once at startup; calling again replaces the handler.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if _json_logs() else TextFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(_log_level())

    for noisy in ("uvicorn.access", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id and logs it with its timing.

    A client-supplied X-Request-ID is kept; otherwise one is generated.
    The id is echoed back on the response.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        logger = get_logger("linkr.request")
        started = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception:
            logger.exception(
                "Unhandled error",
                method=request.method,
                path=request.url.path,
            )
            raise
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.log(
                logging.INFO if status_code < 400 else logging.WARNING,
                f"{request.method} {request.url.path} {status_code}",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round(elapsed_ms, 2),
            )
            get_metrics().record_request(elapsed_ms, success=status_code < 500)
            request_id_var.reset(token)


# ============================================================
# METRICS
# ============================================================

def _percentile(samples, p: float) -> Optional[float]:
    if not samples:
        return None
    ordered = sorted(samples)
    return ordered[min(int(len(ordered) * p), len(ordered) - 1)]


class MetricsCollector:
    """
    In-process counters and latency windows.

    Thread-safe: the registry records from whichever thread served the
    write. Latencies keep the last LATENCY_WINDOW samples.
    """

    def __init__(self):
        self._lock = Lock()
        self._clear()

    def _clear(self) -> None:
        self.links_pushed = 0
        self.links_pulled = 0
        self.links_superseded = 0
        self.requests_total = 0
        self.requests_failed = 0
        self.rejections: Dict[str, int] = {}
        self.push_latencies_ms: deque = deque(maxlen=LATENCY_WINDOW)
        self.request_latencies_ms: deque = deque(maxlen=LATENCY_WINDOW)

    def record_push(self, latency_ms: float, superseded: int = 0) -> None:
        """A push committed; superseded is how many old edges it removed."""
        with self._lock:
            self.links_pushed += 1
            self.links_superseded += superseded
            self.push_latencies_ms.append(latency_ms)

    def record_pull(self) -> None:
        with self._lock:
            self.links_pulled += 1

    def record_rejection(self, code: str) -> None:
        """A write was refused with the given error code."""
        with self._lock:
            self.rejections[code] = self.rejections.get(code, 0) + 1

    def record_request(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            self.requests_total += 1
            self.requests_failed += 0 if success else 1
            self.request_latencies_ms.append(latency_ms)

    def reset(self) -> None:
        with self._lock:
            self._clear()

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            push = list(self.push_latencies_ms)
            requests = list(self.request_latencies_ms)
            return {
                "links_pushed": self.links_pushed,
                "links_pulled": self.links_pulled,
                "links_superseded": self.links_superseded,
                "rejections": dict(self.rejections),
                "requests_total": self.requests_total,
                "requests_failed": self.requests_failed,
                "push_latency_p50_ms": _percentile(push, 0.50),
                "push_latency_p95_ms": _percentile(push, 0.95),
                "push_latency_p99_ms": _percentile(push, 0.99),
                "request_latency_p50_ms": _percentile(requests, 0.50),
                "request_latency_p95_ms": _percentile(requests, 0.95),
            }


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Process-wide collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(registry=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        registry: LinkRegistry to inspect; liveness only if None

    Checks:
        liveness: always healthy if we got this far
        link_store: the store answers a count query
        bijection: forward and reverse maps are exact inverses
    """
    started = time.perf_counter()
    checks: Dict[str, Dict[str, Any]] = {"liveness": {"status": "healthy"}}

    if registry is not None:
        try:
            checks["link_store"] = {
                "status": "healthy",
                "store_type": type(registry.store).__name__,
                "link_count": registry.link_count,
            }
        except Exception as e:
            checks["link_store"] = {"status": "unhealthy", "error": str(e)}

        try:
            valid = registry.verify_bijection()
            checks["bijection"] = {
                "status": "healthy" if valid else "unhealthy",
                "valid": valid,
            }
        except Exception as e:
            checks["bijection"] = {"status": "unhealthy", "error": str(e)}

    return HealthStatus(
        healthy=all(check["status"] == "healthy" for check in checks.values()),
        checks=checks,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
