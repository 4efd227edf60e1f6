"""
Observability - logging, metrics and health for givecore

Every log line carries the request id and, once a wallet is connected,
the acting account. Keyword arguments passed to a logger become fields:

    logger = get_logger(__name__)
    logger.info("Donation confirmed", campaign_id=3, transaction_ref=ref)

Environment:
- GIVECORE_LOG_LEVEL: standard level name (default INFO)
- GIVECORE_LOG_FORMAT: json or text (default: json in production)
- GIVECORE_PRODUCTION: 1/true/yes
"""

import json
import logging
import os
import sys
import time
import uuid
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
account_var: ContextVar[str] = ContextVar("account", default="")

_LATENCY_SAMPLES = 1000
_NOISY_LOGGERS = ("uvicorn.access", "web3", "asyncio", "asyncpg")


# ============================================================
# CONFIGURATION
# ============================================================

def _is_production() -> bool:
    return os.environ.get("GIVECORE_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    name = os.environ.get("GIVECORE_LOG_LEVEL", "INFO").upper()
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def _use_json_logging() -> bool:
    fmt = os.environ.get("GIVECORE_LOG_FORMAT", "").lower()
    if fmt in ("json", "text"):
        return fmt == "json"
    return _is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

# Attributes every LogRecord has; anything else came in as a field
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, context, fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if request_id_var.get():
            entry["request_id"] = request_id_var.get()
        if account_var.get():
            entry["account"] = account_var.get()
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in _fields(record).items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            entry[key] = value
        return json.dumps(entry)


class TextFormatter(logging.Formatter):
    """Single-line development format with key=value fields."""

    def format(self, record: logging.LogRecord) -> str:
        context = " ".join(
            f"[{v}]" for v in (request_id_var.get()[:8], account_var.get()[:10]) if v
        )
        line = (
            f"{_timestamp(record):%Y-%m-%d %H:%M:%S} {record.levelname:8} "
            f"{context + ' ' if context else ''}{record.name}: {record.getMessage()}"
        )
        fields = _fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


_LOGGING_KWARGS = ("exc_info", "stack_info", "stacklevel", "extra")


class ContextLogger(logging.LoggerAdapter):
    """LoggerAdapter that turns keyword arguments into structured fields."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.pop("extra", None) or {})
        for key in [k for k in kwargs if k not in _LOGGING_KWARGS]:
            extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})


def setup_logging(level: Optional[int] = None, json_format: Optional[bool] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    ``level`` and ``json_format`` override the environment.
    """
    level = _get_log_level() if level is None else level
    json_format = _use_json_logging() if json_format is None else json_format

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_format else TextFormatter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.setLevel(level)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request id (honouring X-Request-ID), tags log lines with the
    connected ledger account, logs one line per response and feeds the
    request metrics.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request_token = request_id_var.set(request_id)
        services = getattr(request.app.state, "services", None)
        account = services.ledger.account if services is not None else None
        account_token = account_var.set(account or "")

        logger = get_logger("givecore.request")
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception:
            logger.exception("Unhandled error", method=request.method, path=request.url.path)
            raise
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.log(
                logging.INFO if status_code < 400 else logging.WARNING,
                f"{request.method} {request.url.path} -> {status_code}",
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
            )
            get_metrics().record_request(duration_ms, success=status_code < 500)
            request_id_var.reset(request_token)
            account_var.reset(account_token)


# ============================================================
# METRICS
# ============================================================

def _percentile(samples, p: float) -> Optional[float]:
    if not samples:
        return None
    ordered = sorted(samples)
    return ordered[min(int(len(ordered) * p), len(ordered) - 1)]


def _samples() -> deque:
    return deque(maxlen=_LATENCY_SAMPLES)


@dataclass
class MetricsCollector:
    """
    Process-local counters for ledger transactions, remote-store fallbacks
    and HTTP requests. Latencies keep the most recent samples only.
    """

    transactions_submitted: int = 0
    transactions_confirmed: int = 0
    transactions_failed: int = 0
    remote_fallbacks: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    confirmation_latencies_ms: deque = field(default_factory=_samples)
    request_latencies_ms: deque = field(default_factory=_samples)

    def record_submission(self) -> None:
        self.transactions_submitted += 1

    def record_transaction(self, latency_ms: float, success: bool) -> None:
        """Outcome of one transaction after its confirmation wait."""
        if success:
            self.transactions_confirmed += 1
        else:
            self.transactions_failed += 1
        self.confirmation_latencies_ms.append(latency_ms)

    def record_remote_fallback(self) -> None:
        self.remote_fallbacks += 1

    def record_request(self, latency_ms: float, success: bool) -> None:
        self.requests_total += 1
        if not success:
            self.requests_failed += 1
        self.request_latencies_ms.append(latency_ms)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "transactions_submitted": self.transactions_submitted,
            "transactions_confirmed": self.transactions_confirmed,
            "transactions_failed": self.transactions_failed,
            "remote_fallbacks": self.remote_fallbacks,
            "requests_total": self.requests_total,
            "requests_failed": self.requests_failed,
            "confirmation_latency_p50_ms": _percentile(self.confirmation_latencies_ms, 0.5),
            "confirmation_latency_p95_ms": _percentile(self.confirmation_latencies_ms, 0.95),
            "request_latency_p50_ms": _percentile(self.request_latencies_ms, 0.5),
            "request_latency_p95_ms": _percentile(self.request_latencies_ms, 0.95),
        }


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """The process-wide collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


async def check_health(ledger=None, store=None) -> HealthStatus:
    """
    Run all health checks.

    The ledger being unready makes the service unhealthy. The remote
    off-chain backend being down does not: the local backend covers it.

    Args:
        ledger: LedgerClient instance
        store: OffchainStore instance
    """
    start = time.perf_counter()
    checks = {}
    all_healthy = True

    checks["liveness"] = {"status": "healthy"}

    if ledger is not None:
        checks["ledger"] = {
            "status": "healthy" if ledger.is_ready else "unhealthy",
            "ready": ledger.is_ready,
            "chain_id": ledger.chain_id,
            "account": ledger.account,
            "in_flight": len(ledger.in_flight),
        }
        if not ledger.is_ready:
            all_healthy = False

    if store is not None:
        remote_status = await store.remote_status()
        checks["offchain_store"] = {
            "status": "healthy",
            "remote": remote_status,
            "local_collections": store.local.collection_sizes(),
        }

    duration_ms = (time.perf_counter() - start) * 1000

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round(duration_ms, 2),
    )
