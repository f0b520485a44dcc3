import inspect
import json
import logging
import sys
from typing import Any

import httpx
from fastapi import status
from loguru import logger

from src.config.settings import settings

REDACTED = "[REDACTED]"
SENSITIVE_KEY_MARKERS = ("token", "authorization", "secret", "password", "api_key")


def _is_sensitive_key(key: Any) -> bool:
    return isinstance(key, str) and any(marker in key.lower() for marker in SENSITIVE_KEY_MARKERS)


def _sanitize_value(val: Any) -> Any:
    """Recursively cleans log payloads: redacts credentials and strips raw memory addresses."""
    if isinstance(val, dict):
        return {k: REDACTED if _is_sensitive_key(k) else _sanitize_value(v) for k, v in val.items()}
    if isinstance(val, list | tuple | set | frozenset):
        return type(val)(_sanitize_value(v) for v in val)

    if callable(val) or inspect.iscoroutinefunction(val):
        module = getattr(val, "__module__", "")
        qualname = getattr(val, "__qualname__", type(val).__name__)
        return f"{module}.{qualname}()" if module else f"{qualname}()"

    # Objects falling back to the default object.__repr__
    val_repr = repr(val)
    if "<" in val_repr and " at 0x" in val_repr:
        return f"[{val.__class__.__module__}.{val.__class__.__name__}]"

    return val


def log_patcher(record: dict[str, Any]) -> None:
    """Intercepts the Loguru record before it hits sinks to scrub its payload."""
    if "extra" in record:
        record["extra"] = _sanitize_value(record["extra"])

    if "args" in record:
        record["args"] = tuple(_sanitize_value(arg) for arg in record["args"])


class InterceptHandler(logging.Handler):
    """Intercepts standard logging messages and routes them to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class SeqSink:
    """Synchronous sink shipping serialized Loguru records to Seq's raw ingestion API."""

    def __init__(self, server_url: str, api_key: str | None = None):
        self.server_url = f"{server_url.rstrip('/')}/api/events/raw"
        self.api_key = api_key
        self.client = httpx.Client(timeout=4.0)

    def _build_event(self, record: dict[str, Any]) -> dict[str, Any]:
        event = {
            "Timestamp": record["time"]["repr"],
            "Level": record["level"]["name"],
            "MessageTemplate": record["message"],
            "Properties": {
                **record["extra"],
                "Function": record["function"],
                "Module": record["module"],
                "Line": record["line"],
                "Process": record["process"].get("name"),
                "Application": settings.APP_NAME,
            },
        }
        if record.get("exception"):
            event["Exception"] = record["exception"]["text"]
        return event

    def write(self, message: str) -> None:
        try:
            record = json.loads(message)["record"]

            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["X-Seq-ApiKey"] = self.api_key

            resp = self.client.post(self.server_url, json={"Events": [self._build_event(record)]}, headers=headers)

            if resp.status_code >= status.HTTP_400_BAD_REQUEST:
                sys.stderr.write(f"Seq API Error {resp.status_code}: {resp.text}\n")

        except Exception as e:
            sys.stderr.write(f"Failed to send log to Seq: {e}\n")


def configure_logging() -> None:
    """Configures Loguru for console and Seq output and captures stdlib loggers."""
    logger.remove()
    logger.configure(patcher=log_patcher)

    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>"
        "{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
        " | {extra}",
        diagnose=False,
    )

    if settings.SEQ_URL:
        logger.add(
            SeqSink(settings.SEQ_URL, api_key=settings.SEQ_API_KEY),
            level=settings.LOG_LEVEL,
            format="{message}",
            serialize=True,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for _log in ["uvicorn", "uvicorn.error", "fastapi", "arq", "arq.worker"]:
        _logger = logging.getLogger(_log)
        _logger.handlers = [InterceptHandler()]
        _logger.propagate = False

    for _lib in ["httpx", "httpcore", "aiosqlite"]:
        _log = logging.getLogger(_lib)
        _log.setLevel(logging.WARNING)
        _log.propagate = False
        _log.handlers = []

    logger.info("Logging configured. Forwarding to Seq: {}", settings.SEQ_URL)
