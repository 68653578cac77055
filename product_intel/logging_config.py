"""
Product Intelligence Logging
============================

Root logger setup for services embedding the engine:
- JSON lines (log aggregation) or a readable console format
- Optional size-rotated log file
- Structured extras (stage, tenant_scope, duration_ms, ...) in both formats
- timed_stage() for logging how long a step of the pipeline took

Usage:
    from product_intel.logging_config import setup_logging

    setup_logging(json_output=True, log_file="logs/intel.log")
"""

import json
import logging
import logging.handlers
import os
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Optional

# Extra attributes copied from LogRecord into output when present
EXTRA_FIELDS = (
    "request_id",
    "stage",
    "source_id",
    "tenant_scope",
    "duration_ms",
    "candidates",
)

NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "openai", "anthropic")


def _record_extras(record: logging.LogRecord, fields: Iterable[str]) -> dict:
    return {
        key: getattr(record, key)
        for key in fields
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Output format:
        {"ts": "...", "level": "INFO", "logger": "product_intel.ai.dedup_agent",
         "msg": "...", "service": "product-intel", "duration_ms": 412}
    """

    def __init__(self, service: Optional[str] = None, extra_fields: Iterable[str] = EXTRA_FIELDS):
        super().__init__()
        self.service = service
        self.extra_fields = tuple(extra_fields)

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if self.service:
            entry["service"] = self.service

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(_record_extras(record, self.extra_fields))
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line format; structured extras trail as key=value pairs."""

    FORMAT = "%(asctime)s [%(levelname)-8s] %(name)-36s | %(message)s"

    def __init__(self, extra_fields: Iterable[str] = EXTRA_FIELDS):
        super().__init__(self.FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        self.extra_fields = tuple(extra_fields)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _record_extras(record, self.extra_fields)
        if not extras:
            return line
        suffix = " ".join(f"{k}={v}" for k, v in extras.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
    service: Optional[str] = "product-intel",
):
    """
    Configure the root logger.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Emit JSON lines instead of the console format
        log_file: Optional file path, rotated at max_bytes
        max_bytes: Max file size before rotation
        backup_count: Number of rotated files to keep
        service: Service name stamped on JSON records
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    formatter = JSONFormatter(service=service) if json_output else ConsoleFormatter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # SDK request logs drown out the engine's own
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(
        "Logging configured: level=%s json=%s file=%s",
        level, json_output, log_file or "none",
    )


def setup_logging_from_config(config, service: Optional[str] = "product-intel") -> None:
    """Configure logging from a LoggingConfig (see product_intel.config)."""
    setup_logging(
        level=config.level,
        json_output=config.json_logs,
        log_file=config.log_file,
        service=service,
    )


@contextmanager
def timed_stage(logger: logging.Logger, stage: str, level: int = logging.DEBUG, **fields):
    """
    Log the duration of a block with stage / duration_ms extras.

    Failures are not logged here; the exception propagates to the caller.

    Usage:
        with timed_stage(logger, "candidate_retrieval", tenant_scope=scope):
            hits = await index.nearest_neighbors(...)
    """
    start = time.monotonic()
    yield
    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.log(
        level,
        f"{stage} finished in {elapsed_ms}ms",
        extra={"stage": stage, "duration_ms": elapsed_ms, **fields},
    )
