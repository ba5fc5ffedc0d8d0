"""
Logging setup for the cart engine service.

Call setup_logging() once at startup; main.py does this before the app is
created.

Environment variables:
    LOG_LEVEL: Level of the "cart_engine" package loggers (default: INFO).
        Unknown names fall back to INFO.
    LOG_DECISION_TRACES: Set to 1 to show DecisionTrace events (logged by
        cart_engine.tracing at DEBUG) while the rest of the package stays
        at LOG_LEVEL. At LOG_LEVEL=DEBUG they are shown anyway.

SQL statements and HTTP client chatter stay at WARNING unless the package
runs at DEBUG.
"""
import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
TRACE_LOGGER = "cart_engine.tracing"
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")


def _parse_level(value: Optional[str]) -> int:
    level = logging.getLevelName((value or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def setup_logging(level: Optional[str] = None, decision_traces: Optional[bool] = None) -> None:
    """
    Configure the package loggers.

    Args:
        level: Level name; LOG_LEVEL is read when omitted.
        decision_traces: Show decision trace events; LOG_DECISION_TRACES is
            read when omitted.
    """
    numeric_level = _parse_level(level if level is not None else os.getenv("LOG_LEVEL"))
    if decision_traces is None:
        decision_traces = _env_flag("LOG_DECISION_TRACES")

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, stream=sys.stdout)
    logging.getLogger("cart_engine").setLevel(numeric_level)

    # NOTSET lets the trace logger follow the package level
    logging.getLogger(TRACE_LOGGER).setLevel(logging.DEBUG if decision_traces else logging.NOTSET)

    library_level = logging.NOTSET if numeric_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    logging.getLogger(__name__).debug(
        "Logging at %s, decision traces %s",
        logging.getLevelName(numeric_level), "on" if decision_traces else "off",
    )
