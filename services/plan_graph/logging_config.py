"""
Centralized Logging Configuration for the Plan Graph service

structlog renders everything, including records from uvicorn and SQLAlchemy
that come through the stdlib root logger. Modules never configure logging
themselves:

    from logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("dependency_added", task_id=str(task.id))

Request-scoped values (request path, acting user) are bound with
``bind_request_context`` and show up on every event logged while the
request is handled.
"""
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

from plan_config import JSON_LOGS, LOG_FILE, LOG_LEVEL

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, json_logs: bool = False) -> None:
    """
    Route structlog through stdlib handlers so both share one renderer.

    ``json_logs`` switches from the console renderer to one JSON object per line.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_SHARED_PROCESSORS,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # SQL echo is opt-in through the engine, not through LOG_LEVEL=DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> Any:
    return structlog.get_logger(name)


def bind_request_context(**values) -> None:
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_task_transition(
    task_id: str,
    plan_id: str,
    from_status: str,
    to_status: str,
    actor: Optional[str],
    override_prerequisites: bool = False
) -> None:
    """One event per task status change; overrides are logged at WARNING."""
    logger = get_logger("task_transition")
    log = logger.warning if override_prerequisites else logger.info
    log(
        "task_transition",
        task_id=task_id,
        plan_id=plan_id,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        override_prerequisites=override_prerequisites,
        changed_at=datetime.now(timezone.utc).isoformat(),
    )


def log_error(error: Exception, context: Optional[dict] = None) -> None:
    """Unexpected failure with its traceback and whatever context the caller has."""
    get_logger("plan_graph.errors").error(
        "unhandled_error",
        error_type=type(error).__name__,
        error=str(error),
        exc_info=error,
        **(context or {}),
    )


def http_request_summary(method: str, path: str, status_code: int, duration_ms: float) -> None:
    level = logging.WARNING if status_code >= 500 else logging.INFO
    get_logger("http").log(
        level,
        "http_request",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )


setup_logging(level=LOG_LEVEL, log_file=LOG_FILE, json_logs=JSON_LOGS)
