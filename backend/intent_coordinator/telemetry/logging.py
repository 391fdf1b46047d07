from __future__ import annotations

import logging
import os
from typing import Any, Mapping

import structlog

# per-request INFO lines from these would drown the engine records
CHATTY_LOGGERS = ("httpx", "httpcore", "web3", "urllib3")

# Admin tokens and signer material never reach the output
SECRET_KEYS = frozenset({"admin_token", "x_admin_token", "private_key", "signature", "headers"})


def _level(name: str | None = None) -> int:
    level = (name or os.getenv("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level, logging.INFO)


def init_logging(level: str | None = None) -> None:
    """JSON logs for the API and the worker.

    Engine records carry: ts, level, event, event_type, intent_id / ticket_id,
    outcome, duration_ms.
    """
    lvl = _level(level)
    logging.basicConfig(level=lvl, format="%(message)s")
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(lvl, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.processors.format_exc_info,
            _drop_secrets,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        cache_logger_on_first_use=True,
    )


def _drop_secrets(logger: Any, method_name: str, event_dict: Mapping[str, Any]):
    if SECRET_KEYS.isdisjoint(event_dict.keys()):
        return event_dict
    return {k: v for k, v in event_dict.items() if k not in SECRET_KEYS}


def get_logger() -> structlog.stdlib.BoundLogger:  # type: ignore[name-defined]
    return structlog.get_logger()
