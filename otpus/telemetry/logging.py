from __future__ import annotations

import logging
from typing import Any, Mapping

import structlog

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# No IPs or request headers should leak into logs
UNWANTED_KEYS = {"client", "client_ip", "headers", "request_headers", "client_addr"}


def _get_log_level(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)


def init_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure stdlib logging; with ``json_logs`` records are rendered by structlog.

    JSON fields: ts, level, logger, event (the formatted message), exception.
    """
    log_level = _get_log_level(level)

    if not json_logs:
        logging.basicConfig(level=log_level, format=PLAIN_FORMAT, force=True)
        return

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
    ]

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _rename_level_to_lower,
                _drop_unwanted_keys,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

    # aiohttp access log carries client IPs
    logging.getLogger("aiohttp.access").disabled = True


def _rename_level_to_lower(logger: Any, method_name: str, event_dict: Mapping[str, Any]):
    level = event_dict.get("level") or event_dict.get("levelname")
    if level:
        event_dict = dict(event_dict)
        event_dict["level"] = str(level).lower()
        event_dict.pop("levelname", None)
    return event_dict


def _drop_unwanted_keys(logger: Any, method_name: str, event_dict: Mapping[str, Any]):
    if not UNWANTED_KEYS.intersection(event_dict.keys()):
        return event_dict
    return {k: v for k, v in event_dict.items() if k not in UNWANTED_KEYS}
