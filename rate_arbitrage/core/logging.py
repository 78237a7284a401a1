from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from rate_arbitrage.config.models import LoggingConfig

_MAX_LOG_SIZE = 5 * 1024 * 1024
_BACKUP_COUNT = 3
_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# logger name -> file under logs/
_COMPONENT_LOGS = {
    "rate_arbitrage.system": "system.log",
    "rate_arbitrage.providers": "providers.log",
    "rate_arbitrage.venues": "venues.log",
    "rate_arbitrage.services.price_cache": "price_cache.log",
    "rate_arbitrage.services.rate_aggregator": "rate_aggregator.log",
    "rate_arbitrage.services.arbitrage_engine": "arbitrage_engine.log",
    "rate_arbitrage.core.http": "http.log",
}


def _create_file_handler(log_file: Path, level: str) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        log_file,
        maxBytes=_MAX_LOG_SIZE,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FORMAT))
    return handler


def _setup_logger(logger_name: str, log_file: str, level: str, logs_dir: Path) -> logging.Logger:
    # Component loggers write to their own file and still propagate to the root console handler.
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, RotatingFileHandler):
            logger.removeHandler(handler)
            handler.close()
    logger.addHandler(_create_file_handler(logs_dir / log_file, level))
    return logger


def configure_logging(config: LoggingConfig, logs_dir: Path | str = "logs") -> None:
    shared_processors: list[structlog.types.Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor
    if config.json_format:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(config.level)),
        cache_logger_on_first_use=True,
    )

    logs_path = Path(logs_dir)
    logs_path.mkdir(parents=True, exist_ok=True)

    level = config.level
    for logger_name, log_file in _COMPONENT_LOGS.items():
        _setup_logger(logger_name, log_file, level, logs_path)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not any(getattr(h, "_rate_arbitrage_console", False) for h in root_logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(_FORMAT))
        console_handler._rate_arbitrage_console = True  # type: ignore[attr-defined]
        root_logger.addHandler(console_handler)
