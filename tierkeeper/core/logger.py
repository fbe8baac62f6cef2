import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOGGER_PREFIX = "tierkeeper"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

_sentry_initialized = False


def component_of(logger_name: str | None) -> str | None:
    """``tierkeeper.billing`` -> ``billing``; None for foreign loggers."""
    if not logger_name or not logger_name.startswith(f"{LOGGER_PREFIX}."):
        return None
    return logger_name.split(".", 2)[1]


def _tag_component(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    component = component_of(event.get("logger"))
    if component:
        event.setdefault("tags", {})["component"] = component
    return event


def init_sentry(
    dsn: str,
    environment: str = "development",
    traces_sample_rate: float = 0.1,
) -> bool:
    """
    Start the Sentry SDK for the process.

    Errors logged through a component logger become Sentry events tagged
    with that component; INFO and above are kept as breadcrumbs.

    Returns:
        bool: False when no DSN is configured or Sentry is already running.
    """
    global _sentry_initialized

    if _sentry_initialized or not dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.asyncio import AsyncioIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        before_send=_tag_component,
        integrations=[
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            AsyncioIntegration(),
        ],
    )
    _sentry_initialized = True
    return True


def setup_logger(
    component: str,
    log_dir: str | Path = "logs",
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Logger for one component, writing to ``{log_dir}/{component}.log`` and stderr.

    Calling it again for the same component returns the configured logger
    without stacking handlers.
    """
    logger = logging.getLogger(f"{LOGGER_PREFIX}.{component}")
    logger.setLevel(level)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_path / f"{component}.log",
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    console_handler = logging.StreamHandler()

    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
