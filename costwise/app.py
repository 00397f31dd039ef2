"""
Application setup for costwise.

Provides logging configuration and the factory that assembles a ready
to use optimizer service from environment-based configuration.
"""

import logging
import sys
from typing import Optional

from costwise.config import BaseConfig, get_config
from costwise.core.optimizer_service import OptimizerService, create_optimizer_service


LOG_FORMATS = {
    "json": (
        '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
        '"logger": "%(name)s", "message": "%(message)s"}'
    ),
    "text": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}

DEFAULT_LOG_FORMAT = "json"


def setup_logging(config: BaseConfig) -> None:
    """
    Route all costwise logging to stdout.

    Replaces any handlers already on the root logger with a single stdout
    handler. Unknown levels fall back to INFO and unknown formats to text.

    Args:
        config: Configuration providing LOG_LEVEL and LOG_FORMAT.
    """
    level_name = str(getattr(config, "LOG_LEVEL", "INFO")).upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    format_name = str(getattr(config, "LOG_FORMAT", DEFAULT_LOG_FORMAT)).lower()
    formatter = logging.Formatter(LOG_FORMATS.get(format_name, LOG_FORMATS["text"]))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)


def create_app(config: Optional[BaseConfig] = None, space_id: str = "") -> OptimizerService:
    """
    Application factory.

    Args:
        config: Configuration to use; defaults to the environment's config.
        space_id: Space the service analyzes.

    Returns:
        Configured OptimizerService with logging set up.
    """
    if config is None:
        config = get_config()

    setup_logging(config)
    service = create_optimizer_service(config, space_id=space_id)
    logging.getLogger(__name__).info(
        f"costwise initialized ({type(config).__name__}, space '{space_id}')"
    )
    return service
