"""Application bootstrap helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import AppConfig, load_config
from .logging_setup import configure_logging
from .measurements.payload import PayloadPool
from .web.app import create_web_app

LOGGER = logging.getLogger(__name__)


class ApplicationContext:
    """Holds the process-wide resources of the service."""

    def __init__(self, config: AppConfig):
        self.config = config
        configure_logging(config)
        self.payload_pool = PayloadPool(config.throughput.pool_bytes)
        self.web_app = create_web_app(config=config, payload_pool=self.payload_pool)

    def start(self) -> None:
        self.payload_pool.open()

    def stop(self) -> None:
        self.payload_pool.close()
        LOGGER.info("Service stopped")


def bootstrap(config_path: Optional[str] = None) -> ApplicationContext:
    """Load configuration and wire dependencies."""

    config_file = Path(config_path).resolve() if config_path else None
    config = load_config(str(config_file)) if config_file else load_config()
    return ApplicationContext(config)
