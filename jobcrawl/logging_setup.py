"""
Logging configuration.

Console output keeps the ANSI colors used in progress lines; the optional
log file gets the same records with the color codes stripped.
"""

import logging
import re
from typing import List

from .config import Settings


class ColorStripFormatter(logging.Formatter):
    """Formatter that strips ANSI color codes from log messages."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record):
        message = super().format(record)
        return self.ansi_escape.sub('', message)


def setup_logging(settings: Settings) -> None:
    """Configure console (and optionally file) logging from settings."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(settings.log_format))
    handlers: List[logging.Handler] = [console_handler]

    log_path = settings.log_path
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(ColorStripFormatter(settings.log_format))
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    # Quiet down chatty transport libraries
    for noisy in ('httpx', 'httpcore', 'asyncio'):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
