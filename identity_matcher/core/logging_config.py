"""
Logging setup shared by the application entry point and scripts.
"""
import logging
import os
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; LOG_LEVEL from the environment wins over the default."""
    resolved = level or os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(level=resolved.upper(), format=LOG_FORMAT)
