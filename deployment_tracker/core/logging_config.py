"""
Centralized logging configuration for the controller.
This ensures consistent logging setup across the process and tests.
"""
import logging
import sys
from typing import Optional


def setup_logging(level: Optional[str] = None):
    """
    Configure logging for the controller.

    Uses basicConfig to set up:
    - Root logger level: INFO unless LOG_LEVEL says otherwise
    - Format: timestamp, level, name, message
    - Handler: StreamHandler to stdout
    """
    resolved = logging.getLevelName((level or "INFO").strip().upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # The kubernetes client logs every watch reconnect at INFO through urllib3.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_delivery_logger():
    """
    Get a dedicated logger for deployment record delivery outcomes.

    Returns:
        Logger instance used for every post attempt and its outcome
    """
    return logging.getLogger("deployment_records")
