"""
Logging entry point; see src.services.structured_logging.
"""

from src.services.structured_logging import (
    configure_logging,
    init_logging,
    get_logger,
)

__all__ = ["configure_logging", "init_logging", "get_logger"]
