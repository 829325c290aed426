"""
Infrastructure package - unified entry points for core services.

- Database (db)
- Authentication (require_auth, optional_auth)
- Logging (configure_logging, init_logging, get_logger)
"""

from src.infra.db import db
from src.infra.auth import require_auth, optional_auth
from src.infra.log import configure_logging, init_logging, get_logger

__all__ = [
    "db",
    "require_auth",
    "optional_auth",
    "configure_logging",
    "init_logging",
    "get_logger",
]
