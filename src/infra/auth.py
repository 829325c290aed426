"""
Authentication entry point for routes.

Routes import the auth decorators from here rather than from the middleware
module directly.
"""

from src.middleware.auth import require_auth, optional_auth, current_user_id

__all__ = ["require_auth", "optional_auth", "current_user_id"]
