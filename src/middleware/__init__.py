# -*- coding: utf-8 -*-
"""
Middleware package: token auth and JSON error handlers.
"""

from .auth import require_auth, optional_auth, issue_token
from .errors import register_error_handlers

__all__ = [
    'require_auth',
    'optional_auth',
    'issue_token',
    'register_error_handlers',
]
