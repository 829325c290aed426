# -*- coding: utf-8 -*-
"""
Request context middleware.

Gives every request a UUID request_id (taken from an incoming X-Request-ID
header when it is a valid UUID), echoes it back with the response time, and
exposes the context to structured logging. Auth code records the caller with
set_user_context().
"""

import uuid
import time
from typing import Optional
from flask import Flask, request, g, Response


class RequestContextMiddleware:

    def __init__(self, app: Flask):
        self.app = app
        app.before_request(self._before_request)
        app.after_request(self._after_request)

    def _before_request(self):
        g.request_id = self._get_or_generate_request_id()
        g.request_start_time = time.time()
        g.request_method = request.method
        g.request_path = request.path
        g.request_remote_addr = request.remote_addr
        g.user_id = None

    def _after_request(self, response: Response) -> Response:
        if hasattr(g, 'request_id'):
            response.headers['X-Request-ID'] = g.request_id
        if hasattr(g, 'request_start_time'):
            duration_ms = round((time.time() - g.request_start_time) * 1000, 2)
            response.headers['X-Response-Time'] = f"{duration_ms}ms"
        return response

    def _get_or_generate_request_id(self) -> str:
        request_id = request.headers.get('X-Request-ID')
        if request_id:
            try:
                uuid.UUID(request_id)
                return request_id
            except ValueError:
                pass
        return str(uuid.uuid4())


def get_request_id() -> Optional[str]:
    """Get current request_id from Flask g context."""
    return getattr(g, 'request_id', None)


def get_request_context() -> dict:
    """Get request context fields for log records."""
    context = {
        'request_id': getattr(g, 'request_id', None),
        'method': getattr(g, 'request_method', None),
        'path': getattr(g, 'request_path', None),
        'remote_addr': getattr(g, 'request_remote_addr', None),
    }
    if getattr(g, 'user_id', None):
        context['user_id'] = g.user_id
    return context


def set_user_context(user_id: Optional[str]):
    """Record the authenticated user for the rest of the request."""
    if user_id:
        g.user_id = user_id


def init_request_context(app: Flask):
    return RequestContextMiddleware(app)
