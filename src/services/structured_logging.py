"""
Structured JSON logging for the WaifuHospital services.

Provides:
- JSON log lines (or plain text when WAIFU_LOG_JSON=false)
- Request context on every record emitted inside a request (request_id, user_id)
- Keyword context fields: logger.info("Order completed", purchase_id=...)
- Helpers for the events we care about: requests, auth, webhooks, gateway
  calls and cosmetic fallbacks
"""

import json
import logging
import time
from datetime import datetime, timezone
from flask import Flask, has_request_context
from src.services.request_context import get_request_context, get_request_id


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def __init__(self, json_enabled: bool = True):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")
        self.json_enabled = json_enabled

    def format(self, record: logging.LogRecord) -> str:
        if not self.json_enabled:
            line = super().format(record)
            fields = getattr(record, 'extra_fields', None)
            if fields:
                line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
            return line

        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if has_request_context():
            entry.update({k: v for k, v in get_request_context().items() if v is not None})

        if hasattr(record, 'extra_fields'):
            entry.update(record.extra_fields)

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class StructuredLogger:
    """Thin wrapper over logging.Logger that accepts keyword context fields."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, exc_info: bool = False, **kwargs):
        fields = dict(kwargs)
        if 'request_id' not in fields and has_request_context():
            fields['request_id'] = get_request_id()
        self.logger.log(level, message, exc_info=exc_info, extra={'extra_fields': fields})

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log at ERROR with the active traceback attached."""
        self._log(logging.ERROR, message, exc_info=True, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, **kwargs)

    def log_request_start(self, method: str, path: str, **kwargs):
        self.info(f"Request started: {method} {path}",
                  event_type='request_start', method=method, path=path, **kwargs)

    def log_request_end(self, method: str, path: str, status_code: int, duration_ms: float, **kwargs):
        self.info(
            f"Request completed: {method} {path} - {status_code} ({duration_ms}ms)",
            event_type='request_end',
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            **kwargs
        )

    def log_auth_event(self, event: str, success: bool, **kwargs):
        level = logging.INFO if success else logging.WARNING
        self._log(
            level,
            f"Authentication {event}: {'success' if success else 'failure'}",
            event_type='auth_event',
            auth_event=event,
            success=success,
            **kwargs
        )

    def log_webhook_event(self, provider: str, event_type: str, outcome: str, **kwargs):
        """Log the outcome of one webhook delivery (processed, duplicate, ignored, failed)."""
        level = logging.ERROR if outcome == 'failed' else logging.INFO
        self._log(
            level,
            f"Webhook {provider}/{event_type}: {outcome}",
            event_type='webhook',
            provider=provider,
            webhook_type=event_type,
            outcome=outcome,
            **kwargs
        )

    def log_gateway_call(self, provider: str, operation: str, duration_ms: float, success: bool, **kwargs):
        level = logging.INFO if success else logging.WARNING
        self._log(
            level,
            f"Gateway {provider}.{operation} {'ok' if success else 'failed'} ({duration_ms}ms)",
            event_type='gateway_call',
            provider=provider,
            operation=operation,
            duration_ms=duration_ms,
            success=success,
            **kwargs
        )

    def log_fallback(self, operation: str, reason: str, **kwargs):
        """Log a cosmetic fallback substitution (chat reply, image, shipping estimate)."""
        self.warning(
            f"Fallback used for {operation}: {reason}",
            event_type='fallback',
            operation=operation,
            reason=reason,
            **kwargs
        )


def get_logger(name: str) -> StructuredLogger:
    """Get structured logger instance."""
    return StructuredLogger(name)


def configure_logging(app: Flask):
    """Install the structured formatter on the root logger."""
    json_enabled = bool(app.config.get('WAIFU_LOG_JSON', True))
    log_level = str(app.config.get('LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        if getattr(handler, '_waifu_structured', False):
            root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(StructuredFormatter(json_enabled=json_enabled))
    console_handler._waifu_structured = True
    root_logger.addHandler(console_handler)

    app.logger.setLevel(level)
    for name in ('waifu.checkout', 'waifu.webhooks', 'waifu.gateways', 'waifu.auth', 'waifu.ai'):
        logging.getLogger(name).setLevel(level)

    get_logger('waifu.config').info(
        "Logging configured",
        json_enabled=json_enabled,
        log_level=log_level,
    )


class LoggingMiddleware:
    """Logs the start and end of every request except health checks."""

    QUIET_PATHS = ('/health', '/healthz', '/readyz', '/metrics')

    def __init__(self, app: Flask):
        self.app = app
        self.logger = get_logger('waifu.requests')
        app.before_request(self._before_request)
        app.after_request(self._after_request)

    def _before_request(self):
        from flask import request

        if request.path in self.QUIET_PATHS:
            return
        self.logger.log_request_start(
            method=request.method,
            path=request.path,
            remote_addr=request.remote_addr,
            content_length=request.content_length,
        )

    def _after_request(self, response):
        from flask import request, g

        if request.path in self.QUIET_PATHS:
            return response

        duration_ms = 0
        if hasattr(g, 'request_start_time'):
            duration_ms = round((time.time() - g.request_start_time) * 1000, 2)

        extra = {}
        if getattr(g, 'user_id', None):
            extra['user_id'] = g.user_id

        self.logger.log_request_end(
            method=request.method,
            path=request.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            **extra
        )
        return response


def init_logging(app: Flask):
    """Configure logging and request logging for an app."""
    configure_logging(app)
    LoggingMiddleware(app)
    get_logger('waifu.startup').info(
        "Application starting",
        app_name=app.name,
        debug=app.debug,
        testing=app.testing,
    )
