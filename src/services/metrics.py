# -*- coding: utf-8 -*-
"""
Prometheus metrics for the WaifuHospital services.

Each app gets its own CollectorRegistry so several apps (backend, AI service,
test fixtures) can live in one process. HTTP requests are recorded by
before/after hooks; domain counters are recorded through get_metrics_service().
"""

import time
import uuid
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context
from prometheus_client import CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest


def init_metrics(app: Flask) -> 'MetricsService':
    """Attach a MetricsService to the app and expose /metrics."""
    service = MetricsService(enabled=bool(app.config.get("WAIFU_METRICS_ENABLED", True)))
    app.extensions['metrics'] = service

    if service.enabled:
        @app.before_request
        def _metrics_start():
            g.metrics_start_time = time.time()

        @app.after_request
        def _metrics_record(response):
            started = getattr(g, 'metrics_start_time', None)
            if started is not None:
                service.record_http_request(
                    route=request.path,
                    method=request.method,
                    status_code=response.status_code,
                    duration_seconds=time.time() - started
                )
            return response

        @app.route("/metrics")
        def metrics():
            return generate_latest(service.registry), 200, {
                'Content-Type': 'text/plain; version=0.0.4; charset=utf-8'}

    return service


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None):
        self.enabled = enabled
        self.registry = registry if registry is not None else CollectorRegistry()

        if self.enabled:
            self.http_requests_total = Counter(
                "waifu_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "waifu_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.checkouts_total = Counter(
                "waifu_checkouts_total",
                "Checkout quotes and completions by outcome.",
                ["stage", "outcome"],
                registry=self.registry
            )
            self.webhook_events_total = Counter(
                "waifu_webhook_events_total",
                "Webhook deliveries by provider, event type and outcome.",
                ["provider", "event_type", "outcome"],
                registry=self.registry
            )
            self.fallbacks_total = Counter(
                "waifu_fallbacks_total",
                "Cosmetic fallback substitutions (chat, image, shipping estimate).",
                ["operation"],
                registry=self.registry
            )

    def record_http_request(self, route: str, method: str, status_code: int, duration_seconds: float):
        if self.enabled:
            normalized_route = self._normalize_route(route)
            self.http_requests_total.labels(
                route=normalized_route,
                method=method,
                status=status_code).inc()
            self.http_request_duration_seconds.labels(
                route=normalized_route, method=method).observe(duration_seconds)

    def record_checkout(self, stage: str, outcome: str):
        if self.enabled:
            self.checkouts_total.labels(stage=stage, outcome=outcome).inc()

    def record_webhook(self, provider: str, event_type: str, outcome: str):
        if self.enabled:
            self.webhook_events_total.labels(
                provider=provider, event_type=event_type, outcome=outcome).inc()

    def record_fallback(self, operation: str):
        if self.enabled:
            self.fallbacks_total.labels(operation=operation).inc()

    def get_metrics(self) -> str:
        if self.enabled:
            return generate_latest(self.registry).decode('utf-8')
        return ""

    def _normalize_route(self, route: str) -> str:
        parts = route.split('/')
        for i, part in enumerate(parts):
            if part.isdigit():
                parts[i] = '{id}'
                continue
            try:
                uuid.UUID(part)
                parts[i] = '{uuid}'
            except (ValueError, AttributeError):
                pass
        return '/'.join(parts)
