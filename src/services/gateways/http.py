"""
Shared HTTP plumbing for the REST gateways (fulfillment, image hosting, LLM,
backend character API).
"""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from src.services.errors import ExternalServiceError
from src.services.structured_logging import get_logger

logger = get_logger('waifu.gateways')

JSON = Dict[str, Any]


def build_session(retries: int = 3, retry_posts: bool = False) -> requests.Session:
    """Session with sane retries for flaky provider APIs.

    POST is only retried when the caller says the endpoint is idempotent.
    """
    methods = ["GET", "PUT", "DELETE"]
    if retry_posts:
        methods.append("POST")
    s = requests.Session()
    policy = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(methods),
        raise_on_status=False,
    )
    s.mount("https://", HTTPAdapter(max_retries=policy))
    s.mount("http://", HTTPAdapter(max_retries=policy))
    return s


def request_json(
    session: requests.Session,
    provider: str,
    method: str,
    url: str,
    timeout: float = 30,
    operation: Optional[str] = None,
    **kwargs: Any,
) -> JSON:
    """Send a request and return the decoded JSON body.

    Transport failures, non-2xx statuses and undecodable bodies all raise
    ExternalServiceError naming the provider.
    """
    operation = operation or f"{method} {url}"
    started = time.time()
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.exceptions.Timeout as e:
        _log(provider, operation, started, False, error="timeout")
        raise ExternalServiceError(provider, f"timeout calling {operation}") from e
    except requests.exceptions.RequestException as e:
        _log(provider, operation, started, False, error=str(e))
        raise ExternalServiceError(provider, str(e)) from e

    if response.status_code >= 400:
        _log(provider, operation, started, False, status_code=response.status_code)
        raise ExternalServiceError(
            provider, f"HTTP {response.status_code} from {operation}: {response.text[:300]}",
            upstream_status=response.status_code)

    if not response.content:
        _log(provider, operation, started, True, status_code=response.status_code)
        return {}

    try:
        data = response.json()
    except ValueError as e:
        _log(provider, operation, started, False, error="invalid_json")
        raise ExternalServiceError(provider, f"invalid JSON from {operation}") from e

    _log(provider, operation, started, True, status_code=response.status_code)
    return data


def _log(provider: str, operation: str, started: float, success: bool, **kwargs: Any) -> None:
    logger.log_gateway_call(
        provider, operation, round((time.time() - started) * 1000, 2), success, **kwargs)
