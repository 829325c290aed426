# -*- coding: utf-8 -*-
# src/models/types.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.types import TypeDecorator

from src.database import db


class _JSONText(TypeDecorator):
    """
    Store a JSON document in a TEXT column.
    Reads always yield the container type (empty one if null/invalid).
    """
    impl = db.Text
    cache_ok = True
    container: Callable[[], Any] = dict

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(value, default=_json_default)

    def process_result_value(self, value, dialect):
        if not value:
            return self.container()
        try:
            loaded = json.loads(value)
        except ValueError:
            return self.container()
        return loaded if isinstance(loaded, self.container) else self.container()


class JSONList(_JSONText):
    container = list


class JSONDict(_JSONText):
    container = dict


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def money(value) -> float | None:
    """Serialize a Numeric column for API responses."""
    if value is None:
        return None
    return float(Decimal(value).quantize(Decimal("0.01")))


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(value) -> str | None:
    return value.isoformat() if value else None
