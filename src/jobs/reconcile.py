# src/jobs/reconcile.py
"""
Reconciliation sweep job.

Run from cron or a worker with ``flask --app src.main reconcile``, or call
run_reconciliation() directly. Outside an app context a backend app is
created for the duration of the run.
"""
from __future__ import annotations

from typing import Dict

from flask import has_app_context

from src.services.reconciliation import run_reconciliation as _sweep
from src.services.structured_logging import get_logger

logger = get_logger('waifu.jobs.reconcile')


def run_reconciliation(limit: int = 200) -> Dict[str, int]:
    if has_app_context():
        return _sweep(limit=limit)

    from src.factory import create_app  # import here to avoid circulars
    app = create_app()
    with app.app_context():
        logger.info("Reconciliation job starting", limit=limit)
        return _sweep(limit=limit)
