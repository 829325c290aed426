# -*- coding: utf-8 -*-

import time

import sqlalchemy as sa
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from src.database import db
from src.infra.log import get_logger

logger = get_logger('waifu.health')

health_bp = Blueprint('health', __name__)


def _service_name() -> str:
    return current_app.config.get('SERVICE_NAME', 'waifuhospital-backend')


@health_bp.route('/health', methods=['GET', 'HEAD'])
@health_bp.route('/healthz', methods=['GET', 'HEAD'])
def healthz():
    """Liveness check (available at both /health and /healthz)."""
    return jsonify({
        'status': 'ok',
        'service': _service_name(),
        'timestamp': time.time()
    }), 200


@health_bp.route('/readyz', methods=['GET', 'HEAD'])
def readyz():
    """Readiness check; the backend is ready once its database answers."""
    checks = {}
    if 'sqlalchemy' in current_app.extensions:
        try:
            db.session.execute(sa.text('SELECT 1'))
            checks['database'] = True
        except SQLAlchemyError as e:
            logger.error("Readiness database check failed", error=str(e))
            db.session.rollback()
            checks['database'] = False

    ready = all(checks.values())
    return jsonify({
        'status': 'ready' if ready else 'not_ready',
        'service': _service_name(),
        'timestamp': time.time(),
        'checks': checks
    }), 200 if ready else 503
