"""
JSON error handlers.

Every error reaches the client as {"error": <code>, "message": <text>}
plus any detail fields the exception carries.
"""
from flask import jsonify
from marshmallow import ValidationError as SchemaValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from werkzeug.exceptions import HTTPException

from src.infra.log import get_logger
from src.services.errors import WaifuError
from src.database import db

logger = get_logger('waifu.errors')


def register_error_handlers(app):
    """Register the application's error handlers"""

    @app.errorhandler(WaifuError)
    def handle_waifu_error(e):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.message}", error_code=e.code, **e.details)
        else:
            logger.info(f"{type(e).__name__}: {e.message}", error_code=e.code)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SchemaValidationError)
    def handle_schema_error(e):
        return jsonify({
            'error': 'validation_error',
            'message': 'Invalid request body',
            'fields': e.messages,
        }), 400

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        """Handle database integrity errors (foreign key, unique constraint)"""
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        db.session.rollback()
        logger.error(f"Database integrity error: {error_msg}")

        if 'unique' in error_msg.lower() or 'duplicate' in error_msg.lower():
            return jsonify({
                'error': 'duplicate_entry',
                'message': 'This entry already exists'
            }), 409

        return jsonify({
            'error': 'integrity_error',
            'message': 'Data integrity constraint violated'
        }), 400

    @app.errorhandler(OperationalError)
    def handle_operational_error(e):
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        db.session.rollback()
        logger.error(f"Database operational error: {error_msg}")
        return jsonify({
            'error': 'database_error',
            'message': 'Database operation failed. Please try again later.'
        }), 503

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({
            'error': e.name.lower().replace(' ', '_'),
            'message': e.description,
        }), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception(f"Unhandled error: {e}")
        return jsonify({
            'error': 'internal_error',
            'message': 'Server Error'
        }), 500
