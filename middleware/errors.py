"""
JSON error handlers
Every error leaves the API as {'error': message} with its HTTP status
"""
from flask import jsonify
from werkzeug.exceptions import HTTPException
from extensions import db
from services.errors import ProctoringError
import logging

logger = logging.getLogger(__name__)


def register_error_handlers(app):

    @app.errorhandler(ProctoringError)
    def handle_proctoring_error(error):
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.exception(f"Unhandled error: {error}")
        return jsonify({'error': 'Internal server error'}), 500
