"""
Error taxonomy for certificate issuance and verification, plus the JSON
error handlers registered on the Flask app.
"""
import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from models import db


class CredentialError(Exception):
    status_code = 500
    public_message = 'An internal error occurred'

    def __init__(self, message=None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_dict(self):
        return {'success': False, 'message': self.message}


class ValidationError(CredentialError):
    """Missing or malformed input. Never retried."""
    status_code = 400
    public_message = 'Invalid certificate data'

    def __init__(self, errors=None, message=None):
        self.errors = dict(errors or {})
        if message is None and len(self.errors) == 1:
            message = next(iter(self.errors.values()))
        super().__init__(message)

    def to_dict(self):
        payload = super().to_dict()
        if self.errors:
            payload['errors'] = self.errors
        return payload


class AuthorizationError(CredentialError):
    # Same message whether or not the target exists.
    status_code = 403
    public_message = 'You do not have permission to perform this action'

    def __init__(self):
        super().__init__(self.public_message)


class NotFoundError(CredentialError):
    status_code = 404
    public_message = 'Certificate not found'

    def __init__(self, message=None):
        super().__init__(message)


class RenderingError(CredentialError):
    public_message = 'Certificate could not be generated'

    def __init__(self, detail=None):
        super().__init__(self.public_message)
        self.detail = detail


class PersistenceError(CredentialError):
    public_message = 'Certificate could not be saved'

    def __init__(self, detail=None):
        super().__init__(self.public_message)
        self.detail = detail


def register_error_handlers(app) -> None:
    """Map CredentialError subclasses to JSON responses."""

    @app.errorhandler(CredentialError)
    def _handle_credential_error(exc):
        if exc.status_code >= 500:
            logging.error('[ERROR] %s: %s', type(exc).__name__, getattr(exc, 'detail', None) or exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(404)
    def _handle_not_found(_exc):
        return jsonify({'success': False, 'message': 'Not found'}), 404

    @app.errorhandler(405)
    def _handle_method_not_allowed(_exc):
        return jsonify({'success': False, 'message': 'Method not allowed'}), 405

    @app.errorhandler(413)
    def _handle_too_large(_exc):
        return jsonify({'success': False, 'message': 'File size exceeds upload limit'}), 413

    @app.errorhandler(Exception)
    def _handle_unexpected(exc):
        if isinstance(exc, HTTPException):
            return exc
        logging.exception('[ERROR] Unhandled error on %s', request.path)
        try:
            db.session.rollback()
        except SQLAlchemyError:
            logging.exception('[ERROR] Rollback failed')
        return jsonify({'success': False, 'message': CredentialError.public_message}), 500
