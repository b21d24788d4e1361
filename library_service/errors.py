import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class LibraryError(Exception):
    """Base error; ``status_code`` is the HTTP status it maps to."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message=None):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_dict(self):
        return {
            "statusCode": self.status_code,
            "error": self.error,
            "message": self.message,
        }


class BadRequestError(LibraryError):
    status_code = 400
    error = "Bad Request"


class UnauthorizedError(LibraryError):
    status_code = 401
    error = "Unauthorized"


class ForbiddenError(LibraryError):
    status_code = 403
    error = "Forbidden"


class NotFoundError(LibraryError):
    status_code = 404
    error = "Not Found"


class ConflictError(LibraryError):
    status_code = 409
    error = "Conflict"


def register_error_handlers(app):
    @app.errorhandler(LibraryError)
    def handle_library_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc):
        payload = {
            "statusCode": exc.code,
            "error": exc.name,
            "message": exc.description,
        }
        return jsonify(payload), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception("Unhandled error")
        return jsonify(LibraryError().to_dict()), 500
