from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException
from postgrest.exceptions import APIError

UNIQUE_VIOLATION = "23505"


class ApiError(Exception):
    """An error that maps directly onto an HTTP error response."""

    def __init__(self, message, status_code=400, **extra):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.extra = extra


def error_response(message, status_code, **extra):
    body = {"status": "error", "error": message}
    body.update(extra)
    return jsonify(body), status_code


def success_response(data=None, status_code=200, **extra):
    body = {"status": "success", "data": data}
    body.update(extra)
    return jsonify(body), status_code


def is_unique_violation(err):
    return isinstance(err, APIError) and str(getattr(err, "code", "")) == UNIQUE_VIOLATION


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def _api_error(err):
        return error_response(err.message, err.status_code, **err.extra)

    @app.errorhandler(APIError)
    def _postgrest_error(err):
        current_app.logger.error("Supabase query failed: %s (code=%s)", err.message, err.code)
        if is_unique_violation(err):
            return error_response("Record already exists", 409)
        return error_response("Internal server error", 500)

    @app.errorhandler(HTTPException)
    def _http_error(err):
        return error_response(err.description or err.name, err.code or 500)

    @app.errorhandler(Exception)
    def _unhandled(err):
        current_app.logger.exception("Unhandled error: %s", err)
        return error_response("Internal server error", 500)
