# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with RFC 7807 problem responses.

Maps raised authentication/authorization errors and returned
``GovernanceResult`` failures to HTTP status codes.
"""

from flask import Flask, request, jsonify, current_app
from werkzeug.exceptions import HTTPException
from typing import Dict, Any, Optional, Tuple
from opentelemetry import trace
import logging

from models.errors import (
    AuthenticationError,
    ErrorKind,
    GovernanceAuthorizationError,
    GovernanceResult
)
from models.responses import to_json_compatible

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

# kind -> (problem type, title, HTTP status)
PROBLEM_TYPES = {
    ErrorKind.AUTHORIZATION: ("insufficient-permissions", "Insufficient Permissions", 403),
    ErrorKind.NOT_FOUND: ("resource-not-found", "Resource Not Found", 404),
    ErrorKind.VALIDATION: ("validation-error", "Validation Error", 422),
    ErrorKind.PRECONDITION: ("precondition-failed", "Precondition Failed", 409),
    ErrorKind.INFRASTRUCTURE: ("internal-server-error", "Internal Server Error", 500),
}


def build_problem(problem_type: str, title: str, status: int, detail: str,
                  code: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a problem document for the current request."""
    base_url = current_app.config.get('BASE_URL', 'http://localhost:5000')
    return {
        "type": f"{base_url}/problems/{problem_type}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": request.path,
        "code": code,
        "details": to_json_compatible(details or {})
    }


def result_response(result: GovernanceResult, success_status: int = 200) -> Tuple[Any, int]:
    """
    Render a service result.

    Args:
        result: Result returned by a governance service
        success_status: Status code used on success

    Returns:
        Tuple of (JSON response, status code)
    """
    if result.success:
        return jsonify(to_json_compatible(result.data)), success_status

    problem_type, title, status = PROBLEM_TYPES[result.kind]
    code = result.error_code.value if hasattr(result.error_code, "value") else result.error_code

    log = logger.error if status >= 500 else logger.info
    log(
        f"Governance operation failed: {code}",
        extra={
            "error_code": code,
            "path": request.path,
            "method": request.method,
            "details": result.details
        }
    )

    return jsonify(build_problem(problem_type, title, status, result.error_message, code, result.details)), status


class ErrorHandlerMiddleware:
    """Centralized error handling middleware."""

    def __init__(self, app: Flask):
        self.app = app
        self.register_error_handlers()

    def register_error_handlers(self):
        """Register error handlers with Flask application."""

        @self.app.errorhandler(AuthenticationError)
        def handle_authentication_error(error):
            return jsonify(build_problem(
                "authentication-required", "Authentication Required", 401, str(error)
            )), 401

        @self.app.errorhandler(GovernanceAuthorizationError)
        def handle_authorization_error(error):
            with tracer.start_as_current_span("error_handler.authorization_error") as span:
                span.set_attributes({
                    "error.type": "insufficient-permissions",
                    "http.path": request.path
                })
                logger.warning(
                    "Authorization denied",
                    extra={"path": request.path, "method": request.method, "required": error.required}
                )
                return jsonify(build_problem(
                    "insufficient-permissions", "Insufficient Permissions", 403, error.message,
                    error.code.value, {"required": error.required}
                )), 403

        @self.app.errorhandler(HTTPException)
        def handle_http_exception(error):
            return self.handle_client_error(error)

        @self.app.errorhandler(Exception)
        def handle_generic_exception(error):
            return self.handle_unexpected_error(error)

    def handle_client_error(self, error: HTTPException) -> Tuple[Any, int]:
        problem_type = (error.name or "error").lower().replace(" ", "-")
        detail = str(error.description) if error.description else error.name

        logger.warning(
            f"HTTP error: {error.name}",
            extra={"status_code": error.code, "path": request.path, "method": request.method}
        )
        return jsonify(build_problem(problem_type, error.name, error.code, detail)), error.code

    def handle_unexpected_error(self, error: Exception) -> Tuple[Any, int]:
        """
        Handle unexpected exceptions not caught by specific handlers.

        Internal details are only exposed outside production.
        """
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "error_class": error.__class__.__name__,
                    "error_message": str(error),
                    "path": request.path,
                    "method": request.method
                },
                exc_info=True
            )

            detail = "An unexpected error occurred"
            if self.app.config.get('ENVIRONMENT') != 'production':
                detail = f"{error.__class__.__name__}: {str(error)}"

            return jsonify(build_problem(
                "internal-server-error", "Internal Server Error", 500, detail, "OPERATION_FAILED"
            )), 500
