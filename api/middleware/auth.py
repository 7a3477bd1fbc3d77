# SPDX-License-Identifier: Apache-2.0

"""
Authentication middleware for JWT token validation and user context extraction.

Identity comes from the bearer token; verified membership is resolved later
by the membership directory.
"""

from functools import wraps
from flask import request, g, current_app
from typing import Optional, Dict, Any, Callable
from opentelemetry import trace
import logging

from models.entities import UserContext
from models.errors import AuthenticationError
from services.auth import TokenValidationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthMiddleware:
    """
    JWT authentication middleware for Flask applications.

    Handles token extraction, validation and user context building for
    protected endpoints.
    """

    def __init__(self, auth_service):
        self.auth_service = auth_service

    def extract_token_from_request(self) -> Optional[str]:
        """
        Extract JWT token from request headers.

        Returns:
            JWT token string or None if not found
        """
        auth_header = request.headers.get('Authorization', '')

        if not auth_header.startswith('Bearer '):
            return None

        return auth_header[7:].strip() or None

    def get_request_info(self) -> Dict[str, Any]:
        return {
            "ip_address": request.remote_addr,
            "user_agent": request.headers.get('User-Agent', '')
        }

    def build_user_context(self, token_payload: Dict[str, Any], request_info: Dict[str, Any]) -> UserContext:
        """
        Build user context from validated token payload and request information.

        Args:
            token_payload: Decoded JWT payload
            request_info: Request metadata (IP, user agent)

        Returns:
            UserContext object for request processing
        """
        return UserContext(
            user_id=token_payload["sub"],
            org_id=token_payload.get("org_id"),
            email=token_payload.get("email"),
            name=token_payload.get("name"),
            permissions=token_payload.get("permissions") or [],
            token_payload=token_payload,
            ip_address=request_info.get("ip_address"),
            user_agent=request_info.get("user_agent")
        )

    def authenticate(self) -> UserContext:
        """
        Validate the request's bearer token.

        Raises:
            AuthenticationError: token missing or invalid
        """
        with tracer.start_as_current_span("auth.middleware.validate_request") as span:
            token = self.extract_token_from_request()
            if not token:
                span.set_attribute("auth.result", "missing_token")
                logger.warning("Authentication failed: missing token", extra={"path": request.path})
                raise AuthenticationError("Missing authorization token")

            try:
                token_payload = self.auth_service.validate_token(token)
            except TokenValidationError as e:
                span.set_attribute("auth.result", "invalid_token")
                raise AuthenticationError(str(e))

            user_context = self.build_user_context(token_payload, self.get_request_info())
            span.set_attributes({
                "auth.result": "success",
                "user.id": user_context.user_id
            })
            return user_context


def current_user_context() -> UserContext:
    """Return the authenticated caller, validating the token on first use."""
    user_context = g.get('user_context')
    if user_context is None:
        user_context = current_app.auth_middleware.authenticate()
        g.user_context = user_context
    return user_context


def require_jwt(f: Callable) -> Callable:
    """Require a valid bearer token and pass the caller as first argument."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        return f(current_user_context(), *args, **kwargs)

    return decorated_function
