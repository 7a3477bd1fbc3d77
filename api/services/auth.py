# SPDX-License-Identifier: Apache-2.0

"""
Authentication service for bearer token verification.

Identity is issued by an external identity provider; this service only
verifies tokens and exposes their claims. HS256 with a shared secret is used
unless a PEM public key is configured, in which case RS256 is used.
"""

import os
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class TokenValidationError(Exception):
    """Raised when token validation fails."""
    pass


class AuthService:
    """
    JWT verification service.

    Claims consumed: ``sub`` (user id), ``org_id``, ``permissions`` and the
    optional ``email`` and ``name``.
    """

    def __init__(self, secret: Optional[str] = None, public_key: Optional[str] = None,
                 audience: Optional[str] = None):
        """
        Initialize the authentication service.

        Args:
            secret: Shared HS256 secret
            public_key: RS256 public key (PEM); takes precedence over the secret
            audience: Expected ``aud`` claim, if any
        """
        self.public_key = public_key or os.getenv("JWT_PUBLIC_KEY")
        self.secret = secret or os.getenv("JWT_SECRET", "dev-secret-key")
        self.audience = audience or os.getenv("JWT_AUDIENCE")
        self.algorithm = "RS256" if self.public_key else "HS256"

    @property
    def verification_key(self) -> str:
        return self.public_key if self.algorithm == "RS256" else self.secret

    def validate_token(self, token: str) -> Dict[str, Any]:
        """
        Validate and decode a JWT token.

        Args:
            token: JWT token string to validate

        Returns:
            Decoded token payload

        Raises:
            TokenValidationError: If token is invalid or expired
        """
        with tracer.start_as_current_span("auth.validate_token") as span:
            span.set_attributes({
                "auth.operation": "validate_token",
                "auth.algorithm": self.algorithm
            })

            try:
                options = {"verify_exp": True, "require": ["sub"]}
                if not self.audience:
                    options["verify_aud"] = False

                payload = jwt.decode(
                    token,
                    self.verification_key,
                    algorithms=[self.algorithm],
                    audience=self.audience,
                    options=options
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                logger.warning("Token validation failed: token expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning(f"Token validation failed: {str(e)}")
                raise TokenValidationError(f"Invalid token: {str(e)}")

            span.set_attributes({
                "auth.validation_result": "success",
                "user.id": payload.get("sub")
            })

            logger.debug(
                "Token validated successfully",
                extra={
                    "user_id": payload.get("sub"),
                    "organization_id": payload.get("org_id")
                }
            )

            return payload

    def issue_token(self, user_id: str, org_id: Optional[str] = None,
                    permissions: Optional[List[str]] = None, expires_minutes: int = 15,
                    signing_key: Optional[str] = None, **claims) -> str:
        """
        Issue a token for development and tests.

        RS256 deployments must pass the private key as ``signing_key``.
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "org_id": org_id,
            "permissions": permissions or [],
            "iat": now,
            "exp": now + timedelta(minutes=expires_minutes),
        }
        if self.audience:
            payload["aud"] = self.audience
        payload.update(claims)

        key = signing_key or self.secret
        return jwt.encode(payload, key, algorithm=self.algorithm)
