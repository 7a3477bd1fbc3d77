# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error taxonomy and structured operation results.

Business-rule failures (precondition, validation, not found) and
infrastructure failures travel back to the caller as ``GovernanceResult``
values. Authorization failures are raised as ``GovernanceAuthorizationError``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Failure categories."""
    AUTHORIZATION = "authorization"
    PRECONDITION = "precondition"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INFRASTRUCTURE = "infrastructure"


class ErrorCode(str, Enum):
    """Machine-readable failure codes."""
    # authorization
    NOT_AUTHORIZED = "NOT_AUTHORIZED"

    # not found
    ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"
    MEMBERSHIP_NOT_FOUND = "MEMBERSHIP_NOT_FOUND"
    POSITION_NOT_FOUND = "POSITION_NOT_FOUND"
    RESOLUTION_NOT_FOUND = "RESOLUTION_NOT_FOUND"
    MEETING_NOT_FOUND = "MEETING_NOT_FOUND"
    AGENDA_ITEM_NOT_FOUND = "AGENDA_ITEM_NOT_FOUND"
    VOTE_NOT_FOUND = "VOTE_NOT_FOUND"

    # precondition
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    RESOLUTION_NOT_DRAFT = "RESOLUTION_NOT_DRAFT"
    RESOLUTION_NOT_PROPOSED = "RESOLUTION_NOT_PROPOSED"
    RESOLUTION_NOT_APPROVED = "RESOLUTION_NOT_APPROVED"
    PROJECT_ALREADY_INITIALIZED = "PROJECT_ALREADY_INITIALIZED"
    PROJECT_METADATA_MISSING = "PROJECT_METADATA_MISSING"
    PROCEDURAL_SEQUENCE_INCOMPLETE = "PROCEDURAL_SEQUENCE_INCOMPLETE"
    PROCEDURAL_ITEM_NOT_DELETABLE = "PROCEDURAL_ITEM_NOT_DELETABLE"
    MEETING_NOT_EDITABLE = "MEETING_NOT_EDITABLE"
    GA_REQUIRES_MEETING = "GA_REQUIRES_MEETING"
    VOTE_ALREADY_OPEN = "VOTE_ALREADY_OPEN"
    VOTE_CLOSED = "VOTE_CLOSED"
    VOTE_NOT_MEETING_BOUND = "VOTE_NOT_MEETING_BOUND"
    VOTE_NOT_ALLOWED = "VOTE_NOT_ALLOWED"
    ORGANIZATION_NOT_ACTIVE = "ORGANIZATION_NOT_ACTIVE"
    ORGANIZATION_NOT_SUBMITTED = "ORGANIZATION_NOT_SUBMITTED"
    ORGANIZATION_NOT_PRE_ORG = "ORGANIZATION_NOT_PRE_ORG"
    READINESS_INCOMPLETE = "READINESS_INCOMPLETE"
    NOTHING_TO_MIGRATE = "NOTHING_TO_MIGRATE"
    LAST_OWNER = "LAST_OWNER"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    # validation
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_PROGRESS = "INVALID_PROGRESS"
    INVALID_BUDGET = "INVALID_BUDGET"
    NO_INDICATOR_VALUES = "NO_INDICATOR_VALUES"
    INVALID_LIVE_TOTALS = "INVALID_LIVE_TOTALS"
    LIVE_TOTALS_EXCEED_ATTENDANCE = "LIVE_TOTALS_EXCEED_ATTENDANCE"

    # infrastructure
    OPERATION_FAILED = "OPERATION_FAILED"
    ACTIVATION_VERIFICATION_FAILED = "ACTIVATION_VERIFICATION_FAILED"


_NOT_FOUND_CODES = {
    ErrorCode.ORGANIZATION_NOT_FOUND,
    ErrorCode.MEMBERSHIP_NOT_FOUND,
    ErrorCode.POSITION_NOT_FOUND,
    ErrorCode.RESOLUTION_NOT_FOUND,
    ErrorCode.MEETING_NOT_FOUND,
    ErrorCode.AGENDA_ITEM_NOT_FOUND,
    ErrorCode.VOTE_NOT_FOUND,
}

_VALIDATION_CODES = {
    ErrorCode.INVALID_INPUT,
    ErrorCode.INVALID_PROGRESS,
    ErrorCode.INVALID_BUDGET,
    ErrorCode.NO_INDICATOR_VALUES,
    ErrorCode.INVALID_LIVE_TOTALS,
    ErrorCode.LIVE_TOTALS_EXCEED_ATTENDANCE,
}

_INFRASTRUCTURE_CODES = {
    ErrorCode.OPERATION_FAILED,
    ErrorCode.ACTIVATION_VERIFICATION_FAILED,
}


def error_kind(code: ErrorCode) -> ErrorKind:
    """Classify an error code."""
    code = ErrorCode(code)
    if code == ErrorCode.NOT_AUTHORIZED:
        return ErrorKind.AUTHORIZATION
    if code in _NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND
    if code in _VALIDATION_CODES:
        return ErrorKind.VALIDATION
    if code in _INFRASTRUCTURE_CODES:
        return ErrorKind.INFRASTRUCTURE
    return ErrorKind.PRECONDITION


@dataclass
class GovernanceResult:
    """Result of a governance operation."""
    success: bool
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    data: Any = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **details) -> "GovernanceResult":
        return cls(success=True, data=data, details=details)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, **details) -> "GovernanceResult":
        return cls(success=False, error_code=code, error_message=message, details=details)

    @property
    def kind(self) -> Optional[ErrorKind]:
        if self.success or self.error_code is None:
            return None
        return error_kind(self.error_code)


class GovernanceAuthorizationError(Exception):
    """Raised when the caller lacks the role, position or permission required."""

    def __init__(self, message: str, required: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode.NOT_AUTHORIZED
        self.required = required or []


class AuthenticationError(Exception):
    """Raised when the caller identity cannot be established."""
    pass
