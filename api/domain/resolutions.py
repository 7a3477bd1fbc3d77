# SPDX-License-Identifier: Apache-2.0

"""
Resolution domain logic.

This module contains pure functions for the resolution state machine and for
validating the project and indicator metadata families.
"""

import math
from dataclasses import dataclass
from numbers import Real
from typing import List, Dict, Any, Optional

from models.enums import ResolutionStatus
from models.errors import ErrorCode


PROJECT_KEY = "project"
INDICATOR_KEY = "indicator"

# Allowed status transitions
RESOLUTION_TRANSITIONS = {
    ResolutionStatus.DRAFT: [ResolutionStatus.PROPOSED],
    ResolutionStatus.PROPOSED: [ResolutionStatus.APPROVED, ResolutionStatus.REJECTED],
    ResolutionStatus.APPROVED: [],
    ResolutionStatus.REJECTED: [],
}


@dataclass
class ValidationResult:
    """Result of a metadata validation."""
    is_valid: bool
    errors: List[str]
    error_code: Optional[ErrorCode] = None
    warnings: List[str] = None

    def __post_init__(self):
        if self.warnings is None:
            self.warnings = []


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """
    Validate if status transition is allowed.

    Args:
        current_status: Current resolution status
        new_status: Desired new status

    Returns:
        True if transition is valid
    """
    try:
        current = ResolutionStatus(current_status)
        target = ResolutionStatus(new_status)
    except ValueError:
        return False

    return target in RESOLUTION_TRANSITIONS.get(current, [])


def is_terminal_status(status: str) -> bool:
    return not RESOLUTION_TRANSITIONS.get(ResolutionStatus(status))


def has_project_metadata(metadata: Optional[Dict[str, Any]]) -> bool:
    project = (metadata or {}).get(PROJECT_KEY)
    return bool(project)


def _is_number(value: Any) -> bool:
    # bool is an int subclass and is not a valid amount; NaN and infinity are rejected
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def validate_project_initialization(
    phase: str,
    code: Optional[str] = None,
    tags: Optional[List[str]] = None,
    budget_planned: Optional[float] = None
) -> ValidationResult:
    """
    Validate project initialization input.

    Args:
        phase: Project phase label
        code: Optional project code
        tags: Optional tag list
        budget_planned: Optional planned budget

    Returns:
        ValidationResult with validation status and errors
    """
    errors = []
    error_code = None

    if not isinstance(phase, str) or not phase.strip():
        errors.append("Project phase is required")
        error_code = ErrorCode.INVALID_INPUT

    if code is not None and (not isinstance(code, str) or len(code) > 50):
        errors.append("Project code must be a string of at most 50 characters")
        error_code = error_code or ErrorCode.INVALID_INPUT

    if tags is not None:
        if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
            errors.append("Project tags must be a list of strings")
            error_code = error_code or ErrorCode.INVALID_INPUT

    if budget_planned is not None:
        if not _is_number(budget_planned) or budget_planned < 0:
            errors.append("Planned budget must be a non-negative number")
            error_code = error_code or ErrorCode.INVALID_BUDGET

    return ValidationResult(is_valid=not errors, errors=errors, error_code=error_code)


def build_project_metadata(
    phase: str,
    code: Optional[str] = None,
    tags: Optional[List[str]] = None,
    budget_planned: Optional[float] = None
) -> Dict[str, Any]:
    """Build the ``metadata.project`` sub-document."""
    project = {"phase": phase.strip()}
    if code:
        project["code"] = code.strip()
    if tags:
        # Preserve order, drop duplicates and blanks
        project["tags"] = list(dict.fromkeys(tag.strip() for tag in tags if tag.strip()))
    if budget_planned is not None:
        project["budget_planned"] = budget_planned
    return project


def validate_indicator_values(
    progress: Optional[float] = None,
    budget_planned: Optional[float] = None,
    budget_spent: Optional[float] = None
) -> ValidationResult:
    """
    Validate indicator update values.

    Progress must be a number in [0, 1]; budgets must be non-negative numbers;
    at least one value is required.
    """
    if progress is None and budget_planned is None and budget_spent is None:
        return ValidationResult(
            is_valid=False,
            errors=["At least one indicator value is required"],
            error_code=ErrorCode.NO_INDICATOR_VALUES
        )

    errors = []
    error_code = None

    if progress is not None and (not _is_number(progress) or not 0 <= progress <= 1):
        errors.append("Progress must be a number between 0 and 1")
        error_code = ErrorCode.INVALID_PROGRESS

    for name, value in (("budget_planned", budget_planned), ("budget_spent", budget_spent)):
        if value is not None and (not _is_number(value) or value < 0):
            errors.append(f"{name} must be a non-negative number")
            error_code = error_code or ErrorCode.INVALID_BUDGET

    return ValidationResult(is_valid=not errors, errors=errors, error_code=error_code)


def build_indicator_update(
    progress: Optional[float] = None,
    budget_planned: Optional[float] = None,
    budget_spent: Optional[float] = None
) -> Dict[str, Any]:
    """
    Build a ``$set`` document touching only ``metadata.indicator.*`` paths.
    """
    values = {
        "progress": progress,
        "budget_planned": budget_planned,
        "budget_spent": budget_spent,
    }
    return {
        f"metadata.{INDICATOR_KEY}.{key}": value
        for key, value in values.items()
        if value is not None
    }
