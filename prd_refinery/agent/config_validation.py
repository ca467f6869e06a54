"""Shared configuration validation helpers."""

from __future__ import annotations


def require_positive_int(value: int, field_name: str) -> int:
    """Validate a positive integer input and return it."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{field_name} must be greater than zero.")
    return value


def require_unit_interval(value: float, field_name: str) -> float:
    """Validate that a number lies within [0, 1] and return it as float."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number between 0 and 1.")
    if not 0.0 <= float(value) <= 1.0:
        raise ValueError(f"{field_name} must be between 0 and 1.")
    return float(value)


def validate_choice(value: str, field_name: str, allowed: set[str]) -> str:
    """Validate that a string value is within a set of allowed options."""
    if value not in allowed:
        options = ", ".join(sorted(allowed))
        raise ValueError(f"{field_name} must be one of: {options}.")
    return value
