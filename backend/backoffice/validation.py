# Overview: Input validation helpers shared by routes and services.

from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from backoffice.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """
    400-level input problem.

    errors: optional per-field list [{"field": ..., "message": ...}]
    """

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate code)."""


class FieldErrors:
    """
    Collects field problems so a request reports all of them at once.

    Usage:
        errs = FieldErrors()
        name = errs.string(payload, "customer_name")
        ...
        errs.raise_if_any()
    """

    def __init__(self):
        self.errors: list[dict] = []

    def add(self, field: str, message: str) -> None:
        self.errors.append({"field": field, "message": message})

    def __bool__(self) -> bool:
        return bool(self.errors)

    def raise_if_any(self, message: str = "Validation failed") -> None:
        if self.errors:
            raise ValidationError(message, self.errors)

    def string(self, payload: dict, field: str, *, required: bool = True, max_length: int | None = None):
        value = payload.get(field)
        if value is None:
            if required:
                self.add(field, f"{field} is required")
            return None
        if not isinstance(value, str):
            self.add(field, f"{field} must be a string")
            return None
        value = value.strip()
        if required and not value:
            self.add(field, f"{field} cannot be blank")
            return None
        if max_length and len(value) > max_length:
            self.add(field, f"{field} exceeds max length {max_length}")
            return None
        return value or None

    def integer(self, payload: dict, field: str, *, required: bool = True, minimum: int | None = None):
        if payload.get(field) is None:
            if required:
                self.add(field, f"{field} is required")
            return None
        try:
            value = parse_strict_int(payload[field], field)
        except ValidationError as exc:
            self.add(field, exc.message)
            return None
        if minimum is not None and value < minimum:
            self.add(field, f"{field} must be >= {minimum}")
            return None
        if value > MAX_AMOUNT_CENTS:
            self.add(field, f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
            return None
        return value

    def choice(self, payload: dict, field: str, choices, *, default=None):
        value = payload.get(field)
        if value is None:
            return default
        if value not in choices:
            self.add(field, f"{field} must be one of: {', '.join(choices)}")
            return None
        return value


def parse_strict_int(value: Any, field: str) -> int:
    """
    Integers only: rejects bools, floats, decimal strings and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def parse_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        # str() first so floats keep their printed value (0.1, not 0.1000000000000000055...)
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a number")
    return result


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return parse_strict_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, Numeric):
        return parse_decimal(value, col.key)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)

    Every problem is reported, each under its field name.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errs = FieldErrors()

    required = policy.required_on_create or set()
    if not partial:
        for f in sorted(required):
            if f not in payload:
                errs.add(f, f"{f} is required")

    cols = _columns_by_key(model)

    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            errs.add(k, f"Field not allowed: {k}")
            continue
        col = cols[k]

        if raw is None:
            if not col.nullable:
                errs.add(k, f"{k} cannot be null")
                continue
            patch[k] = None
            continue

        try:
            val = _coerce_value(col, raw)
        except ValidationError as exc:
            errs.add(k, exc.message)
            continue

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                errs.add(k, f"{k} cannot be blank")
                continue

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                errs.add(k, f"{k} exceeds max length {col.type.length}")
                continue

        patch[k] = val

    errs.raise_if_any()
    return patch


def enforce_money_range(patch: dict, *fields: str) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    errs = FieldErrors()
    for field in fields:
        value = patch.get(field)
        if value is None:
            continue
        if value < 0:
            errs.add(field, f"{field} must be >= 0")
        elif value > MAX_AMOUNT_CENTS:
            errs.add(field, f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    errs.raise_if_any()


def validate_branch(branch, branches, errs: FieldErrors, field: str = "branch"):
    if branch is None:
        errs.add(field, f"{field} is required")
        return None
    if branch not in branches:
        errs.add(field, f"{field} must be one of: {', '.join(branches)}")
        return None
    return branch
