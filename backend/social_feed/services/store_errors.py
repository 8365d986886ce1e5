"""
Errors raised by the hosted store and their classification.

Every table/RPC failure surfaces as StoreError with the backend's
machine-readable code (Postgres SQLSTATE or PostgREST PGRSTxxx).
classify_error() maps it onto the classes the pipeline reacts to:

  MISSING_OBJECT  table/column/function/schema absent  -> degrade silently
  AUTH_EXPIRED    session token expired or rejected    -> refresh once, retry once
  UNIQUE_VIOLATION / NO_MATCHING_CONSTRAINT            -> alternate write or lookup
  OTHER           everything else                      -> propagate
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any


class StoreError(Exception):
    """Error returned by a table query or RPC call."""

    def __init__(
        self,
        message: str = "",
        code: str | None = None,
        details: str | None = None,
        hint: str | None = None,
        status: int | None = None,
    ) -> None:
        self.message = (message or "").strip()
        self.code = (code or "").strip() or None
        self.details = details
        self.hint = hint
        self.status = status
        super().__init__(format_store_error(self))

    @classmethod
    def from_payload(cls, payload: Any, status: int | None = None) -> "StoreError":
        """Build from a PostgREST/GoTrue error body (dict, string or anything else)."""
        if isinstance(payload, dict):
            message = (
                payload.get("message")
                or payload.get("msg")
                or payload.get("error_description")
                or payload.get("error")
                or ""
            )
            code = payload.get("code") or payload.get("error_code")
            return cls(
                message=str(message),
                code=str(code) if code is not None else None,
                details=payload.get("details") if isinstance(payload.get("details"), str) else None,
                hint=payload.get("hint") if isinstance(payload.get("hint"), str) else None,
                status=status,
            )
        if isinstance(payload, str):
            return cls(message=payload, status=status)
        return cls(message=json.dumps(payload, default=str) if payload is not None else "", status=status)


class AuthSessionError(Exception):
    """No usable session: not signed in, or the session cannot be refreshed."""


class ErrorKind(str, Enum):
    MISSING_OBJECT = "missing_object"
    AUTH_EXPIRED = "auth_expired"
    UNIQUE_VIOLATION = "unique_violation"
    NO_MATCHING_CONSTRAINT = "no_matching_constraint"
    OTHER = "other"


# 42P01 undefined_table, 3F000 invalid_schema_name, 42703 undefined_column,
# 42883 undefined_function, PGRST106 schema not exposed, PGRST202 function not
# in schema cache, PGRST205 table not in schema cache
MISSING_OBJECT_CODES = frozenset({"42P01", "3F000", "42703", "42883", "PGRST106", "PGRST202", "PGRST205"})
MISSING_OBJECT_MESSAGES = (
    "does not exist",
    "undefined column",
    "schema must be one of the following",
    "could not find the function",
    "could not find the table",
)
# PGRST301 JWT invalid/expired, PGRST303 JWT claims validation failed
AUTH_EXPIRED_CODES = frozenset({"PGRST301", "PGRST303", "bad_jwt", "session_expired", "session_not_found"})
AUTH_EXPIRED_MESSAGES = ("jwt expired", "invalid jwt", "token is expired", "session expired")
UNIQUE_VIOLATION_CODE = "23505"
NO_MATCHING_CONSTRAINT_CODE = "42P10"


def _lower_message(err: BaseException) -> str:
    return str(getattr(err, "message", "") or err).lower()


def _schema_class_code(code: str | None) -> bool:
    """No code, a 42xxx/3F000 SQLSTATE or a PostgREST code. Raised exceptions (P0001...) are not."""
    return code is None or code.startswith("42") or code == "3F000" or code.startswith("PGRST")


def is_missing_db_object(err: BaseException | None) -> bool:
    if err is None or not isinstance(err, StoreError):
        return False
    if err.code in MISSING_OBJECT_CODES:
        return True
    if not _schema_class_code(err.code):
        return False
    msg = _lower_message(err)
    return any(s in msg for s in MISSING_OBJECT_MESSAGES)


def is_auth_expired(err: BaseException | None) -> bool:
    if err is None or not isinstance(err, StoreError):
        return False
    if err.code in AUTH_EXPIRED_CODES or err.status == 401:
        return True
    msg = _lower_message(err)
    return any(s in msg for s in AUTH_EXPIRED_MESSAGES)


def is_unique_violation(err: BaseException | None) -> bool:
    return isinstance(err, StoreError) and err.code == UNIQUE_VIOLATION_CODE


def is_no_matching_constraint(err: BaseException | None) -> bool:
    return isinstance(err, StoreError) and err.code == NO_MATCHING_CONSTRAINT_CODE


def classify_error(err: BaseException) -> ErrorKind:
    """Map an exception onto the pipeline's error classes. Constraint codes win over message sniffing."""
    if is_unique_violation(err):
        return ErrorKind.UNIQUE_VIOLATION
    if is_no_matching_constraint(err):
        return ErrorKind.NO_MATCHING_CONSTRAINT
    if is_auth_expired(err):
        return ErrorKind.AUTH_EXPIRED
    if is_missing_db_object(err):
        return ErrorKind.MISSING_OBJECT
    return ErrorKind.OTHER


def format_store_error(err: Any) -> str:
    """Human-readable one-liner: message, details, hint, code and status joined with ' | '."""
    if err is None:
        return "Unknown error"
    if isinstance(err, str):
        return err or "Unknown error"
    parts = []
    for attr in ("message", "details", "hint"):
        value = getattr(err, attr, None)
        if isinstance(value, str) and value.strip():
            parts.append(value.strip())
    code = getattr(err, "code", None)
    if isinstance(code, str) and code:
        parts.append(f"code={code}")
    status = getattr(err, "status", None)
    if isinstance(status, int):
        parts.append(f"status={status}")
    if parts:
        return " | ".join(parts)
    text = str(err) if not isinstance(err, StoreError) else ""
    return text or "Unknown error"
