"""
Error types for sqlgraph.

This module defines all exception types raised by the library:
- SqlGraphError: Base exception
- ConfigurationError: Schema construction problems
- UnknownModelError / UnknownFieldError / UnknownOperatorError / UnknownVerbError:
  malformed filter, mutation or record documents
- BadFilterError: Filters that do not resolve to a unique key, bad values
- RecordNotFoundError: A row that must exist does not
- MergeConflictError: In-memory records disagree about identity
- LoopError: Flush cannot make progress
- IntegrityError: Constraint violation reported by the connection
- ForbiddenError: An accessor callback vetoed an operation

Invariants:
    - All errors inherit from SqlGraphError
    - Errors include context for debugging in ``details``
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SqlGraphError(Exception):
    """Base exception for all sqlgraph errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SQLGRAPH_ERROR"
        self.details = details or {}


class ConfigurationError(SqlGraphError):
    """Schema configuration is invalid.

    Raised when:
    - Two models share a name or table name
    - Two fields of a model share a name
    - A foreign key is composite or references a non-unique column
    - A throughField names a column that is not a foreign key
    - A table has no primary key
    """

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"model": model_name, "errors": errors or []},
        )
        self.model_name = model_name
        self.errors = errors or []


class UnknownModelError(SqlGraphError):
    """No model or table with the given name exists."""

    def __init__(self, name: str, suggestions: Optional[List[str]] = None) -> None:
        suggestions = suggestions or []
        msg = f"Unknown model '{name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"
        super().__init__(
            msg,
            code="UNKNOWN_MODEL",
            details={"name": name, "suggestions": suggestions},
        )
        self.name = name
        self.suggestions = suggestions


class UnknownFieldError(SqlGraphError):
    """Unknown field in a filter, mutation or record.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        model_name: The model being accessed
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        model_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' in model '{model_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_FIELD",
            details={
                "field_name": field_name,
                "model_name": model_name,
                "suggestions": suggestions,
            },
        )
        self.field_name = field_name
        self.model_name = model_name
        self.suggestions = suggestions


class UnknownOperatorError(SqlGraphError):
    """Unsupported operator suffix, or an operator the field kind rejects."""

    def __init__(self, operator: str, field_name: Optional[str] = None) -> None:
        msg = f"Unknown operator '{operator}'"
        if field_name:
            msg += f" for field '{field_name}'"
        super().__init__(
            msg,
            code="UNKNOWN_OPERATOR",
            details={"operator": operator, "field_name": field_name},
        )
        self.operator = operator
        self.field_name = field_name


class UnknownVerbError(SqlGraphError):
    """Relationship mutation verb is not recognised."""

    def __init__(self, verb: str, field_name: str) -> None:
        super().__init__(
            f"Unknown verb '{verb}' for field '{field_name}'",
            code="UNKNOWN_VERB",
            details={"verb": verb, "field_name": field_name},
        )
        self.verb = verb
        self.field_name = field_name


class BadFilterError(SqlGraphError):
    """Filter cannot be used for the requested operation.

    Raised when:
    - A mutation or lookup filter does not cover a unique key
    - A filter value has the wrong shape for its field
    - A cursor is malformed or its order is not unique
    """

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        filter: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="BAD_FILTER",
            details={"model": model_name, "filter": filter},
        )
        self.model_name = model_name
        self.filter = filter


class RecordNotFoundError(SqlGraphError):
    """A row that must exist was not found."""

    def __init__(self, message: str, model_name: str, filter: Any = None) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"model": model_name, "filter": filter},
        )
        self.model_name = model_name
        self.filter = filter


class MergeConflictError(SqlGraphError):
    """A record matches two different records on different unique keys."""

    def __init__(self, message: str, model_name: str) -> None:
        super().__init__(message, code="MERGE_CONFLICT", details={"model": model_name})
        self.model_name = model_name


class LoopError(SqlGraphError):
    """Flush cannot make progress on cyclic unresolved references.

    Attributes:
        records: Descriptions of the records that could not be persisted
    """

    def __init__(self, message: str, records: Optional[List[str]] = None) -> None:
        super().__init__(message, code="LOOP", details={"records": records or []})
        self.records = records or []


class IntegrityError(SqlGraphError):
    """The connection reported a constraint violation."""

    def __init__(self, message: str, sql: Optional[str] = None) -> None:
        super().__init__(message, code="INTEGRITY_ERROR", details={"sql": sql})
        self.sql = sql


class ForbiddenError(SqlGraphError):
    """An accessor callback rejected the operation."""

    def __init__(self, event: str, model_name: str) -> None:
        super().__init__(
            f"Operation {event} on '{model_name}' is forbidden",
            code="FORBIDDEN",
            details={"event": event, "model": model_name},
        )
        self.event = event
        self.model_name = model_name
