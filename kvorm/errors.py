"""
Error types for kvorm.

This module defines all exception types raised by the query engine:
- KvormError: Base exception
- RecordNotFoundError: A required record does not exist
- ValidationError: Write payload references missing data or breaks a rule
- UnknownFieldError: Unknown field in create payload
- UnsupportedOperationError: Nested write form the engine does not implement
- QueryError: Query shape the engine cannot evaluate
- SchemaError / UnknownEntityError: Metadata problems

Invariants:
    - All engine errors inherit from KvormError
    - Raising any of them inside an operation aborts the active transaction
    - Errors include context for debugging
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class KvormError(Exception):
    """Base exception for all kvorm errors.

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
        self.code = code or "KVORM_ERROR"
        self.details = details or {}


class RecordNotFoundError(KvormError):
    """A record required by the operation does not exist.

    Raised when:
    - find_first_or_throw / find_unique_or_throw match nothing
    - update or delete selector matches nothing
    - nested connect selector matches nothing
    """

    def __init__(
        self,
        entity: str,
        where: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            f"Record not found in '{entity}'",
            code="NOT_FOUND",
            details={"entity": entity, "where": where},
        )
        self.entity = entity
        self.where = where


class ValidationError(KvormError):
    """Write payload validation failed.

    Raised when:
    - A foreign key references a record that does not exist
    - A required field has no value and no default
    - An update tries to change a primary key field
    """

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"entity": entity, "field": field_name},
        )
        self.entity = entity
        self.field_name = field_name


class UnknownFieldError(KvormError):
    """Unknown field in a write payload.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        entity: The entity being written
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        entity: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' in entity '{entity}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_FIELD",
            details={
                "field_name": field_name,
                "entity": entity,
                "suggestions": suggestions,
            },
        )
        self.field_name = field_name
        self.entity = entity
        self.suggestions = suggestions


class UnsupportedOperationError(KvormError):
    """The payload asks for a write form the engine does not implement.

    Always raised before any mutation happens.
    """

    def __init__(self, operation: str, entity: str, relation: Optional[str] = None) -> None:
        target = f"{entity}.{relation}" if relation else entity
        super().__init__(
            f"{operation} is not supported on '{target}'",
            code="UNSUPPORTED_OPERATION",
            details={"operation": operation, "entity": entity, "relation": relation},
        )
        self.operation = operation
        self.entity = entity
        self.relation = relation


class QueryError(KvormError):
    """Query clause cannot be evaluated."""

    def __init__(self, message: str, entity: Optional[str] = None) -> None:
        super().__init__(message, code="QUERY_ERROR", details={"entity": entity})
        self.entity = entity


class SchemaError(KvormError):
    """Schema metadata is inconsistent or was used incorrectly."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message, code="SCHEMA_ERROR", details={"errors": errors or []})
        self.errors = errors or []


class UnknownEntityError(SchemaError):
    """Entity name is not registered."""

    def __init__(self, name: str, suggestions: Optional[List[str]] = None) -> None:
        suggestions = suggestions or []
        msg = f"Unknown entity '{name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"
        super().__init__(msg)
        self.name = name
        self.suggestions = suggestions
