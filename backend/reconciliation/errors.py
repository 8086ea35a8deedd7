"""
Reconciliation error taxonomy.

Every error carries a stable ``code`` and serialises to the structured
error body used by the API layer:

{
    "error": "state_conflict",
    "message": "...",
    ...error specific fields
}
"""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base class for all reconciliation engine errors."""
    code = "reconciliation_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class ValidationError(ReconciliationError):
    """Malformed period or out-of-range parameter. Raised before any read."""
    code = "validation_error"

    def __init__(self, parameter: str, message: str, value: Optional[Any] = None):
        super().__init__(message)
        self.parameter = parameter
        self.value = value

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["parameter"] = self.parameter
        if self.value is not None:
            body["received_value"] = str(self.value)[:100]
        return body


class NotFoundError(ReconciliationError):
    """Unknown order, GL entry or run id."""
    code = "not_found"

    def __init__(self, record_type: str, record_id: str):
        super().__init__(f"{record_type} {record_id} not found")
        self.record_type = record_type
        self.record_id = record_id

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["record_type"] = self.record_type
        body["record_id"] = self.record_id
        return body


class StateConflictError(ReconciliationError):
    """
    A transition was requested from a status that does not allow it.

    ``current_status`` is surfaced so callers can guide the correction
    (e.g. "unmatch first").
    """
    code = "state_conflict"

    def __init__(
        self,
        record_type: str,
        record_id: str,
        current_status: str,
        message: str,
    ):
        super().__init__(message)
        self.record_type = record_type
        self.record_id = record_id
        self.current_status = current_status

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["record_type"] = self.record_type
        body["record_id"] = self.record_id
        body["current_status"] = self.current_status
        return body


class ConcurrencyConflictError(ReconciliationError):
    """Optimistic version check failed; retry the single operation."""
    code = "concurrency_conflict"

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["retryable"] = True
        return body


class PersistenceError(ReconciliationError):
    """Transactional failure. The whole unit of work was rolled back."""
    code = "persistence_error"
