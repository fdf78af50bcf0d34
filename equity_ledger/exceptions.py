"""Error taxonomy for the equity engines and services.

Every error is detected synchronously before any mutation happens, so a
raised error always means the operation left the ledger untouched. Callers
(an API layer, a CLI, a job) translate these into their own responses.
"""
from typing import Any, Dict, Optional


class EquityLedgerError(Exception):
    """Base class for all domain errors"""

    code = "equity_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class NotFoundError(EquityLedgerError):
    """A referenced share class, pool, grant, round or entry does not exist in the organization"""

    code = "not_found"

    def __init__(self, entity: str, identifier: Optional[Any] = None, **context: Any):
        message = f"{entity} not found" if identifier is None else f"{entity} {identifier} not found"
        super().__init__(message, entity=entity, identifier=identifier, **context)


class InvalidStateError(EquityLedgerError):
    """The action is not permitted in the entity's current lifecycle state"""

    code = "invalid_state"


class InsufficientCapacityError(EquityLedgerError):
    """A requested amount exceeds what is authorized, available or exercisable"""

    code = "insufficient_capacity"

    def __init__(self, message: str, requested: Any = None, available: Any = None, **context: Any):
        super().__init__(message, requested=requested, available=available, **context)
        self.requested = requested
        self.available = available


class InvalidInputError(EquityLedgerError, ValueError):
    """A numeric or identifying input is outside its valid range"""

    code = "invalid_input"
