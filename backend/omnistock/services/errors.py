# Overview: Domain error types shared by the sequence, inventory, order and purchase services.

"""
Every error carries structured attributes identifying the offending
line or entity, so callers can render a precise message without parsing
strings. None of these are swallowed inside the services: a failed
operation rolls back its transaction and re-raises.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for errors raised by OmniStock services."""

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": str(self)}


class NotFound(DomainError):
    """Raised when a store, variant, order, purchase or transfer does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "entity": self.entity, "entity_id": self.entity_id}


class InvariantViolation(DomainError, ValueError):
    """
    Raised when input breaks a data invariant (e.g. mixed decision quantities
    that do not add up). Always raised before any mutation.
    """

    def __init__(self, message: str, *, line: int | None = None):
        self.line = line
        super().__init__(message)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "line": self.line}


class InsufficientStock(DomainError):
    """Raised when a deduction would drive a ledger row negative."""

    def __init__(
        self,
        *,
        store_id: int,
        variant_id: int,
        requested: int,
        available: int,
        line: int | None = None,
    ):
        self.store_id = store_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        self.line = line
        where = f" (line {line})" if line is not None else ""
        super().__init__(
            f"Insufficient stock for variant {variant_id} at store {store_id}{where}. "
            f"Available: {available}, requested: {requested}"
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "store_id": self.store_id,
            "variant_id": self.variant_id,
            "requested": self.requested,
            "available": self.available,
            "line": self.line,
        }


class InvalidStatusTransition(DomainError):
    """Raised when a lifecycle transition is not allowed; names both states."""

    def __init__(self, entity: str, from_status: str, to_status: str):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot transition {entity} from '{from_status}' to '{to_status}'")

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "entity": self.entity,
            "from_status": self.from_status,
            "to_status": self.to_status,
        }


class LockTimeout(DomainError):
    """
    Raised when a row lock could not be acquired in time, or a deadlock
    persisted through every retry. Transient: nothing was applied and the
    caller may retry.
    """


ResourceBusy = LockTimeout
