"""Error taxonomy shared by the billing engine, the monitor and the routers."""
from __future__ import annotations


class BillingError(Exception):
    """Base class for every failure raised by the billing core."""

    code = "billing_error"


class NotFoundError(BillingError):
    """Station, session, charge, order, menu item or transfer absent."""

    code = "not_found"


class ConflictError(BillingError):
    """Station already has an active session."""

    code = "conflict"


class InvalidStateError(BillingError):
    """Operation not allowed in the session's current state."""

    code = "invalid_state"


class ValidationError(BillingError):
    """Malformed input: bad amounts, unknown actions, broken payloads."""

    code = "validation_error"


class StorageError(BillingError):
    """Persistence layer unavailable; callers own retry / offline queueing."""

    code = "storage_error"
