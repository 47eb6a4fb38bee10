class DachsTalerError(Exception):
    """Base class for errors raised by the slot economy."""


class StoreError(DachsTalerError):
    """The key-value backend failed to complete a read or write."""

    def __init__(self, operation: str, key: str, cause: Exception = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        super().__init__(f"{operation} failed for key '{key}': {cause}")


class PurchaseRejected(DachsTalerError):
    """A purchase failed validation; nothing was mutated."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ActivationError(DachsTalerError):
    """A mystery box reward could not be activated."""
