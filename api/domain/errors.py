"""
Domain error taxonomy.

Administrative operations raise these directly. The billing path never lets
them escape a sweep; it records them on the attempt log instead.
"""


class SubscriptionError(Exception):
    """Base class for scheduling and billing errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SubscriptionError):
    """Bad input: weekday out of range, empty slot label, lead hours out of range."""


class NotFoundError(SubscriptionError):
    """Unknown subscription, or one that belongs to another shop."""


class InvalidStateError(SubscriptionError):
    """Transition not allowed from the subscription's current status."""


class SchedulingConflictError(SubscriptionError):
    """A computed billing date would fall in the past."""


class DuplicateRecordError(SubscriptionError):
    """A uniqueness constraint rejected the insert."""


class DuplicateAttemptError(DuplicateRecordError):
    """Another attempt row already holds this idempotency key."""


class BillingProviderError(Exception):
    """The billing provider rejected the request or returned a malformed reply."""

    def __init__(self, message: str, code: str = "API_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class TransientIOError(BillingProviderError):
    """The billing provider could not be reached or timed out."""

    def __init__(self, message: str):
        super().__init__(message, code="TRANSIENT_ERROR")
