class IdentityError(Exception):
    """Base class for identity reconciliation failures."""


class InvalidInputError(IdentityError):
    def __init__(self, message="Either email or phoneNumber must be provided."):
        super().__init__(message)


class ConflictError(IdentityError):
    """A concurrent resolution touched the same rows; the unit of work can be retried."""


class ResolutionRetryExhaustedError(IdentityError):
    def __init__(self, attempts):
        self.attempts = attempts
        super().__init__(f"Identity resolution still conflicting after {attempts} attempts.")


class StoreUnavailableError(IdentityError):
    """The contact store could not be reached."""


class InvariantViolationError(IdentityError):
    """Stored contacts no longer form a forest of depth-1 trees."""

    def __init__(self, message, contact_ids=()):
        self.contact_ids = tuple(contact_ids)
        super().__init__(message)
