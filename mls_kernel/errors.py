"""Kernel exceptions."""


class GraphValidationError(ValueError):
    """Raised when a graph mutation would break an invariant. Nothing is changed."""
    pass


class UnknownUserError(LookupError):
    """Raised when the user repository has no record for the requested user."""
    pass
