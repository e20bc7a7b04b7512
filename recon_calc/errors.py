"""Exceptions raised by the reconciliation calculator."""


class ReconError(Exception):
    """Base class for errors surfaced to the preparer."""


class ValidationError(ReconError, ValueError):
    """Malformed or out-of-domain input. Raised before any state changes."""


class NotFoundError(ReconError, LookupError):
    """A referenced item or schedule line does not exist."""


class InvariantViolation(AssertionError):
    """A computed schedule broke one of its balance invariants.

    This always indicates a defect in a spread strategy or in the override
    walk and is never caught by the calculator itself.
    """
