# src/trm/core/exceptions.py


class TRMError(Exception):
    """Base class for all errors raised by the TRM engine."""


class ShapeMismatchError(TRMError, ValueError):
    """Raised when tensor or sequence shapes do not agree."""


class InvalidTokenError(TRMError, ValueError):
    """Raised when a token, cell or square index is outside its valid range."""
