# src/tidecopy/exceptions.py
"""Custom exceptions for the tidecopy application."""

from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from tidecopy.capabilities import OperationKind
    from tidecopy.locator import Backend
    from tidecopy.models import IfExists


class TidecopyError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(TidecopyError):
    """Raised for configuration-related issues."""

    pass


class InvalidLocator(TidecopyError):
    """Raised when a locator string cannot be parsed."""

    def __init__(self, raw: str, reason: str) -> None:
        self.raw: str = raw
        self.reason: str = reason
        super().__init__(f"Invalid locator '{raw}': {reason}")


class MissingCredential(TidecopyError):
    """
    Raised when a required credential field is absent or empty.

    Attributes:
        field_name (str): The environment variable name that is missing.
    """

    def __init__(self, field_name: str) -> None:
        self.field_name: str = field_name
        super().__init__(f"Missing required credential '{field_name}'.")


class UnsupportedOperation(TidecopyError):
    """
    Raised when a backend does not support the requested operation.

    Attributes:
        backend (Backend): The backend that was asked.
        operation (OperationKind | IfExists): The missing operation, or the
            destination if-exists policy the backend cannot honor.
    """

    def __init__(
        self, backend: "Backend", operation: Union["OperationKind", "IfExists"]
    ) -> None:
        self.backend: "Backend" = backend
        self.operation: Union["OperationKind", "IfExists"] = operation
        super().__init__(
            f"Backend '{backend.value}' does not support '{operation.label}'."
        )


class EmptySource(TidecopyError):
    """Raised when a prefix source enumerates to zero objects."""

    pass


class NotFound(TidecopyError):
    """Raised when a bucket, container or object does not exist."""

    pass


class AuthError(TidecopyError):
    """Raised when the backend rejects the supplied credentials."""

    pass


class TransientNetworkError(TidecopyError):
    """Raised for network failures that are worth retrying."""

    pass


class TransferError(TidecopyError):
    """Raised when an object transfer fails permanently."""

    pass


class JournalError(TidecopyError):
    """Raised for LMDB-specific errors, like the journal being full."""

    pass


class Cancelled(TidecopyError):
    """Raised when the run-level cancellation signal interrupts a wait."""

    pass


class DestinationExists(TidecopyError):
    """Raised when a destination object exists and may not be replaced."""

    pass
