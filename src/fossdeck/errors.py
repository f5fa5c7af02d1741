"""Base exceptions for the fossdeck daemon."""


class FossDeckError(Exception):
    """Base exception for all fossdeck errors."""

    pass


class ProtocolError(FossDeckError):
    """Malformed or unparseable message from a companion."""

    pass


class AuthorizationError(FossDeckError):
    """Caller is not authenticated or presented a bad code/token."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class StorageError(FossDeckError):
    """Storage operation error."""

    pass


class ExecutionError(FossDeckError):
    """Command execution failed."""

    pass
