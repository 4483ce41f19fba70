class SquadSessionError(Exception):
    """Base class for errors raised inside the session core."""


class InvalidRequestError(SquadSessionError, ValueError):
    pass


class DecodeError(SquadSessionError):
    """A response body could not be decoded into the expected shape."""


class TransportError(SquadSessionError):
    """No HTTP response was received (connection failure, timeout, ...)."""


class RefreshError(SquadSessionError):
    def __init__(self, message: str, *, irrecoverable: bool = False):
        super().__init__(message)
        self.irrecoverable = irrecoverable


class AuthError(SquadSessionError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ApiError(SquadSessionError):
    """The backend answered an authenticated call with a non-2xx status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
