from typing import Optional

# Failure kinds reported by TransportError
TIMEOUT = 'timeout'
UNRESOLVED = 'unresolved'
CONNECTION = 'connection'
HTTP = 'http'


class PwAccessoryError(Exception):
    pass


class TransportError(PwAccessoryError):
    """Raised by the fetcher once every attempt of a call has failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 1,
                 kind: str = CONNECTION):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts
        self.kind = kind

    @property
    def is_timeout(self) -> bool:
        return self.kind == TIMEOUT

    @property
    def is_unresolved(self) -> bool:
        return self.kind == UNRESOLVED

    def __str__(self):
        msg = super().__str__()
        if self.status_code is not None:
            msg = f"{msg} (status {self.status_code})"
        return f"{msg} after {self.attempts} attempt(s)"


class LoginError(PwAccessoryError):
    pass


class InvalidConfigurationParameter(PwAccessoryError):
    pass
