"""
Communication layer exceptions.

Timeouts and transport failures are retryable; everything else is raised to
the caller after a single attempt.
"""


class BackendError(Exception):
    """Base exception for backend communication errors."""

    retryable: bool = False

    def __init__(self, message: str, target: str | None = None):
        self.target = target
        super().__init__(message)


class RequestTimeoutError(BackendError):
    """No response arrived within the per-attempt timeout."""

    retryable = True

    def __init__(self, target: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to '{target}' timed out after {timeout}s",
            target=target,
        )


class TransportError(BackendError):
    """Network-level failure, no response received."""

    retryable = True


class DecodeError(BackendError):
    """Response received but the payload could not be decoded."""

    pass


class ResponseStatusError(BackendError):
    """Backend answered with a non-success status."""

    def __init__(self, target: str, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        msg = f"HTTP {status_code} from '{target}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg, target=target)


class UnauthorizedError(ResponseStatusError):
    """Unauthorized - please login again."""

    pass


class NotFoundError(ResponseStatusError):
    """Resource not found."""

    pass


class ServiceUnavailableError(ResponseStatusError):
    """Service is temporarily unavailable (reported by the server)."""

    pass


class BackendUnavailableError(ServiceUnavailableError):
    """Request refused locally because the backend is known to be down."""

    def __init__(self, target: str, failed_attempts: int):
        self.failed_attempts = failed_attempts
        super().__init__(
            target,
            503,
            f"backend unavailable after {failed_attempts} failed probes",
        )


STATUS_ERRORS: dict[int, type[ResponseStatusError]] = {
    401: UnauthorizedError,
    404: NotFoundError,
    503: ServiceUnavailableError,
}


def error_for_status(
    target: str, status_code: int, detail: str = ""
) -> ResponseStatusError:
    """Translate an HTTP status into the matching typed error."""
    error_cls = STATUS_ERRORS.get(status_code, ResponseStatusError)
    return error_cls(target, status_code, detail)
