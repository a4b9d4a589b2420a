"""
Error taxonomy shared by every engine operation.

State-machine and gate errors are surfaced verbatim; only ``Unavailable``
and retryable ``GatewayError`` are eligible for internal retries.
"""

from __future__ import annotations


class EngineError(Exception):
    code = "engine_error"
    http_status = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFound(EngineError):
    code = "not_found"
    http_status = 404


class InvalidState(EngineError):
    code = "invalid_state"
    http_status = 409


class Conflict(EngineError):
    """A conditional write lost its precondition to a concurrent writer."""

    code = "conflict"
    http_status = 409


class DriverNotReady(EngineError):
    code = "driver_not_ready"
    http_status = 422


class NotVerified(EngineError):
    code = "not_verified"
    http_status = 422


class DocumentsIncomplete(EngineError):
    code = "documents_incomplete"
    http_status = 422

    def __init__(self, missing, message: str = ""):
        self.missing = list(missing)
        super().__init__(
            message
            or "Missing or expired documents: "
            + ", ".join(m.value for m in self.missing)
        )


class PermissionDenied(EngineError):
    code = "permission_denied"
    http_status = 403


class GatewayError(EngineError):
    code = "gateway_error"

    def __init__(self, message: str = "", *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable

    @property
    def http_status(self) -> int:  # type: ignore[override]
        return 502 if self.retryable else 402


class Unavailable(EngineError):
    code = "unavailable"
    http_status = 503
