"""
Compute Ops Error Mapping

Error taxonomy for the orchestration engine and the single place where raw
HTTP error responses are classified into structured error kinds.
"""

from typing import Any, Dict, Optional


class ComputeOpsError(Exception):
    """Base exception for Compute Ops operations"""

    def __init__(self, message: str, error_code: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ComputeOpsError):
    """Raised before any network call when a request is malformed"""


class NotFoundError(ComputeOpsError):
    """Raised when the remote resource does not exist"""


class OperationTimeoutError(ComputeOpsError):
    """Raised when a job does not reach a terminal state before the deadline"""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        super().__init__(message, error_code=ErrorCodes.OPERATION_TIMEOUT)
        self.timeout_seconds = timeout_seconds


class UnsupportedOperationError(ComputeOpsError):
    """Raised for operations the engine refuses to perform"""


class WaitInterruptedError(ComputeOpsError):
    """Raised when a caller's stop event interrupts a blocking wait"""

    def __init__(self, message: str):
        super().__init__(message, error_code=ErrorCodes.WAIT_INTERRUPTED)


class TransportError(ComputeOpsError):
    """
    HTTP/JSON failure returned by the transport.

    `kind` is a structured classification assigned at the wire boundary so
    callers never need to inspect the message text.
    """

    def __init__(
        self,
        message: str,
        kind: str = "GENERIC",
        status_code: Optional[int] = None,
        response_body: Any = None,
    ):
        super().__init__(message, error_code=kind, status_code=status_code)
        self.kind = kind
        self.response_body = response_body


class CircuitBreakerOpenError(TransportError):
    """Raised when the circuit breaker is open for a region"""

    def __init__(self, region: str):
        message = f"Circuit breaker open for {region}. Compute Ops API may be unresponsive or rate-limited."
        super().__init__(message, kind=ErrorCodes.CIRCUIT_BREAKER_OPEN)
        self.region = region


class ErrorCodes:
    """String codes carried on ComputeOpsError.error_code"""

    # Validation
    SCHEDULE_WINDOW_EXCEEDED = "ScheduleWindowExceeded"
    SCHEDULE_TIME_REQUIRED = "ScheduleTimeRequired"
    INVALID_INTERVAL = "InvalidInterval"
    INVALID_JOB_HANDLE = "InvalidJobHandle"
    NO_ELIGIBLE_MEMBERS = "NoEligibleMembers"
    UNKNOWN_JOB_TEMPLATE = "UnknownJobTemplate"
    PURPOSE_REQUIRED = "PurposeRequired"
    UNKNOWN_RESOURCE_TYPE = "UnknownResourceType"
    INVALID_GROUP_PLAN = "InvalidGroupPlan"

    # Unsupported operations
    ALREADY_COMPLETE = "AlreadyComplete"
    PARALLEL_NOT_CANCELLABLE = "ParallelNotCancellable"
    WAIT_ON_SCHEDULE = "WaitOnScheduleNotSupported"

    # Waiting
    OPERATION_TIMEOUT = "OperationTimeout"
    WAIT_INTERRUPTED = "WaitInterrupted"

    # Transport kinds
    NOT_FOUND = "NotFound"
    COLLECTION_MISSING = "CollectionMissing"
    UNAUTHORIZED = "Unauthorized"
    RATE_LIMITED = "RateLimited"
    SERVER_ERROR = "ServerError"
    CONNECTION = "ConnectionError"
    INVALID_RESPONSE = "InvalidResponse"
    CIRCUIT_BREAKER_OPEN = "CircuitBreakerOpen"
    GENERIC = "GENERIC"


# Message fragment the service returns (with HTTP 404) when derived storage
# data requires a collection job to run first.
COLLECTION_MISSING_FRAGMENTS = (
    "run external storage details job",
)


def _extract_message(error_response: Any) -> str:
    """Pull a human message out of the various error body shapes."""
    if isinstance(error_response, str):
        return error_response
    if not isinstance(error_response, dict):
        return ""

    for key in ("message", "errorMessage", "detail"):
        value = error_response.get(key)
        if isinstance(value, str) and value:
            return value

    error_obj = error_response.get("error")
    if isinstance(error_obj, dict):
        return error_obj.get("message", "") or error_obj.get("errorMessage", "")
    if isinstance(error_obj, str):
        return error_obj

    return ""


def map_api_error(status_code: Optional[int], error_response: Any) -> ComputeOpsError:
    """
    Map an HTTP error response to a structured exception.

    This is the only place the engine looks at error message text.

    Args:
        status_code: HTTP status code, None for connection-level failures
        error_response: Parsed JSON body (dict) or raw text

    Returns:
        ComputeOpsError subclass instance ready to raise
    """
    message = _extract_message(error_response) or f"HTTP {status_code}"
    lowered = message.lower()

    if status_code == 404:
        if any(fragment in lowered for fragment in COLLECTION_MISSING_FRAGMENTS):
            return TransportError(
                message,
                kind=ErrorCodes.COLLECTION_MISSING,
                status_code=status_code,
                response_body=error_response,
            )
        return NotFoundError(message, error_code=ErrorCodes.NOT_FOUND, status_code=status_code)

    if status_code in (401, 403):
        kind = ErrorCodes.UNAUTHORIZED
    elif status_code == 429:
        kind = ErrorCodes.RATE_LIMITED
    elif status_code is not None and status_code >= 500:
        kind = ErrorCodes.SERVER_ERROR
    elif status_code is None:
        kind = ErrorCodes.CONNECTION
    else:
        kind = ErrorCodes.GENERIC

    return TransportError(message, kind=kind, status_code=status_code, response_body=error_response)


def is_collection_missing_error(error: BaseException) -> bool:
    """Default signal predicate for RetryCoordinator."""
    return isinstance(error, TransportError) and error.kind == ErrorCodes.COLLECTION_MISSING


def describe_error(error: Exception) -> Dict[str, Any]:
    """
    Flatten an exception into a dict for logging.

    Args:
        error: Any exception

    Returns:
        dict with keys: code, message, status_code
    """
    if isinstance(error, ComputeOpsError):
        return {
            "code": error.error_code or "UNKNOWN",
            "message": error.message,
            "status_code": error.status_code,
        }
    return {"code": "UNKNOWN", "message": str(error), "status_code": None}
