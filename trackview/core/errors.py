from enum import Enum


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION_UNAVAILABLE = "connection_unavailable"
    AUTHENTICATION_FAILED = "authentication_failed"
    RESOURCE_NOT_FOUND = "resource_not_found"
    QUERY_SYNTAX_INVALID = "query_syntax_invalid"
    INVALID_RANGE = "invalid_range"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.CONNECTION_UNAVAILABLE})


class TelemetryError(Exception):
    kind: ErrorKind = ErrorKind.UNKNOWN


class InvalidRangeError(TelemetryError):
    kind = ErrorKind.INVALID_RANGE


class QueryError(TelemetryError):
    pass


class QueryTimeoutError(QueryError):
    kind = ErrorKind.TIMEOUT


class ConnectionUnavailableError(QueryError):
    kind = ErrorKind.CONNECTION_UNAVAILABLE


class AuthenticationFailedError(QueryError):
    kind = ErrorKind.AUTHENTICATION_FAILED


class ResourceNotFoundError(QueryError):
    kind = ErrorKind.RESOURCE_NOT_FOUND


class QuerySyntaxError(QueryError):
    kind = ErrorKind.QUERY_SYNTAX_INVALID


class UnknownQueryError(QueryError):
    kind = ErrorKind.UNKNOWN


_QUERY_ERRORS: dict[ErrorKind, type[QueryError]] = {
    ErrorKind.TIMEOUT: QueryTimeoutError,
    ErrorKind.CONNECTION_UNAVAILABLE: ConnectionUnavailableError,
    ErrorKind.AUTHENTICATION_FAILED: AuthenticationFailedError,
    ErrorKind.RESOURCE_NOT_FOUND: ResourceNotFoundError,
    ErrorKind.QUERY_SYNTAX_INVALID: QuerySyntaxError,
    ErrorKind.UNKNOWN: UnknownQueryError,
}


def query_error_for(kind: ErrorKind, cause: BaseException, attempts: int = 1) -> QueryError:
    """Build the terminal error raised to callers for a classified store failure."""
    if kind == ErrorKind.TIMEOUT:
        message = (
            f"Store query timed out after {attempts} attempts - "
            "try a shorter time range"
        )
    elif kind == ErrorKind.CONNECTION_UNAVAILABLE:
        message = (
            f"Store connection failed after {attempts} attempts - "
            "check the URL and network"
        )
    elif kind == ErrorKind.AUTHENTICATION_FAILED:
        message = "Store authentication failed - check the access token"
    elif kind == ErrorKind.RESOURCE_NOT_FOUND:
        message = "Store bucket or organization not found"
    elif kind == ErrorKind.QUERY_SYNTAX_INVALID:
        message = f"Store query syntax error: {cause}"
    else:
        message = f"Store query failed: {cause}"

    return _QUERY_ERRORS.get(kind, UnknownQueryError)(message)
