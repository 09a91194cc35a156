"""Error taxonomy for azpim.

Resolution-phase errors (ConfigError, NotFoundError, AmbiguousError,
NoTargetsError, CancelledByUser) abort a command before any request is
submitted. Execution-phase errors (PermissionDenied, DurationPolicyError,
TransportError) are recorded per target and never abort a batch.
"""

POLICY_VALIDATION_FAILED = "RoleAssignmentRequestPolicyValidationFailed"
AUTHORIZATION_FAILED = "AuthorizationFailed"


class AzPimError(Exception):
    """Base class for all azpim errors."""

    error_type: str = "AzPimError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(AzPimError):
    """Malformed or incomplete configuration, preset or command options."""

    error_type = "ConfigError"


class NotFoundError(AzPimError):
    """A requested role name or preset does not exist."""

    error_type = "NotFoundError"


class AmbiguousError(AzPimError):
    """A role name matched several roles and could not be disambiguated."""

    error_type = "AmbiguousError"

    def __init__(self, message: str, match_count: int) -> None:
        super().__init__(message)
        self.match_count = match_count


class NoTargetsError(AzPimError):
    """Resolution produced nothing to execute."""

    error_type = "NoTargetsError"


class CancelledByUser(AzPimError):
    """The operator declined or interrupted the operation."""

    error_type = "CancelledByUser"

    def __init__(self, message: str = "Cancelled") -> None:
        super().__init__(message)


class PlatformError(Exception):
    """Raw failure reported by the authorization platform.

    Mirrors the {statusCode, code, message} shape of ARM error responses.
    """

    def __init__(self, status_code: int | None, code: str | None, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"PlatformError(status_code={self.status_code!r}, code={self.code!r})"


class ExecutionError(AzPimError):
    """Base class for per-target failures during batch execution."""

    error_type = "ExecutionError"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class PermissionDenied(ExecutionError):
    """The principal is not authorized to perform the request (HTTP 403)."""

    error_type = "PermissionDenied"


class DurationPolicyError(ExecutionError):
    """The requested duration exceeds the role's PIM expiration rule."""

    error_type = "DurationPolicyError"


class TransportError(ExecutionError):
    """Any other platform or network failure."""

    error_type = "TransportError"


def classify_error(error: BaseException) -> ExecutionError:
    """Map an exception raised by the platform to an execution error.

    Already-classified errors are returned unchanged.
    """
    if isinstance(error, ExecutionError):
        return error

    status_code = getattr(error, "status_code", None)
    code = getattr(error, "code", None)
    message = getattr(error, "message", None) or str(error) or type(error).__name__

    if status_code == 403 or code == AUTHORIZATION_FAILED:
        return PermissionDenied(message, status_code=status_code, code=code)
    if code == POLICY_VALIDATION_FAILED and "ExpirationRule" in message:
        return DurationPolicyError(message, status_code=status_code, code=code)
    return TransportError(message, status_code=status_code, code=code)


def is_auth_error(message: str) -> bool:
    """Check whether a message looks like an Azure CLI sign-in problem."""
    return "AADSTS" in message or "az login" in message or "Azure CLI" in message
