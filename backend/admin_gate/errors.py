from typing import Any

from fastapi import status


class AppError(Exception):
    code: str = "APP_ERROR"
    message: str = "Application error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    details: Any | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any | None = None,
    ):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if details is not None:
            self.details = details

        super().__init__(self.message)


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    message = "Validation error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    code = "NOT_FOUND"
    message = "Resource not found"
    status_code = status.HTTP_404_NOT_FOUND


class AuthError(AppError):
    code = "UNAUTHORIZED"
    message = "Authentication required"
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionError(AppError):  # type: ignore[override]
    code = "FORBIDDEN"
    message = "Insufficient permissions"
    status_code = status.HTTP_403_FORBIDDEN


class InsufficientRoleError(PermissionError):
    """Raised by server-side role checks when the caller ranks below the requirement."""

    def __init__(self, required_role: str, current_role: str):
        self.required_role = required_role
        self.current_role = current_role
        super().__init__(
            f"Insufficient permissions. Required: {required_role}, current: {current_role}",
            details={"required_role": required_role, "current_role": current_role},
        )


class RemoteInvocationError(AppError):
    """A remote procedure call failed, either in transport or inside its payload.

    ``source`` is ``"transport"`` when the call itself could not complete and
    ``"application"`` when the procedure answered with an embedded error.
    """

    code = "REMOTE_INVOCATION_FAILED"
    message = "Remote procedure invocation failed"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str | None = None,
        *,
        procedure: str | None = None,
        source: str = "transport",
        remote_code: str | None = None,
    ):
        self.procedure = procedure
        self.source = source
        self.remote_code = remote_code
        super().__init__(
            message,
            details={"procedure": procedure, "source": source, "remote_code": remote_code},
        )


class AuthorizationPendingError(AppError):
    code = "AUTHORIZATION_PENDING"
    message = "Authorization is still being determined"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class InternalError(AppError):
    code = "INTERNAL_ERROR"
    message = "Internal server error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


ERROR_CODE_BY_STATUS: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.code,
    status.HTTP_401_UNAUTHORIZED: AuthError.code,
    status.HTTP_403_FORBIDDEN: PermissionError.code,
    status.HTTP_404_NOT_FOUND: NotFoundError.code,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.code,
    status.HTTP_502_BAD_GATEWAY: RemoteInvocationError.code,
}


def error_payload(
    code: str,
    message: str,
    details: Any | None = None,
) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details}}


def resolve_error_code(status_code: int) -> str:
    if status_code in ERROR_CODE_BY_STATUS:
        return ERROR_CODE_BY_STATUS[status_code]
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        return InternalError.code
    return "UNKNOWN_ERROR"
