from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(ServiceError):
    """Malformed input: inverted dates, missing required field."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)


class UnauthorizedError(ServiceError):
    def __init__(self, message: str = "Could not validate credentials") -> None:
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(ServiceError):
    """Authenticated, but the actor's roles do not cover the request's current status."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictError(ServiceError):
    """Definitive outcome (duplicate decision, second active request); callers must not retry."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class ExpiredError(ServiceError):
    def __init__(self, message: str = "This consent link has expired.") -> None:
        super().__init__(message, status.HTTP_410_GONE)


class InternalError(ServiceError):
    def __init__(self, message: str = "Internal error, the action was not applied.") -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
