from typing import Optional

from core.platform import PlatformError


class ServiceError(Exception):
    """Base class for every error a domain service raises."""

    status_code = 500

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.cause = cause


class Unauthenticated(ServiceError):
    status_code = 401


class Unauthorized(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409


class InvalidInput(ServiceError):
    status_code = 400


class RateLimited(ServiceError):
    status_code = 429


class Unexpected(ServiceError):
    status_code = 500


# Login / Registration Specific Kinds
class InvalidCredentials(Unauthenticated):
    pass


class EmailInUse(Conflict):
    pass


_CODE_TO_ERROR = {
    400: InvalidInput,
    401: Unauthenticated,
    403: Unauthorized,
    404: NotFound,
    409: Conflict,
    429: RateLimited,
}


def map_platform_error(exc: BaseException) -> ServiceError:
    """Translate any exception coming out of a gateway into a domain error."""

    # Already Translated
    if isinstance(exc, ServiceError):
        return exc

    if isinstance(exc, PlatformError):
        error_cls = _CODE_TO_ERROR.get(exc.code, Unexpected)
        return error_cls(exc.message or str(exc), cause=exc)

    return Unexpected(str(exc), cause=exc)
