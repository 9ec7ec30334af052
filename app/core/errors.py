from fastapi import HTTPException


class EspaiError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code = 500

    def __init__(self, message: str = "", field: str | None = None):
        self.message = message or self.__class__.__name__
        self.field = field
        super().__init__(self.message)


class ValidationError(EspaiError):
    status_code = 400


class ConflictError(EspaiError):
    status_code = 409


class NotFoundError(EspaiError):
    status_code = 404


class ForbiddenError(EspaiError):
    status_code = 403


class InsufficientCreditsError(EspaiError):
    status_code = 402


# --------------------------------------------------
# EXTERNAL SERVER / CREDENTIALS
# --------------------------------------------------
class ExternalError(EspaiError):
    status_code = 502


class UnreachableError(ExternalError):
    pass


class AuthInvalidError(ExternalError):
    pass


class BadFormatError(ExternalError):
    pass


class DecryptError(EspaiError):
    status_code = 400


class MissingTokenError(EspaiError):
    status_code = 400


class SecretConfigError(EspaiError):
    status_code = 500


# --------------------------------------------------
# BACKGROUND JOBS
# --------------------------------------------------
class CancelledError(EspaiError):
    def __init__(self, message: str = "cancelled"):
        super().__init__(message)


class ImportFailedError(EspaiError):
    pass


def to_http(err: EspaiError) -> HTTPException:
    detail = err.message
    if err.field:
        detail = f"{err.field}: {err.message}"
    return HTTPException(status_code=err.status_code, detail=detail)
