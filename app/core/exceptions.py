class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class ForbiddenError(AppError):
    status_code = 403


class InvalidStateError(AppError):
    status_code = 400


class ConflictError(AppError):
    # Duplicate email is reported to clients as a plain 400
    status_code = 400


class InvalidOrExpiredError(AppError):
    status_code = 400


class UpstreamError(AppError):
    status_code = 502
