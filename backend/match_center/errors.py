class AppError(Exception):
    """Base class for domain errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None, errors=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors


class ValidationError(AppError):
    status_code = 400

    def __init__(self, message: str = "Invalid input data.", errors=None):
        super().__init__(message, errors=errors)


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message: str = "The requested resource was not found."):
        super().__init__(message)


class DuplicateError(AppError):
    status_code = 409

    def __init__(self, message: str = "A duplicate record already exists."):
        super().__init__(message)


class ConflictError(AppError):
    status_code = 409

    def __init__(self, message: str = "The request conflicts with the current state."):
        super().__init__(message)
