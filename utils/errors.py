"""
Service errors and their HTTP status codes
"""


class ServiceError(Exception):
    """Base class for errors a request handler turns into a JSON response"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(ServiceError):
    """Missing or invalid identity"""

    status_code = 401


class ForbiddenError(AuthError):
    """Identity present but with the wrong role"""

    status_code = 403


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    """Duplicate submission or username"""

    status_code = 409
