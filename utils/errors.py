"""Typed errors raised by the service components.

Every error carries a message and the HTTP status it maps to. Components
raise them; the boundary in ``api.main`` turns them into JSON responses.

Copyright (c) Bryn Gwalad 2025
"""


class AppError(Exception):
    """Base class for expected (operational) failures."""

    status_code = 500
    default_message = "Internal server error"
    is_operational = True

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(AppError):
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"
