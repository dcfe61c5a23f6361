"""
Domain errors raised by services and translated to JSON responses at the API boundary.
"""


class NexileError(Exception):
    """Base error carrying the HTTP status it maps to"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(NexileError):
    status_code = 400


class AuthenticationFailed(NexileError):
    status_code = 401


class PermissionDenied(NexileError):
    status_code = 403


class NotFound(NexileError):
    status_code = 404


class Conflict(NexileError):
    status_code = 409


class StockWriteError(NexileError):
    """Recording a sale or its stock decrements failed"""
    status_code = 400
