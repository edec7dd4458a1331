"""
Domain errors raised by the service layer.

Each error carries the HTTP status it maps to and a stable, user-facing
message. Routes never build these responses by hand; the handlers registered
in ``main.create_app`` render them.
"""
from typing import Optional


class ServiceError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Invalid request"


class InvalidStatus(ValidationError):
    default_message = "Invalid status"


class InvalidRating(ValidationError):
    default_message = "Rating must be between 1 and 5"


class InvalidAssignee(ValidationError):
    default_message = "Invalid or inactive electrician"


class InvalidTask(ValidationError):
    default_message = "Task not found or not assigned to you"


class AuthenticationError(ServiceError):
    status_code = 401
    default_message = "Not authenticated"


class AuthorizationError(ServiceError):
    status_code = 403
    default_message = "Access denied"


Forbidden = AuthorizationError


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found"


class TerminalStateConflict(ServiceError):
    status_code = 400
    default_message = "Task can no longer be modified"


class LastAdminProtected(ServiceError):
    status_code = 400
    default_message = "Cannot delete the last admin user"


class SelfDeleteForbidden(ServiceError):
    status_code = 400
    default_message = "Cannot delete your own account"


class ReferentialConflict(ServiceError):
    status_code = 400
    default_message = "Record has associated records in the system"


class TransactionFailure(ServiceError):
    status_code = 500
    default_message = "Server error"
