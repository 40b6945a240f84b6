"""
Exceptions raised by the CLO tracker services.

Each exception carries the HTTP status the API answers with and an optional
list of per-item problems, so a whole validation pass can be reported at once.
"""


class CloTrackerError(Exception):
    """Base exception for the CLO tracker"""
    status_code = 500

    def __init__(self, message, status_code=None, errors=None):
        self.message = message
        if status_code:
            self.status_code = status_code
        self.errors = list(errors or [])
        super().__init__(self.message)

    def to_dict(self):
        payload = {'success': False, 'message': self.message}
        if self.errors:
            payload['errors'] = self.errors
        return payload


class ConfigurationError(CloTrackerError):
    """
    Raised for a rejected schema edit or an unusable request.

    Examples:
    - Non-integer question, part or CLO numbers
    - Negative max marks, weightage outside [0, 100]
    - Evaluation criterion that does not exist for the subject
    """
    status_code = 400

    def __init__(self, message="Invalid configuration", errors=None):
        super().__init__(message, self.status_code, errors)


class AuthorizationError(CloTrackerError):
    """Raised when the caller may not act on the subject at all."""
    status_code = 403

    def __init__(self, message="Forbidden", errors=None):
        super().__init__(message, self.status_code, errors)


class NotFoundError(CloTrackerError):
    status_code = 404

    def __init__(self, message="Resource not found", errors=None):
        super().__init__(message, self.status_code, errors)


class ConflictError(CloTrackerError):
    """Raised when stored data contradicts itself, e.g. two instructors marking one student."""
    status_code = 409

    def __init__(self, message="Conflicting data", errors=None):
        super().__init__(message, self.status_code, errors)


class AuthenticationError(CloTrackerError):
    """Raised for a missing, malformed or expired bearer token, or bad credentials."""
    status_code = 401

    def __init__(self, message="Not authorized, token failed", errors=None):
        super().__init__(message, self.status_code, errors)
