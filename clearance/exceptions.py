"""
Typed exceptions for the clearance workflow.

Every error carries a machine-readable ``code`` and the HTTP status the API
answers with, so routes can translate them without parsing messages.

    ClearanceError (base)
    |
    +-- ValidationError            400
    +-- NotFoundError              404
    +-- AuthenticationError        401
    +-- ScopeError                 403
    +-- ApprovalPreconditionError  409
    |   +-- AlreadyApprovedError
    +-- InvalidTransitionError     409
    +-- RateLimitedError           429
    +-- AccountLockedError         423
"""


class ClearanceError(Exception):
    """Base exception for all clearance errors."""

    code = "CLEARANCE_ERROR"
    http_status = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        data = {"status": "error", "code": self.code, "message": self.message}
        data.update(self.details)
        return data


class ValidationError(ClearanceError):
    """Malformed input, rejected before it reaches the workflow."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(ClearanceError):
    code = "NOT_FOUND"
    http_status = 404


class AuthenticationError(ClearanceError):
    """Wrong email or password."""

    code = "INVALID_CREDENTIALS"
    http_status = 401


class ScopeError(ClearanceError):
    """The caller is not allowed to act on this student or record."""

    code = "OUT_OF_SCOPE"
    http_status = 403


class ApprovalPreconditionError(ClearanceError):
    """The student is not ready for this approval."""

    code = "APPROVAL_PRECONDITION_FAILED"
    http_status = 409


class AlreadyApprovedError(ApprovalPreconditionError):
    code = "ALREADY_APPROVED"


class InvalidTransitionError(ClearanceError):
    """A record is already in a terminal state."""

    code = "INVALID_TRANSITION"
    http_status = 409


class RateLimitedError(ClearanceError):
    """Too many login attempts inside the tracking window."""

    code = "RATE_LIMITED"
    http_status = 429


class AccountLockedError(ClearanceError):
    """The account is locked until it expires or an admin unlocks it."""

    code = "ACCOUNT_LOCKED"
    http_status = 423
