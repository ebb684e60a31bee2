# errors.py
from typing import Optional


class RecordError(Exception):
    """Base class for failures reported to API clients.

    `reason` is the short machine-readable code placed in the error envelope,
    `status_code` the HTTP status the API surface answers with.
    """

    reason = "InternalError"
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.reason, "message": self.message}


class ValidationError(RecordError):
    reason = "ValidationError"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body


class DuplicateKey(RecordError):
    reason = "DuplicateKey"
    status_code = 400

    def __init__(self, message: str = "Email already exists"):
        super().__init__(message)


class NotFound(RecordError):
    reason = "NotFound"
    status_code = 404


class InvalidIdentifier(RecordError):
    reason = "InvalidIdentifier"
    status_code = 400

    def __init__(self, message: str = "Invalid ID"):
        super().__init__(message)


class ConnectionFailed(RecordError):
    reason = "ConnectionFailed"
    status_code = 500

    def __init__(self, message: str = "Database unavailable"):
        super().__init__(message)


class StorageError(RecordError):
    reason = "StorageError"
    status_code = 500

    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(message)


class OperationTimeout(RecordError):
    reason = "Timeout"
    status_code = 500

    def __init__(self, message: str = "Operation timed out"):
        super().__init__(message)
