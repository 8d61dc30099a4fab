"""
Domain errors raised by the service modules.

Each error carries the HTTP status it maps to at the API boundary, so route
handlers never need to translate them one by one (see the exception handler
in main.py).
"""

from typing import List, Optional


class ServiceError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409


class ValidationError(ServiceError):
    status_code = 422

    def __init__(self, detail: str, fields: Optional[List[str]] = None):
        super().__init__(detail)
        self.fields = fields or []


class InvalidStateTransition(ServiceError):
    status_code = 409


class PermissionDenied(ServiceError):
    status_code = 403


class AuthenticationFailed(ServiceError):
    status_code = 401

    def __init__(self, detail: str = "Invalid username or password"):
        super().__init__(detail)


class TransactionAborted(ServiceError):
    status_code = 500


class BadRequest(ServiceError):
    status_code = 400


class UploadRejected(BadRequest):
    pass


def from_pydantic(exc, detail: str = "Invalid or missing fields") -> ValidationError:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[-1] not in fields:
            fields.append(loc[-1])
    return ValidationError(f"{detail}: {', '.join(fields)}" if fields else detail, fields)
