"""
Custom exception classes and error handling.

Provides consistent error responses across the API.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any, List


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.error_code, "message": self.detail}
        if self.field:
            error["field"] = self.field
        return {"success": False, "error": error, "detail": self.detail}


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )
        self.resource = resource
        self.identifier = identifier


class ValidationError(APIException):
    """Malformed or unknown input. Raised before any mutation."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code,
            field=field,
        )

    @classmethod
    def from_errors(cls, errors: List[Dict[str, Any]]) -> "ValidationError":
        """First entry of a pydantic error list, with its location as the field."""
        first = errors[0] if errors else {}
        loc = [str(part) for part in first.get("loc", ()) if part != "body"]
        return cls(first.get("msg", "Invalid request body"), field=".".join(loc) or None)


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class AuthenticationError(APIException):
    """Bad or missing shared secret on a machine-to-machine call."""

    def __init__(self, detail: str = "Invalid or missing webhook secret"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


class InvalidTransitionError(APIException):
    """Lifecycle precondition failed (e.g. sending a packet that is still PENDING)."""

    def __init__(self, detail: str, current_status: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="INVALID_TRANSITION"
        )
        self.current_status = current_status


class TransientStoreError(APIException):
    """Store kept failing after bounded retries."""

    def __init__(self, detail: str = "Storage temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="STORE_UNAVAILABLE"
        )
