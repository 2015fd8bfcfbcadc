from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class APIException(HTTPException):
    def __init__(self, status_code: int, detail: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class AuthError(APIException):
    """Base for the authentication/authorization error taxonomy.

    Subclasses pin the HTTP status and a stable machine-readable code; the
    message and details are per-raise.
    """

    status_code = 400
    code = "auth_error"
    default_message = "Authentication error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(status_code=type(self).status_code, detail=self.message, headers=headers)


class ValidationFailed(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "Validation failed"


class InvalidPhone(AuthError):
    status_code = 400
    code = "invalid_phone"
    default_message = "Invalid phone number"


class InvalidCode(AuthError):
    status_code = 400
    code = "invalid_code"
    default_message = "Invalid OTP. Please check the code and try again."


class CodeExpired(AuthError):
    status_code = 400
    code = "code_expired"
    default_message = "OTP has expired. Please request a new one."


class TooManyAttempts(AuthError):
    status_code = 429
    code = "too_many_attempts"
    default_message = "Too many incorrect attempts. Please request a new code."


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 1,
                 details: Optional[Dict[str, Any]] = None):
        self.retry_after = max(int(retry_after), 1)
        merged = dict(details or {})
        merged["retryAfter"] = self.retry_after
        super().__init__(message, details=merged, headers={"Retry-After": str(self.retry_after)})


class RoleAlreadyExists(AuthError):
    status_code = 409
    code = "role_already_exists"
    default_message = "You already have this role. Please login instead."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists"


class NoAccount(AuthError):
    status_code = 404
    code = "no_account"
    default_message = "No account found for this phone number. Please register first."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class AccountDeactivated(AuthError):
    status_code = 403
    code = "account_deactivated"
    default_message = "Account is deactivated."


class AccountSuspended(AuthError):
    status_code = 403
    code = "account_suspended"
    default_message = "Account is suspended."

    def __init__(self, reason: Optional[str] = None):
        super().__init__(details={"suspensionReason": reason})


class AccountLocked(AuthError):
    status_code = 423
    code = "account_locked"
    default_message = "Account is temporarily locked due to multiple failed login attempts."

    def __init__(self, locked_until: Optional[datetime] = None):
        super().__init__(details={"lockedUntil": locked_until.isoformat() if locked_until else None})


class ProfileSuspended(AuthError):
    status_code = 403
    code = "profile_suspended"
    default_message = "This role is suspended."


class PendingApproval(AuthError):
    status_code = 403
    code = "pending_approval"
    default_message = "This role is pending approval."


class ProfileRemoved(AuthError):
    status_code = 403
    code = "profile_removed"
    default_message = "This role has been removed."


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required"


class TokenInvalid(Unauthenticated):
    code = "token_invalid"
    default_message = "Invalid token."


class TokenExpired(Unauthenticated):
    code = "token_expired"
    default_message = "Token expired."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied."

    def __init__(self, required: Iterable[str], actual: Optional[str]):
        required = list(required)
        super().__init__(
            f"Access denied. Required role: {' or '.join(required)}",
            details={"requiredRoles": required, "actualRole": actual},
        )


class DeliveryFailed(AuthError):
    status_code = 502
    code = "delivery_failed"
    default_message = "Failed to send OTP. Please try again."


def create_error_response(error_message: str, code: Optional[str] = None,
                          details: Optional[Dict[str, Any]] = None) -> dict:
    """Create a standardized error response"""
    body = {
        "success": False,
        "data": None,
        "error": error_message,
    }
    if code:
        body["code"] = code
    if details:
        body["details"] = details
    return body

def create_success_response(data: Any) -> dict:
    """Create a standardized success response"""
    return {
        "success": True,
        "data": data,
        "error": None
    }

async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    if isinstance(exc, AuthError):
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(exc.message, exc.code, exc.details),
            headers=exc.headers,
        )

    # Convert 403 from HTTPBearer to 401 for missing authentication
    if exc.status_code == 403 and "Not authenticated" in str(exc.detail):
        return JSONResponse(
            status_code=401,
            content=create_error_response("Authentication required", Unauthenticated.code)
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body validation errors in the standard envelope"""
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=create_error_response("Validation failed", ValidationFailed.code, {"errors": errors}),
    )
