"""
Middleware and exception handlers for the Ultron assistant FastAPI application.

This module contains:
- HTTP middleware for request/response processing
- Centralized exception handlers for all custom exceptions
- Logging and tracing

Exception Handling Strategy:
- AssistantError subclasses are rendered as AssistantResponse
  ({"response": "<French message>", "error": "<CODE>"}) with their HTTP status
- Other UltronAssistantException subclasses use the ErrorResponse format
- Body validation failures on the assistant route are INVALID_REQUEST (400)
- Unhandled exceptions are 500; the assistant route gets UNKNOWN_ERROR
- Stack traces and internal messages are logged, never returned

Usage in main.py:
    from .api.middleware import register_exception_handlers
    register_exception_handlers(app)
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config_constants import ASSISTANT_ROUTE
from ..domain.base_enums import AssistantErrorCode
from ..domain.errors import AssistantError, InvalidRequestError, UltronAssistantException
from ..domain.responses import AssistantResponse, ErrorResponse
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id, generate_trace_id, set_trace_id

# Initialize logger for this module
logger = get_module_logger()

UNKNOWN_ERROR_MESSAGE = "Une erreur inattendue s'est produite. Veuillez reessayer."


# =============================================================================
# Middleware Functions
# =============================================================================


async def trace_id_middleware(request: Request, call_next: Callable) -> Response:
    """
    Middleware to generate and manage trace IDs for each request.

    - Extracts trace_id from X-Trace-ID header if provided
    - Generates a new UUID trace_id if not provided
    - Sets trace_id in context for the entire request lifecycle
    - Adds trace_id to response headers
    """
    trace_id = request.headers.get("X-Trace-ID") or generate_trace_id()
    set_trace_id(trace_id)

    response = await call_next(request)

    response.headers["X-Trace-ID"] = trace_id
    return response


async def logging_middleware(request: Request, call_next: Callable) -> Response:
    """
    Middleware to log HTTP requests and responses.

    Logs:
    - Request: method, path, user-agent, client IP
    - Response: status code, duration in milliseconds
    - Adds X-Process-Time header with duration
    """
    start_time = datetime.now(timezone.utc)
    trace_id = current_trace_id()

    # Path only: query strings and cookies may carry session data
    logger.info(
        "HTTP request started",
        method=request.method,
        path=request.url.path,
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
        trace_id=trace_id
    )

    response = await call_next(request)

    duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    response.headers["X-Process-Time"] = str(round(duration_ms, 2))

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
        trace_id=trace_id
    )

    return response


# =============================================================================
# Exception Handlers
# =============================================================================


def _create_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict] = None
) -> JSONResponse:
    """
    Create a standardized JSON error response.

    All non-assistant error responses follow this structure:
    {
        "error": "error_code",
        "message": "Human readable message",
        "details": {...},  // Optional additional context
        "trace_id": "uuid",
        "timestamp": "ISO8601"
    }
    """
    error_response = ErrorResponse(
        error=error_code.lower(),
        message=message,
        details=details,
        trace_id=current_trace_id(),
        timestamp=datetime.now(timezone.utc)
    )

    # mode="json" serializes datetime objects to ISO strings
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True)
    )


def _create_assistant_response(status_code: int, response: AssistantResponse) -> JSONResponse:
    """Assistant-shaped JSON body: camelCase keys, null fields omitted."""
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True)
    )


async def assistant_exception_handler(request: Request, exc: AssistantError) -> JSONResponse:
    """
    Handler for AssistantError subclasses.

    - exc.http_status -> HTTP status code (401, 400, or 200 for stage errors)
    - exc.user_message -> "response" field
    - exc.assistant_error_code -> "error" field
    - exc.query -> "query" field when set
    """
    logger.warning(
        f"{exc.__class__.__name__}: {exc.message}",
        error_code=exc.error_code,
        http_status=exc.http_status,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id()
    )

    return _create_assistant_response(
        exc.http_status,
        AssistantResponse(
            response=exc.user_message,
            query=exc.query,
            error=exc.assistant_error_code,
        )
    )


async def ultron_exception_handler(request: Request, exc: UltronAssistantException) -> JSONResponse:
    """
    Handler for all other UltronAssistantException subclasses.

    Maps exception attributes to HTTP response:
    - exc.http_status -> HTTP status code
    - exc.error_code -> error field in response
    - exc.message -> message field in response
    - exc.details -> details field in response
    """
    log_level = "warning" if exc.http_status < 500 else "error"
    getattr(logger, log_level)(
        f"{exc.__class__.__name__}: {exc.message}",
        error_code=exc.error_code,
        http_status=exc.http_status,
        details=exc.details,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id()
    )

    if request.url.path == ASSISTANT_ROUTE:
        return _create_assistant_response(
            500,
            AssistantResponse(response=UNKNOWN_ERROR_MESSAGE, error=AssistantErrorCode.UNKNOWN_ERROR)
        )

    return _create_error_response(
        status_code=exc.http_status,
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details if exc.details else None
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handler for FastAPI/Pydantic validation errors.

    On the assistant route a malformed body (not JSON, not an object) is an
    INVALID_REQUEST (400) like a blank message. Elsewhere the standard
    422 format with field-level details is used.
    """
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]

    logger.warning(
        "Request validation failed",
        error_count=len(errors),
        errors=errors,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id()
    )

    if request.url.path == ASSISTANT_ROUTE:
        invalid = InvalidRequestError("Request body could not be parsed")
        return _create_assistant_response(
            invalid.http_status,
            AssistantResponse(response=invalid.user_message, error=invalid.assistant_error_code)
        )

    return _create_error_response(
        status_code=422,
        error_code="VALIDATION_ERROR",
        message="Request validation failed",
        details={"errors": errors}
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handler for Starlette/FastAPI HTTP exceptions.

    Converts standard HTTP exceptions to standardized format.
    """
    error_code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }

    error_code = error_code_map.get(exc.status_code, "HTTP_ERROR")

    log_level = "warning" if exc.status_code < 500 else "error"
    getattr(logger, log_level)(
        f"HTTP {exc.status_code}: {exc.detail}",
        error_code=error_code,
        http_status=exc.status_code,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id()
    )

    return _create_error_response(
        status_code=exc.status_code,
        error_code=error_code,
        message=str(exc.detail) if exc.detail else f"HTTP {exc.status_code} error"
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global fallback handler for unhandled exceptions.

    - Logs full error details for debugging
    - Returns generic 500 error to client (no internal details exposed)
    - The assistant route answers {"response": ..., "error": "UNKNOWN_ERROR"}
    """
    logger.error(
        "Unhandled exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id(),
        exc_info=True  # Include stack trace in logs
    )

    if request.url.path == ASSISTANT_ROUTE:
        return _create_assistant_response(
            500,
            AssistantResponse(response=UNKNOWN_ERROR_MESSAGE, error=AssistantErrorCode.UNKNOWN_ERROR)
        )

    return _create_error_response(
        status_code=500,
        error_code="INTERNAL_ERROR",
        message="An internal server error occurred. Please try again later."
    )


# =============================================================================
# Exception Handler Registration
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Exception handling priority (most specific class wins):
    1. AssistantError subclasses
    2. Other UltronAssistantException subclasses
    3. RequestValidationError (Pydantic)
    4. StarletteHTTPException (FastAPI/Starlette)
    5. General Exception (fallback)
    """
    # type: ignore needed because FastAPI's add_exception_handler typing does not
    # accept handlers declared for a specific exception subclass
    app.add_exception_handler(AssistantError, assistant_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(UltronAssistantException, ultron_exception_handler)  # type: ignore[arg-type]

    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]

    # Fallback handler for any unhandled exceptions
    app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

    logger.info(
        "Exception handlers registered",
        handlers=[
            "AssistantError",
            "UltronAssistantException",
            "RequestValidationError",
            "StarletteHTTPException",
            "Exception (fallback)"
        ]
    )


# =============================================================================
# OpenAPI Error Response Models (for documentation)
# =============================================================================

# Used in route decorators:
#   @app.post("/assistant", responses=ASSISTANT_ERROR_RESPONSES)

ASSISTANT_ERROR_RESPONSES = {
    400: {
        "description": "Invalid Request - The message is missing or blank",
        "content": {
            "application/json": {
                "example": {"response": "Veuillez poser une question.", "error": "INVALID_REQUEST"}
            }
        }
    },
    401: {
        "description": "Authentication Error - The session could not be resolved to an organization",
        "content": {
            "application/json": {
                "example": {
                    "response": "Veuillez vous reconnecter pour utiliser l'assistant.",
                    "error": "AUTH_ERROR"
                }
            }
        }
    },
    500: {
        "description": "Unknown Error - An unexpected error occurred",
        "content": {
            "application/json": {
                "example": {"response": UNKNOWN_ERROR_MESSAGE, "error": "UNKNOWN_ERROR"}
            }
        }
    },
}
