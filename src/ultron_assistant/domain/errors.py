"""
Custom exception hierarchy for the Ultron CRM assistant.

Two families of exceptions live here:

- Infrastructure errors (DatabaseError, SupabaseError, LLMError, ...) carry a
  machine-readable error_code and an HTTP status, like any API error. They
  never reach the assistant user directly: the assistant service catches
  them and maps them to the assistant taxonomy.
- Assistant errors (AssistantError subclasses) carry a French user_message
  and an AssistantErrorCode. They are rendered by a dedicated exception
  handler as an AssistantResponse body ({"response": ..., "error": ...}).

Usage:
    raise DataSourceUnavailableError("Database pool not initialized")
    raise QueryValidationError("Table non autorisee: secrets", query=sql)
"""

from typing import Any, Dict, Optional

from .base_enums import AssistantErrorCode


class UltronAssistantException(Exception):
    """
    Base exception for all assistant errors.

    Attributes:
        message: Human-readable error description (English, for logs)
        error_code: Machine-readable error code (e.g., "DATABASE_QUERY_ERROR")
        http_status: HTTP status code to return (default: 500)
        details: Optional dictionary with additional error context
    """

    error_code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        if http_status:
            self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(UltronAssistantException):
    """
    Raised when configuration or packaged resources are invalid.

    Examples:
        - Missing environment variables
        - Malformed schema catalog YAML
    """

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


class ServiceUnavailableError(UltronAssistantException):
    """Raised when a client needed by a request was not initialized at startup."""

    error_code = "SERVICE_UNAVAILABLE"
    http_status = 503


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(UltronAssistantException):
    """Base class for database-related errors."""

    error_code = "DATABASE_ERROR"
    http_status = 503


class DataSourceUnavailableError(DatabaseError):
    """
    Raised when the direct execution path cannot be used at all.

    This is the only database error that triggers the structured fallback.

    Examples:
        - Pool not initialized
        - Connection refused or lost
        - Connection timeout
    """

    error_code = "DATA_SOURCE_UNAVAILABLE"
    http_status = 503


class DatabaseQueryError(DatabaseError):
    """
    Raised when the database rejects or aborts a query.

    Examples:
        - SQL syntax error
        - Unknown column
        - Statement timeout
    """

    error_code = "DATABASE_QUERY_ERROR"
    http_status = 500


# =============================================================================
# Supabase Errors
# =============================================================================


class SupabaseError(UltronAssistantException):
    """Base class for Supabase Auth / PostgREST errors."""

    error_code = "SUPABASE_ERROR"
    http_status = 503


class SupabaseConnectionError(SupabaseError):
    """Raised when Supabase is unreachable or the client is not connected."""

    error_code = "SUPABASE_CONNECTION_ERROR"
    http_status = 503


class SupabaseRequestError(SupabaseError):
    """
    Raised when Supabase answers with an error status.

    Examples:
        - Expired access token (401 from /auth/v1/user)
        - Unknown column in a PostgREST filter (400)
    """

    error_code = "SUPABASE_REQUEST_ERROR"
    http_status = 502

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.status_code = status_code


# =============================================================================
# LLM Errors
# =============================================================================


class LLMError(UltronAssistantException):
    """
    Raised when LLM operations fail.

    Examples:
        - OpenRouter unreachable
        - Empty completion
        - Prompt exceeds the configured input size
    """

    error_code = "LLM_ERROR"
    http_status = 503


# =============================================================================
# Fallback Errors
# =============================================================================


class FallbackUnsupportedError(UltronAssistantException):
    """
    Raised when a query cannot be expressed as a structured fallback request.

    Examples:
        - Predicates other than qualification / assigned_to (strict mode)
        - Table outside the schema catalog
        - No FROM clause
    """

    error_code = "FALLBACK_UNSUPPORTED"
    http_status = 500


# =============================================================================
# Assistant Errors (rendered as AssistantResponse)
# =============================================================================


class AssistantError(UltronAssistantException):
    """
    Base class for errors surfaced to the assistant user.

    Attributes:
        user_message: French message shown to the advisor
        assistant_error_code: Value of the "error" field in the response body
        query: SQL to echo back in the response, when relevant
    """

    assistant_error_code: AssistantErrorCode = AssistantErrorCode.UNKNOWN_ERROR
    default_user_message: str = "Une erreur inattendue s'est produite. Veuillez reessayer."
    http_status = 500

    def __init__(
        self,
        message: Optional[str] = None,
        user_message: Optional[str] = None,
        query: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.user_message = user_message or self.default_user_message
        self.query = query
        super().__init__(
            message or self.user_message,
            details=details,
            error_code=self.assistant_error_code.value,
        )


class AuthenticationError(AssistantError):
    """Raised when the caller's session cannot be resolved to a user and organization."""

    assistant_error_code = AssistantErrorCode.AUTH_ERROR
    default_user_message = "Veuillez vous reconnecter pour utiliser l'assistant."
    http_status = 401


class InvalidRequestError(AssistantError):
    """Raised when the message is missing, blank or not a string."""

    assistant_error_code = AssistantErrorCode.INVALID_REQUEST
    default_user_message = "Veuillez poser une question."
    http_status = 400


class SQLGenerationError(AssistantError):
    """
    Raised when no usable SELECT statement could be generated.

    Examples:
        - LLM call failed or timed out
        - Output does not start with SELECT
    """

    assistant_error_code = AssistantErrorCode.SQL_GENERATION_ERROR
    default_user_message = (
        "Je n'ai pas compris votre question. Pouvez-vous la reformuler?\n\n"
        "Exemples de questions:\n"
        "- \"Montre moi les prospects chauds\"\n"
        "- \"Combien de RDV cette semaine?\"\n"
        "- \"Prospects sans conseiller assigne\""
    )
    http_status = 200


class QueryValidationError(AssistantError):
    """Raised when the rewritten query violates the read-only policy."""

    assistant_error_code = AssistantErrorCode.VALIDATION_ERROR
    http_status = 200

    def __init__(self, reason: str, query: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        super().__init__(
            message=f"Query rejected by validator: {reason}",
            user_message=f"Je ne peux pas executer cette requete: {reason}",
            query=query,
            details=details,
        )


class QueryExecutionError(AssistantError):
    """Raised when neither the direct path nor the fallback produced rows."""

    assistant_error_code = AssistantErrorCode.EXECUTION_ERROR
    default_user_message = (
        "Une erreur s'est produite lors de la recherche. "
        "Veuillez reessayer avec une question plus simple."
    )
    http_status = 200
