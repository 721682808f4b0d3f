"""
FastAPI dependencies for dependency injection.

This module provides reusable dependencies that can be injected into
API route handlers following proper layered architecture:
- AssistantService for the /assistant pipeline
- TenantContext for the authenticated caller
- Settings for configuration
- Optional client dependencies for health checks only

Clients are created once in the application lifespan and stored on
app.state; repositories and the service are cheap and built per request.
Routes should depend on services, not infrastructure clients directly.
"""

from typing import Annotated, Optional

from fastapi import Depends, Request

from ..config import Settings
from ..config_constants import SUPABASE_ACCESS_TOKEN_COOKIE
from ..domain.tenant import TenantContext
from ..infrastructure.database_client import DatabaseClient
from ..infrastructure.llm_client import LLMClient
from ..infrastructure.supabase_client import SupabaseClient
from ..repositories.intent_classifier import IntentClassifier
from ..repositories.query_intent import QueryIntentParser
from ..repositories.response_formatting import ResponseFormattingRepository
from ..repositories.schema_context import SchemaContextRepository
from ..repositories.sql_execution import SQLExecutionRepository
from ..repositories.sql_generation import SQLGenerationRepository
from ..repositories.sql_validation import QueryRewriter, QueryValidator, default_policy
from ..repositories.tenant_repository import TenantRepository
from ..services.assistant_service import AssistantService


def get_settings(request: Request) -> Settings:
    """
    Dependency to get the settings from app state.

    Usage in routes:
        @app.get("/config")
        async def get_config(settings: SettingsDep):
            return {"log_level": settings.app.log_level}

    Raises:
        RuntimeError: If settings are not initialized
    """
    if not hasattr(request.app.state, "settings"):
        raise RuntimeError("Settings not initialized")

    return request.app.state.settings


# Optional dependency getters for health checks and endpoints that need graceful degradation
def get_db_client_optional(request: Request) -> Optional[DatabaseClient]:
    """Get database client if available, None otherwise."""
    return getattr(request.app.state, "db_client", None)


def get_supabase_client_optional(request: Request) -> Optional[SupabaseClient]:
    """Get Supabase client if available, None otherwise."""
    return getattr(request.app.state, "supabase_client", None)


def get_llm_client_optional(request: Request) -> Optional[LLMClient]:
    """Get LLM client if available, None otherwise."""
    return getattr(request.app.state, "llm_client", None)


def get_schema_context(request: Request) -> SchemaContextRepository:
    """Schema context built at startup; falls back to the packaged catalog."""
    schema_context = getattr(request.app.state, "schema_context", None)
    return schema_context or SchemaContextRepository()


def extract_access_token(request: Request) -> Optional[str]:
    """Supabase access token from "Authorization: Bearer ..." or the session cookie."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(SUPABASE_ACCESS_TOKEN_COOKIE) or None


async def get_tenant_context(request: Request) -> TenantContext:
    """
    Dependency resolving the caller's session to a user and organization.

    Runs before the request body is used, so an unauthenticated call gets
    AUTH_ERROR whatever its body.

    Raises:
        AuthenticationError: If the session cannot be resolved (rendered as 401)
        RuntimeError: If the Supabase client is not initialized
    """
    if not hasattr(request.app.state, "supabase_client"):
        raise RuntimeError("Supabase client not initialized")

    settings = get_settings(request)
    tenant_repo = TenantRepository(
        supabase_client=request.app.state.supabase_client,
        timeout_seconds=settings.supabase.read_timeout_seconds,
    )
    return await tenant_repo.resolve(extract_access_token(request))


def get_assistant_service(request: Request) -> AssistantService:
    """
    Dependency to get an AssistantService instance.

    This creates an AssistantService with full repository tree:
    AssistantService (orchestrator)
      ├── IntentClassifier (small-talk short-circuit)
      ├── SQLGenerationRepository (LLM-based generation)
      ├── QueryRewriter + QueryValidator (tenant filter, read-only policy)
      ├── SQLExecutionRepository (asyncpg, PostgREST fallback)
      └── ResponseFormattingRepository (French answer, dataType)

    Raises:
        RuntimeError: If required clients are not initialized
    """
    for attribute, name in (
        ("db_client", "Database client"),
        ("supabase_client", "Supabase client"),
        ("llm_client", "LLM client"),
    ):
        if not hasattr(request.app.state, attribute):
            raise RuntimeError(f"{name} not initialized")

    settings = get_settings(request)
    assistant_config = settings.assistant
    schema_context = get_schema_context(request)
    allowed_tables = schema_context.get_allowed_tables()

    sql_generation_repo = SQLGenerationRepository(
        llm_client=request.app.state.llm_client,
        schema_context=schema_context,
        config=assistant_config,
    )

    query_rewriter = QueryRewriter(
        tenant_column=assistant_config.tenant_column,
        tenant_placeholder=assistant_config.tenant_placeholder,
        default_limit=assistant_config.default_limit,
    )

    query_validator = QueryValidator(default_policy(allowed_tables, assistant_config))

    sql_execution_repo = SQLExecutionRepository(
        db_client=request.app.state.db_client,
        supabase_client=request.app.state.supabase_client,
        intent_parser=QueryIntentParser(
            default_limit=assistant_config.default_limit,
            tenant_column=assistant_config.tenant_column,
            tenant_placeholder=assistant_config.tenant_placeholder,
        ),
        allowed_tables=allowed_tables,
        config=assistant_config,
    )

    response_formatting_repo = ResponseFormattingRepository(
        llm_client=request.app.state.llm_client,
        config=assistant_config,
        schema_summary=schema_context.get_condensed_schema(),
    )

    return AssistantService(
        intent_classifier=IntentClassifier(non_query_max_length=assistant_config.non_query_max_length),
        sql_generation_repository=sql_generation_repo,
        query_rewriter=query_rewriter,
        query_validator=query_validator,
        sql_execution_repository=sql_execution_repo,
        response_formatting_repository=response_formatting_repo,
        config=assistant_config,
    )


# Type aliases for cleaner dependency injection
# Service dependencies (used in API routes)
AssistantServiceDep = Annotated[AssistantService, Depends(get_assistant_service)]
TenantContextDep = Annotated[TenantContext, Depends(get_tenant_context)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

# Optional client dependencies (used in health checks)
OptionalDatabaseClientDep = Annotated[Optional[DatabaseClient], Depends(get_db_client_optional)]
OptionalSupabaseClientDep = Annotated[Optional[SupabaseClient], Depends(get_supabase_client_optional)]
OptionalLLMClientDep = Annotated[Optional[LLMClient], Depends(get_llm_client_optional)]
