"""
Main FastAPI application for the Ultron CRM assistant.

This module sets up the FastAPI application with proper logging,
tracing, and error handling middleware.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Union

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .utils.logging import configure_logging, get_module_logger
from .utils.tracing import get_trace_id
from .domain.requests import AssistantRequest
from .domain.responses import AssistantResponse, HealthResponse
from .api.middleware import (
    trace_id_middleware,
    logging_middleware,
    register_exception_handlers,
    ASSISTANT_ERROR_RESPONSES,
)
from .api.dependencies import (
    AssistantServiceDep,
    SettingsDep,
    TenantContextDep,
    OptionalDatabaseClientDep,
    OptionalSupabaseClientDep,
    OptionalLLMClientDep,
)
from .config import get_settings
from .config_constants import ASSISTANT_ROUTE
from .infrastructure.database_client import DatabaseClient
from .infrastructure.supabase_client import SupabaseClient
from .infrastructure.llm_client import LLMClient
from .repositories.schema_context import SchemaContextRepository

APP_VERSION = "0.1.0"

# Configure logging on module import
configure_logging()
logger = get_module_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Ultron assistant API server", version=APP_VERSION)

    # Load settings once at startup
    settings = get_settings()
    app.state.settings = settings
    logger.info("Settings loaded successfully")

    # A malformed packaged catalog is a deployment error: fail startup
    app.state.schema_context = SchemaContextRepository()

    # Initialize database client
    db_client = DatabaseClient(settings.database)
    try:
        await db_client.connect()
        logger.info("Database client connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect database client: {e}")
        # Continue without database - queries use the PostgREST fallback

    # Initialize Supabase client
    supabase_client = SupabaseClient(settings.supabase)
    try:
        await supabase_client.connect()
        logger.info("Supabase client connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect Supabase client: {e}")
        # Continue without Supabase - health check will report status

    # Initialize LLM client
    llm_client = LLMClient(settings.llm)
    try:
        await llm_client.connect()
        logger.info("LLM client connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect LLM client: {e}")
        # Continue without LLM - health check will report status

    # Store clients in app state for dependency injection
    app.state.db_client = db_client
    app.state.supabase_client = supabase_client
    app.state.llm_client = llm_client

    yield

    # Shutdown
    logger.info("Shutting down Ultron assistant API server")

    if hasattr(app.state, "db_client"):
        await app.state.db_client.close()
        logger.info("Database client closed")

    if hasattr(app.state, "supabase_client"):
        await app.state.supabase_client.close()
        logger.info("Supabase client closed")

    if hasattr(app.state, "llm_client"):
        await app.state.llm_client.close()
        logger.info("LLM client closed")


# Create FastAPI application
app = FastAPI(
    title="Ultron Assistant API",
    description="Natural-language assistant over the Ultron CRM data (read-only, tenant-scoped)",
    version=APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().server.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register middleware in correct order (last registered = first executed)
app.middleware("http")(logging_middleware)
app.middleware("http")(trace_id_middleware)

# Register all exception handlers (AssistantError, RequestValidationError, HTTPException, etc.)
register_exception_handlers(app)


# API Routes
@app.get("/", tags=["Root"])
async def root(settings: SettingsDep) -> Dict[str, Union[str, None]]:
    """
    Root endpoint returning basic API information.

    **Response**: Dict with message, version, trace_id, log_level
    """
    trace_id = get_trace_id()
    logger.info("Root endpoint accessed", trace_id=trace_id)

    return {
        "message": "Ultron Assistant API",
        "version": APP_VERSION,
        "trace_id": trace_id,
        "log_level": settings.app.log_level
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(
    db_client: OptionalDatabaseClientDep,
    supabase_client: OptionalSupabaseClientDep,
    llm_client: OptionalLLMClientDep,
) -> HealthResponse:
    """
    Health check endpoint with system status.

    **Response Model**: `HealthResponse`
    - status: healthy when every client is healthy, degraded otherwise
    - database_status, supabase_status, llm_service_status
    """
    trace_id = get_trace_id()
    logger.info("Health check endpoint accessed", trace_id=trace_id)

    database_status = "not_configured"
    if db_client:
        db_health = await db_client.health_check()
        database_status = db_health.get("status", "unknown")

    supabase_status = "not_configured"
    if supabase_client:
        supabase_health = await supabase_client.health_check()
        supabase_status = supabase_health.get("status", "unknown")

    llm_status = "not_configured"
    if llm_client:
        llm_health = llm_client.health_check()
        llm_status = llm_health.get("status", "unknown")

    overall_status = "healthy" if (
        database_status == "healthy" and
        supabase_status == "healthy" and
        llm_status == "healthy"
    ) else "degraded"

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=APP_VERSION,
        database_status=database_status,
        supabase_status=supabase_status,
        llm_service_status=llm_status,
    )


# -------------------------
# Assistant Endpoint
# -------------------------

@app.post(
    ASSISTANT_ROUTE,
    response_model=AssistantResponse,
    response_model_exclude_none=True,
    response_model_by_alias=True,
    tags=["Assistant"],
    responses=ASSISTANT_ERROR_RESPONSES,
)
async def assistant(
    tenant: TenantContextDep,
    assistant_service: AssistantServiceDep,
    request: AssistantRequest,
) -> AssistantResponse:
    """
    Answer a natural-language question about the caller's CRM data.

    Pipeline:
    1. **Classification**: greetings and small talk get a canned answer
    2. **Generation**: one LLM call turns the question into a SELECT
    3. **Rewriting**: organization filter and LIMIT are injected
    4. **Validation**: read-only policy (keywords, tables, limit, patterns)
    5. **Execution**: direct read-only query, PostgREST fallback if unavailable
    6. **Formatting**: French answer plus dataType for the UI

    **Request Model**: `AssistantRequest`
    - message: the question (required, non-blank)
    - conversationHistory: previous turns, oldest first

    **Response Model**: `AssistantResponse`
    - response, query, data, dataType, error

    **Errors**:
    - 200 with error SQL_GENERATION_ERROR / VALIDATION_ERROR / EXECUTION_ERROR
    - 400 INVALID_REQUEST, 401 AUTH_ERROR, 500 UNKNOWN_ERROR
    """
    trace_id = get_trace_id()

    logger.info(
        "Assistant question received",
        user_id=tenant.user.id,
        organization_id=tenant.organization_id,
        trace_id=trace_id,
    )

    response = await assistant_service.answer(request, tenant)

    logger.info(
        "Assistant question answered",
        error=response.error.value if response.error else None,
        data_type=response.data_type.value if response.data_type else None,
        trace_id=trace_id,
    )

    return response


# FastAPI app is now ready to be imported and run by uvicorn or other ASGI servers
# Use scripts/run_dev.py for development
