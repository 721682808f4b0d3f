"""
API response models for the Ultron CRM assistant.

These models define the structure of outgoing API responses and the
intermediate results passed between pipeline stages.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from .base_enums import AssistantErrorCode, DataType, ExecutionPath, PolicyRuleKind


class AssistantResponse(BaseModel):
    """
    Response model for the assistant endpoint.

    Serialized with camelCase aliases and without null fields, so a
    greeting answer is just {"response": "..."}.
    """

    model_config = ConfigDict(populate_by_name=True)

    response: str = Field(..., description="French answer shown in the chat")
    query: Optional[str] = Field(
        default=None,
        description="SQL that was executed (or rejected), for transparency"
    )
    data: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="Result rows, one object per row"
    )
    data_type: Optional[DataType] = Field(
        default=None,
        alias="dataType",
        description="Shape of the result: empty, count, record, table or list"
    )
    error: Optional[AssistantErrorCode] = Field(
        default=None,
        description="Error category when the request could not be fully answered"
    )


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Health status", examples=["healthy", "degraded"])
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Application version")
    database_status: str = Field(..., description="Direct execution database status")
    supabase_status: str = Field(..., description="Supabase Auth/PostgREST status")
    llm_service_status: str = Field(..., description="LLM service status")


class ErrorResponse(BaseModel):
    """Response model for non-assistant error responses."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
    trace_id: Optional[str] = Field(
        default=None,
        description="Trace ID for debugging"
    )
    timestamp: datetime = Field(..., description="Error timestamp")


# -------------------------
# Pipeline Models
# -------------------------

class QueryGenerationResult(BaseModel):
    """Candidate SQL produced by the generation stage."""

    model_config = ConfigDict(frozen=True)

    sql: str = Field(..., description="Cleaned SQL text, starts with SELECT")
    generation_time_ms: float = Field(..., description="LLM call duration in milliseconds")


class ValidationStep(BaseModel):
    """Result of evaluating one policy rule."""

    rule: PolicyRuleKind = Field(..., description="Policy rule that was evaluated")
    passed: bool = Field(..., description="Whether the rule passed")
    message: Optional[str] = Field(None, description="Reason (French) or warning")


class ValidationOutcome(BaseModel):
    """Outcome of validating a rewritten query."""

    valid: bool = Field(..., description="True when every enforced rule passed")
    reason: Optional[str] = Field(None, description="French reason of the first failing rule")
    steps: List[ValidationStep] = Field(default_factory=list, description="Rules evaluated, in order")


class QueryExecutionResult(BaseModel):
    """Query execution result with metadata."""

    rows: List[Dict[str, Any]] = Field(..., description="Query result rows")
    column_names: List[str] = Field(..., description="Column names in result set")
    row_count: int = Field(..., description="Number of rows returned")
    execution_time_ms: float = Field(..., description="Query execution time in milliseconds")
    execution_path: ExecutionPath = Field(..., description="Direct SQL or structured fallback")
