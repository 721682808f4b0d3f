"""
Domain package for the Ultron CRM assistant.

This package contains the domain models, value objects and errors
used throughout the application for type safety and validation.
"""

from .base_enums import (
    AssistantErrorCode,
    ConversationRole,
    DataType,
    ExecutionPath,
    FilterOperator,
    PipelineStepName,
    PolicyRuleKind,
    SortDirection,
)
from .requests import AssistantRequest, ConversationTurn
from .responses import (
    AssistantResponse,
    ErrorResponse,
    HealthResponse,
    QueryExecutionResult,
    QueryGenerationResult,
    ValidationOutcome,
    ValidationStep,
)
from .query_intent import IntentFilter, IntentOrder, QueryIntent
from .tenant import TenantContext, TenantOrganization, TenantUser

__all__ = [
    # Enums
    "AssistantErrorCode",
    "ConversationRole",
    "DataType",
    "ExecutionPath",
    "FilterOperator",
    "PipelineStepName",
    "PolicyRuleKind",
    "SortDirection",

    # Requests
    "AssistantRequest",
    "ConversationTurn",

    # Responses
    "AssistantResponse",
    "ErrorResponse",
    "HealthResponse",
    "QueryExecutionResult",
    "QueryGenerationResult",
    "ValidationOutcome",
    "ValidationStep",

    # Query intent
    "IntentFilter",
    "IntentOrder",
    "QueryIntent",

    # Tenant
    "TenantContext",
    "TenantOrganization",
    "TenantUser",
]
