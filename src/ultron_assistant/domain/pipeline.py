"""
Pipeline state for one assistant request.

The state flows linearly through classification, generation, rewriting,
validation, execution and formatting. Each stage writes its own fields
once; nothing is rewritten by a later stage.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .base_enums import DataType, PipelineStepName
from .requests import ConversationTurn
from .responses import QueryExecutionResult, ValidationOutcome
from .tenant import TenantContext
from ..utils.tracing import RequestBudget


@dataclass
class PipelineState:
    """Mutable state passed through the assistant pipeline steps."""

    # Input
    message: str
    history: List[ConversationTurn]
    tenant: TenantContext
    budget: RequestBudget

    # Classification
    is_non_query: bool = False

    # SQL generation and rewriting
    generated_sql: Optional[str] = None
    rewritten_sql: Optional[str] = None
    validation: Optional[ValidationOutcome] = None

    # Execution and formatting
    execution_result: Optional[QueryExecutionResult] = None
    data_type: Optional[DataType] = None
    response_text: Optional[str] = None

    # Error tracking
    error_step: Optional[PipelineStepName] = None
