"""
Structured description of a single-table query.

A QueryIntent is derived once from the rewritten, validated SQL and is the
only input of the fallback execution path. Predicates that cannot be
represented are kept in unrecognized_predicates so the fallback can decide
to refuse instead of silently widening the result.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from .base_enums import FilterOperator, SortDirection


class IntentFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    operator: FilterOperator
    value: Optional[str] = None


class IntentOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    direction: SortDirection = SortDirection.DESC
    nulls_first: Optional[bool] = Field(None, description="None keeps the database default")


class QueryIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str = Field(..., description="Single table the query reads from")
    columns: List[str] = Field(
        default_factory=list,
        description="PostgREST select items (\"col\", \"alias:col\" or \"*\"); empty selects every column"
    )
    filters: List[IntentFilter] = Field(default_factory=list)
    order_by: List[IntentOrder] = Field(default_factory=list, description="Sort keys, most significant first")
    limit: int = Field(..., ge=1)
    unrecognized_predicates: List[str] = Field(
        default_factory=list,
        description="Top-level WHERE predicates the fallback cannot express"
    )

    @property
    def is_exact(self) -> bool:
        """True when the fallback would return exactly the rows of the SQL query."""
        return not self.unrecognized_predicates
