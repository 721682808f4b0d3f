"""
Schema catalog models.

The catalog describes the CRM tables the assistant may query, the SQL
conventions it must follow, and worked examples. It is loaded from the
packaged schema_context.yaml and validated with these models, so a
malformed file fails at startup rather than producing a broken prompt.
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class CatalogColumn(BaseModel):
    """A column of a CRM table."""

    name: str
    type: str
    description: Optional[str] = None


class CatalogColumnGroup(BaseModel):
    """Columns grouped under an optional heading (e.g. "QUALIFICATION IA")."""

    title: Optional[str] = None
    columns: List[CatalogColumn] = Field(..., min_length=1)


class CatalogTable(BaseModel):
    """A queryable CRM table."""

    label: str = Field(..., description="Short French label, used in the condensed schema")
    description: str
    column_groups: List[CatalogColumnGroup] = Field(..., min_length=1)

    def column_names(self) -> List[str]:
        return [column.name for group in self.column_groups for column in group.columns]


class CatalogNote(BaseModel):
    title: str
    lines: List[str]


class CatalogMapping(BaseModel):
    """Natural-language expression and the SQL fragment it translates to."""

    expression: str
    sql: str


class CatalogExample(BaseModel):
    question: str
    sql: str


class SchemaCatalog(BaseModel):
    """Root of schema_context.yaml."""

    tables: Dict[str, CatalogTable] = Field(..., min_length=1)
    rules: List[str] = Field(default_factory=list)
    notes: List[CatalogNote] = Field(default_factory=list)
    mappings: List[CatalogMapping] = Field(default_factory=list)
    examples: List[CatalogExample] = Field(default_factory=list)
