"""
Schema Context Repository.

Builds the grounding text given to the SQL generator from the packaged
schema catalog (resources/schema_context.yaml):

- Tables and columns, with meanings and allowed values
- Mandatory SQL rules (SELECT only, tenant filter, LIMIT, French aliases)
- Natural-language to SQL mapping table
- Complete worked examples

The same catalog is the single source of the table allowlist used by the
validator and the fallback executor, so the prompt and the policy can
never disagree about which tables exist.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import ValidationError

from ultron_assistant.domain.errors import ConfigurationError
from ultron_assistant.domain.schema_catalog import CatalogTable, SchemaCatalog
from ultron_assistant.utils.logging import get_module_logger
from ultron_assistant.utils.yaml_loader import load_packaged_yaml

logger = get_module_logger()

SCHEMA_CATALOG_FILE = "schema_context.yaml"


@lru_cache
def load_schema_catalog() -> SchemaCatalog:
    """
    Load and validate the packaged schema catalog (once per process).

    Raises:
        ConfigurationError: If the file is missing or does not match SchemaCatalog
    """
    content = load_packaged_yaml(SCHEMA_CATALOG_FILE)
    try:
        catalog = SchemaCatalog.model_validate(content)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid schema catalog {SCHEMA_CATALOG_FILE}: {e}",
            details={"errors": e.errors(include_url=False)}
        ) from e

    logger.info(
        "Schema catalog loaded",
        table_count=len(catalog.tables),
        mapping_count=len(catalog.mappings),
        example_count=len(catalog.examples),
    )
    return catalog


class SchemaContextRepository:
    """
    Repository exposing the schema catalog as prompt text and allowlist.

    Rendering happens once at construction; every accessor is a constant.
    """

    def __init__(self, catalog: Optional[SchemaCatalog] = None):
        self.catalog = catalog or load_schema_catalog()
        self._schema_context = "\n\n".join(
            [self._render_tables(), self._render_rules()]
        )
        self._condensed_schema = "Tables: " + ", ".join(
            f"{name} ({table.label})" for name, table in self.catalog.tables.items()
        )

    def get_schema_context(self) -> str:
        """Full grounding text for the SQL generation prompt."""
        return self._schema_context

    def get_condensed_schema(self) -> str:
        """One-line summary of the tables, e.g. for the formatting prompt."""
        return self._condensed_schema

    def get_allowed_tables(self) -> List[str]:
        """Names of the tables queries may read from."""
        return list(self.catalog.tables.keys())

    # -------------------------
    # Rendering
    # -------------------------

    def _render_tables(self) -> str:
        sections = ["## TABLES DISPONIBLES"]
        for name, table in self.catalog.tables.items():
            sections.append(self._render_table(name, table))
        return "\n\n".join(sections)

    @staticmethod
    def _render_table(name: str, table: CatalogTable) -> str:
        lines = [f"### {name} ({table.description})"]

        for group in table.column_groups:
            lines.append("")
            lines.append(f"#### {group.title}:" if group.title else "Colonnes:")
            for column in group.columns:
                line = f"- {column.name}: {column.type}"
                if column.description:
                    line += f" ({column.description})"
                lines.append(line)

        return "\n".join(lines)

    def _render_rules(self) -> str:
        blocks = []

        if self.catalog.rules:
            rules = "\n".join(
                f"{index}. {rule}" for index, rule in enumerate(self.catalog.rules, start=1)
            )
            blocks.append(f"## REGLES OBLIGATOIRES\n\n{rules}")

        for note in self.catalog.notes:
            lines = "\n".join(f"- {line}" for line in note.lines)
            blocks.append(f"## {note.title}\n{lines}")

        if self.catalog.mappings:
            rows = "\n".join(
                f"| {mapping.expression} | {mapping.sql} |" for mapping in self.catalog.mappings
            )
            blocks.append(
                "## EXEMPLES DE MAPPING LANGAGE NATUREL -> SQL\n\n"
                "| Expression | SQL |\n"
                "|------------|-----|\n"
                f"{rows}"
            )

        if self.catalog.examples:
            examples = "\n\n".join(
                f"{index}. \"{example.question}\":\n{example.sql.strip()}"
                for index, example in enumerate(self.catalog.examples, start=1)
            )
            blocks.append(f"## EXEMPLES DE REQUETES COMPLETES\n\n{examples}")

        return "\n\n".join(blocks)
