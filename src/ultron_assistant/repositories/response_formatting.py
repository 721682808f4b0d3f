"""
Response Formatting Repository.

Turns result rows into the French answer shown in the chat, plus the
dataType the UI uses to pick a renderer.

- classify(rows): deterministic shape classification, no I/O
- format(question, rows, sql):
  - no rows: fixed "aucun resultat" message
  - one row with one numeric value: count templates keyed on the column name
  - anything else: one LLM call; on failure or timeout, a deterministic
    summary of the first rows
"""

import asyncio
import json
import math
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from ultron_assistant.config import AssistantConfig
from ultron_assistant.domain.base_enums import DataType
from ultron_assistant.domain.errors import LLMError
from ultron_assistant.infrastructure.llm_client import LLMClient
from ultron_assistant.utils.logging import get_module_logger
from ultron_assistant.utils.tracing import current_trace_id

logger = get_module_logger()

FORMATTER_SYSTEM_PROMPT = """Tu es un assistant CRM francais pour conseillers en gestion de patrimoine.

Ta mission: Presenter les resultats de requetes SQL de maniere conversationnelle et professionnelle.

REGLES:
1. Reponds toujours en francais
2. Sois concis mais informatif
3. Mets en valeur les informations cles (nombres, totaux, tendances)
4. Si la liste est longue, resume les points principaux
5. Utilise des formulations naturelles ("Voici les X prospects...", "J'ai trouve Y resultats...")
6. Si aucun resultat, explique poliment qu'il n'y a pas de donnees
7. Propose 1-2 questions de suivi pertinentes a la fin
8. N'invente JAMAIS de donnees - base-toi uniquement sur les resultats fournis
9. Formate les montants en euros avec separateurs de milliers
10. Formate les dates en francais (ex: 15 janvier 2026)"""

FRENCH_MONTHS = (
    "janvier", "fevrier", "mars", "avril", "mai", "juin",
    "juillet", "aout", "septembre", "octobre", "novembre", "decembre",
)

MONEY_COLUMN_MARKERS = ("patrimoine", "revenu")

# Rows shown by the deterministic summary
SUMMARY_ROW_COUNT = 5

_ISO_DATE_PATTERN = re.compile(r'^(\d{4})-(\d{2})-(\d{2})')
_FR_DATE_PATTERN = re.compile(r'^(\d{2})/(\d{2})/(\d{4})')


# -------------------------
# Value helpers
# -------------------------

def is_number(value: Any) -> bool:
    """Real numbers only: booleans are not counts."""
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def as_number(value: Any) -> Optional[float]:
    """Numeric value of a number or numeric string, None otherwise."""
    if is_number(value):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def number_text(value: float) -> str:
    """3.0 -> "3", 2.5 -> "2.5"."""
    return str(int(value)) if value.is_integer() else str(value)


def format_euros(value: Any) -> str:
    """
    Format an amount the fr-FR way, without decimals.

    1500000 -> "1 500 000 €" (narrow no-break space between thousands,
    no-break space before the currency sign)
    """
    amount = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    digits = f"{abs(amount):,}".replace(",", "\u202f")
    sign = "-" if amount < 0 else ""
    return f"{sign}{digits}\u00a0\u20ac"


def format_french_date(value: Any) -> Optional[str]:
    """
    Render a date as "15 janvier 2026".

    Accepts date/datetime objects and strings starting with YYYY-MM-DD or
    DD/MM/YYYY. Returns None when the value is not a valid date.
    """
    if isinstance(value, (date, datetime)):
        day = value
    elif isinstance(value, str):
        iso = _ISO_DATE_PATTERN.match(value)
        french = _FR_DATE_PATTERN.match(value)
        try:
            if iso:
                day = date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
            elif french:
                day = date(int(french.group(3)), int(french.group(2)), int(french.group(1)))
            else:
                return None
        except ValueError:
            return None
    else:
        return None

    return f"{day.day} {FRENCH_MONTHS[day.month - 1]} {day.year}"


def format_value(column: str, value: Any) -> str:
    if is_number(value):
        if any(marker in column.lower() for marker in MONEY_COLUMN_MARKERS):
            try:
                return format_euros(value)
            except InvalidOperation:
                return str(value)
        return str(value)

    if isinstance(value, bool):
        return "oui" if value else "non"

    french_date = format_french_date(value)
    if french_date is not None:
        return french_date

    return str(value)


# -------------------------
# Repository
# -------------------------

class ResponseFormattingRepository:
    """
    Repository for result presentation.

    Handles dataType classification, templated answers and the LLM
    formatting call.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        config: AssistantConfig,
        schema_summary: Optional[str] = None,
    ):
        self.llm_client = llm_client
        self.config = config
        # e.g. "Tables: crm_prospects (prospects), users (conseillers)"
        self.schema_summary = schema_summary

    @staticmethod
    def classify(rows: List[Dict[str, Any]]) -> DataType:
        """
        Classify the result shape.

        - empty: no rows
        - count: one row, one column, numeric value
        - record: one row otherwise
        - table: three or more columns
        - list: otherwise
        """
        if not rows:
            return DataType.EMPTY

        first_row = rows[0]

        if len(rows) == 1:
            values = list(first_row.values())
            if len(values) == 1 and is_number(values[0]):
                return DataType.COUNT
            return DataType.RECORD

        if len(first_row) >= 3:
            return DataType.TABLE

        return DataType.LIST

    async def format(
        self,
        question: str,
        rows: List[Dict[str, Any]],
        sql: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Build the French answer for a result set.

        Args:
            question: User question, as asked
            rows: Result rows
            sql: Executed query, for logging only
            timeout: Seconds allowed for the LLM call

        Returns:
            Non-empty French text. Never raises for LLM problems.
        """
        trace_id = current_trace_id()

        if not rows:
            return self.empty_result_message(question)

        if len(rows) == 1 and len(rows[0]) == 1:
            column, value = next(iter(rows[0].items()))
            number = as_number(value)
            if number is not None:
                return self.count_message(question, column, number)

        prompt = f"""Question de l'utilisateur: "{question}"

Resultats de la requete ({len(rows)} lignes):
{json.dumps(rows, indent=2, ensure_ascii=False, default=str)}

Formate ces resultats de maniere conversationnelle."""
        if self.schema_summary:
            prompt = f"{prompt}\n\nContexte du schema: {self.schema_summary}"

        try:
            return await asyncio.wait_for(
                self.llm_client.generate(
                    prompt=prompt,
                    system_prompt=FORMATTER_SYSTEM_PROMPT,
                    max_tokens=self.config.formatter_max_tokens,
                ),
                timeout=timeout,
            )

        except asyncio.TimeoutError:
            logger.warning(
                "Response formatting timed out, using summary",
                timeout=timeout,
                row_count=len(rows),
                trace_id=trace_id,
            )
        except LLMError as e:
            logger.warning(
                "Response formatting failed, using summary",
                error=e.message,
                row_count=len(rows),
                sql_length=len(sql) if sql else 0,
                trace_id=trace_id,
            )

        return self.summary_message(rows)

    # -------------------------
    # Templates
    # -------------------------

    @staticmethod
    def empty_result_message(question: str) -> str:
        return f"""Je n'ai trouve aucun resultat correspondant a votre recherche "{question}".

Cela peut signifier que:
- Il n'y a pas encore de donnees correspondant a ces criteres
- Les filtres sont peut-etre trop restrictifs

Voulez-vous essayer une recherche differente ?"""

    @staticmethod
    def count_message(question: str, column: str, value: float) -> str:
        key = column.lower()
        shown = number_text(value)

        if "rdv" in key or "meeting" in key:
            if value == 0:
                return "Aucun RDV trouve pour cette periode.\n\nSouhaitez-vous consulter les RDV sur une autre periode ?"
            period = "cette semaine" if "semaine" in question.lower() else "programmes"
            return f"Vous avez **{shown} RDV** {period}.\n\nVoulez-vous voir le detail de ces RDV ?"

        if "prospect" in key or key in ("total", "count"):
            if value == 0:
                return "Aucun prospect trouve correspondant a ces criteres.\n\nEssayez peut-etre avec des criteres moins restrictifs ?"
            plural = "s" if value > 1 else ""
            return f"J'ai trouve **{shown} prospect{plural}** correspondant a votre recherche.\n\nVoulez-vous voir la liste detaillee ?"

        return f"Le resultat est: **{shown}**"

    @staticmethod
    def summary_message(rows: List[Dict[str, Any]]) -> str:
        """Deterministic summary used when the LLM is unavailable."""
        count = len(rows)
        message = f"Voici les {count} resultat{'s' if count > 1 else ''} trouves:\n\n"

        for index, row in enumerate(rows[:SUMMARY_ROW_COUNT], start=1):
            values = ", ".join(
                f"{column}: {format_value(column, value)}"
                for column, value in row.items()
                if value is not None
            )
            message += f"{index}. {values}\n"

        if count > SUMMARY_ROW_COUNT:
            message += f"\n... et {count - SUMMARY_ROW_COUNT} autres resultats."

        return message
