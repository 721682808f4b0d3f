"""
SQL Generation Repository.

Handles LLM-based SQL generation:
- Prompt building with the CRM schema context and recent conversation
- One LLM call (no retry: a second sample is not more likely to be right)
- Output cleanup (markdown fences) and shape check (must start with SELECT)
"""

import asyncio
import re
import time
from typing import List, Optional

from ultron_assistant.config import AssistantConfig
from ultron_assistant.domain.base_enums import ConversationRole
from ultron_assistant.domain.errors import LLMError, SQLGenerationError
from ultron_assistant.domain.requests import ConversationTurn
from ultron_assistant.domain.responses import QueryGenerationResult
from ultron_assistant.infrastructure.llm_client import LLMClient
from ultron_assistant.repositories.schema_context import SchemaContextRepository
from ultron_assistant.utils.logging import get_module_logger
from ultron_assistant.utils.token_utils import truncate_text
from ultron_assistant.utils.tracing import current_trace_id

logger = get_module_logger()

_LEADING_FENCE = re.compile(r'^```(?:sql)?', re.IGNORECASE)


def clean_generated_sql(text: str) -> str:
    """
    Strip a markdown fence around the model output.

    "```sql\\nSELECT 1\\n```" -> "SELECT 1"
    """
    sql = text.strip()
    sql = _LEADING_FENCE.sub("", sql, count=1)
    if sql.endswith("```"):
        sql = sql[:-3]
    return sql.strip()


class SQLGenerationRepository:
    """
    Repository for LLM-based SQL generation.

    Handles prompt construction and LLM interaction.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        schema_context: SchemaContextRepository,
        config: AssistantConfig,
    ):
        self.llm_client = llm_client
        self.config = config
        self.system_prompt = self._build_system_prompt(schema_context.get_schema_context())

    async def generate_sql(
        self,
        message: str,
        history: Optional[List[ConversationTurn]] = None,
        timeout: Optional[float] = None,
    ) -> QueryGenerationResult:
        """
        Generate a candidate SELECT statement for the user's question.

        Args:
            message: Trimmed user question
            history: Previous turns, oldest first; only the most recent are used
            timeout: Seconds allowed for the LLM call

        Returns:
            QueryGenerationResult with the cleaned SQL

        Raises:
            SQLGenerationError: LLM failure, timeout, or output not starting with SELECT
        """
        trace_id = current_trace_id()
        prompt = self._build_prompt(message, history or [])

        logger.debug(
            "Calling LLM for SQL generation",
            prompt_length=len(prompt),
            history_turns=min(len(history or []), self.config.history_turns),
            trace_id=trace_id,
        )

        started = time.perf_counter()
        try:
            raw = await asyncio.wait_for(
                self.llm_client.generate(
                    prompt=prompt,
                    system_prompt=self.system_prompt,
                    max_tokens=self.config.generation_max_tokens,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("SQL generation timed out", timeout=timeout, trace_id=trace_id)
            raise SQLGenerationError(f"SQL generation timed out after {timeout}s") from e
        except LLMError as e:
            logger.error("SQL generation failed", error=e.message, trace_id=trace_id)
            raise SQLGenerationError(f"SQL generation failed: {e.message}") from e

        generation_time_ms = (time.perf_counter() - started) * 1000
        sql = clean_generated_sql(raw)

        if not sql.upper().startswith("SELECT"):
            logger.warning(
                "Generated text is not a SELECT statement",
                output_preview=truncate_text(sql, 200),
                trace_id=trace_id,
            )
            raise SQLGenerationError("Generated query does not start with SELECT")

        logger.info(
            "SQL generated",
            sql_preview=truncate_text(sql, 200),
            generation_time_ms=round(generation_time_ms, 2),
            trace_id=trace_id,
        )

        return QueryGenerationResult(sql=sql, generation_time_ms=generation_time_ms)

    def _build_prompt(self, message: str, history: List[ConversationTurn]) -> str:
        """Build the user prompt: optional conversation context, then the question."""
        prompt = ""

        recent = history[-self.config.history_turns:] if self.config.history_turns > 0 else []
        if recent:
            context = "\n".join(
                f"{'Utilisateur' if turn.role == ConversationRole.USER else 'Assistant'}: {turn.content}"
                for turn in recent
            )
            prompt += f"Contexte de la conversation:\n{context}\n\n"

        prompt += f"""Question de l'utilisateur: "{message}"

Genere la requete SQL PostgreSQL correspondante."""

        return prompt

    @staticmethod
    def _build_system_prompt(schema_context: str) -> str:
        return f"""Tu es un expert SQL PostgreSQL specialise dans les bases de donnees CRM pour la gestion de patrimoine.

Ta mission: Convertir les questions en langage naturel en requetes SQL SELECT valides.

{schema_context}

## INSTRUCTIONS CRITIQUES

1. Reponds UNIQUEMENT avec la requete SQL, sans explication, sans markdown, sans commentaire
2. N'utilise JAMAIS de bloc de code markdown (```)
3. La requete doit etre prete a etre executee directement
4. Si la question n'est pas claire ou ne correspond pas aux donnees disponibles, genere une requete qui retourne un resultat vide plutot que de refuser

## FORMAT DE REPONSE
Retourne directement le SQL, par exemple:
SELECT first_name AS prenom, last_name AS nom FROM crm_prospects WHERE organization_id = $1 LIMIT 10"""
