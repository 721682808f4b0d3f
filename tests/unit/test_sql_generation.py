"""Unit tests for SQLGenerationRepository and output cleanup."""

import asyncio

import pytest

from conftest import FakeLLMClient
from ultron_assistant.config import AssistantConfig
from ultron_assistant.domain.base_enums import ConversationRole
from ultron_assistant.domain.errors import LLMError, SQLGenerationError
from ultron_assistant.domain.requests import ConversationTurn
from ultron_assistant.repositories.schema_context import SchemaContextRepository
from ultron_assistant.repositories.sql_generation import SQLGenerationRepository, clean_generated_sql

GENERATED_SQL = "SELECT first_name AS prenom FROM crm_prospects WHERE organization_id = $1 LIMIT 10"


class SlowLLMClient(FakeLLMClient):
    async def generate(self, prompt, system_prompt=None, temperature=None, max_tokens=None, model=None):
        await asyncio.sleep(1)
        return GENERATED_SQL


def make_repository(llm_client, config=None):
    return SQLGenerationRepository(
        llm_client=llm_client,
        schema_context=SchemaContextRepository(),
        config=config or AssistantConfig(),
    )


@pytest.mark.parametrize("raw, expected", [
    (f"```sql\n{GENERATED_SQL}\n```", GENERATED_SQL),
    (f"```SQL\n{GENERATED_SQL}```", GENERATED_SQL),
    (f"```\n{GENERATED_SQL}\n```", GENERATED_SQL),
    (f"  {GENERATED_SQL}\n", GENERATED_SQL),
])
def test_clean_generated_sql(raw, expected):
    assert clean_generated_sql(raw) == expected


class TestGenerateSQL:
    """Test cases for the generation call."""

    @pytest.mark.asyncio
    async def test_fenced_output_cleaned(self):
        llm = FakeLLMClient([f"```sql\n{GENERATED_SQL}\n```"])
        result = await make_repository(llm).generate_sql("Montre moi les prospects")

        assert result.sql == GENERATED_SQL
        assert result.generation_time_ms >= 0

    @pytest.mark.asyncio
    async def test_prompt_contents(self):
        llm = FakeLLMClient([GENERATED_SQL])
        await make_repository(llm).generate_sql("Montre moi les prospects chauds")

        call = llm.calls[0]
        assert call["prompt"] == (
            'Question de l\'utilisateur: "Montre moi les prospects chauds"\n\n'
            "Genere la requete SQL PostgreSQL correspondante."
        )
        assert "## TABLES DISPONIBLES" in call["system_prompt"]
        assert "## INSTRUCTIONS CRITIQUES" in call["system_prompt"]
        assert call["max_tokens"] == AssistantConfig().generation_max_tokens

    @pytest.mark.asyncio
    async def test_only_recent_history_used(self):
        history = [
            ConversationTurn(
                role=ConversationRole.USER if index % 2 else ConversationRole.ASSISTANT,
                content=f"tour {index}",
            )
            for index in range(1, 7)
        ]
        llm = FakeLLMClient([GENERATED_SQL])
        await make_repository(llm, AssistantConfig(history_turns=4)).generate_sql("Et les froids ?", history)

        prompt = llm.calls[0]["prompt"]
        assert prompt.startswith("Contexte de la conversation:\nUtilisateur: tour 3\nAssistant: tour 4\n")
        assert "tour 2" not in prompt
        assert "tour 6" in prompt
        assert prompt.endswith('Question de l\'utilisateur: "Et les froids ?"\n\nGenere la requete SQL PostgreSQL correspondante.')

    @pytest.mark.asyncio
    async def test_history_disabled(self):
        history = [ConversationTurn(role=ConversationRole.USER, content="tour 1")]
        llm = FakeLLMClient([GENERATED_SQL])
        await make_repository(llm, AssistantConfig(history_turns=0)).generate_sql("Et les froids ?", history)

        assert "Contexte" not in llm.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_lowercase_select_accepted(self):
        llm = FakeLLMClient(["select * from crm_prospects"])
        result = await make_repository(llm).generate_sql("prospects")
        assert result.sql == "select * from crm_prospects"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", [
        "Je ne peux pas repondre a cette question.",
        "WITH chauds AS (SELECT * FROM crm_prospects) SELECT * FROM chauds",
        "DELETE FROM crm_prospects",
    ])
    async def test_non_select_output_rejected(self, output):
        llm = FakeLLMClient([output])

        with pytest.raises(SQLGenerationError) as exc_info:
            await make_repository(llm).generate_sql("prospects")

        assert exc_info.value.user_message.startswith("Je n'ai pas compris votre question.")
        assert exc_info.value.query is None

    @pytest.mark.asyncio
    async def test_llm_error(self):
        llm = FakeLLMClient([LLMError("OpenRouter unreachable")])

        with pytest.raises(SQLGenerationError):
            await make_repository(llm).generate_sql("prospects")

        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(SQLGenerationError):
            await make_repository(SlowLLMClient()).generate_sql("prospects", timeout=0.01)
