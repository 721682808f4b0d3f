"""
Unit tests for AssistantService.

The real repositories are wired together; only the LLM, the database
and Supabase are replaced by fakes.
"""

import pytest

from conftest import ORGANIZATION_ID, FakeDatabaseClient, FakeLLMClient, FakeSupabaseClient
from ultron_assistant.config import AssistantConfig
from ultron_assistant.domain.base_enums import AssistantErrorCode, DataType
from ultron_assistant.domain.errors import DatabaseQueryError, DataSourceUnavailableError, InvalidRequestError
from ultron_assistant.domain.requests import AssistantRequest
from ultron_assistant.repositories.intent_classifier import IntentClassifier
from ultron_assistant.repositories.query_intent import QueryIntentParser
from ultron_assistant.repositories.response_formatting import ResponseFormattingRepository
from ultron_assistant.repositories.schema_context import SchemaContextRepository
from ultron_assistant.repositories.sql_execution import SQLExecutionRepository
from ultron_assistant.repositories.sql_generation import SQLGenerationRepository
from ultron_assistant.repositories.sql_validation import QueryRewriter, QueryValidator, default_policy
from ultron_assistant.services.assistant_service import AssistantService

CHAUD_SQL = "SELECT first_name AS prenom, last_name AS nom FROM crm_prospects WHERE qualification = 'chaud'"
CHAUD_REWRITTEN = (
    "SELECT first_name AS prenom, last_name AS nom FROM crm_prospects "
    "WHERE organization_id = $1 AND (qualification = 'chaud') LIMIT 50"
)


def build_service(llm, db, supabase, config=None):
    config = config or AssistantConfig()
    schema_context = SchemaContextRepository()
    allowed_tables = schema_context.get_allowed_tables()

    return AssistantService(
        intent_classifier=IntentClassifier(non_query_max_length=config.non_query_max_length),
        sql_generation_repository=SQLGenerationRepository(llm, schema_context, config),
        query_rewriter=QueryRewriter(
            tenant_column=config.tenant_column,
            tenant_placeholder=config.tenant_placeholder,
            default_limit=config.default_limit,
        ),
        query_validator=QueryValidator(default_policy(allowed_tables, config)),
        sql_execution_repository=SQLExecutionRepository(
            db_client=db,
            supabase_client=supabase,
            intent_parser=QueryIntentParser(default_limit=config.default_limit),
            allowed_tables=allowed_tables,
            config=config,
        ),
        response_formatting_repository=ResponseFormattingRepository(llm, config),
        config=config,
    )


def ask(message, history=None):
    return AssistantRequest.model_validate({"message": message, "conversationHistory": history or []})


class TestRequestChecks:
    """Messages rejected before the pipeline starts."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [None, "", "   \n"])
    async def test_blank_message(self, tenant, message):
        service = build_service(FakeLLMClient(), FakeDatabaseClient(), FakeSupabaseClient())

        with pytest.raises(InvalidRequestError) as exc_info:
            await service.answer(ask(message), tenant)

        assert exc_info.value.http_status == 400
        assert exc_info.value.user_message == "Veuillez poser une question."

    @pytest.mark.asyncio
    async def test_message_too_long(self, tenant):
        llm = FakeLLMClient()
        service = build_service(llm, FakeDatabaseClient(), FakeSupabaseClient())

        with pytest.raises(InvalidRequestError) as exc_info:
            await service.answer(ask("a" * 2001), tenant)

        assert "trop longue (maximum 2000" in exc_info.value.user_message
        assert llm.calls == []


class TestPipeline:
    """Test cases for the terminal responses of the pipeline."""

    @pytest.mark.asyncio
    async def test_greeting_short_circuits(self, tenant):
        llm = FakeLLMClient()
        db = FakeDatabaseClient()
        service = build_service(llm, db, FakeSupabaseClient())

        response = await service.answer(ask("Bonjour"), tenant)

        assert response.response.startswith("Bonjour ! Je suis l'assistant Ultron.")
        assert response.query is None
        assert response.error is None
        assert llm.calls == []
        assert db.calls == []

    @pytest.mark.asyncio
    async def test_success(self, tenant):
        rows = [{"prenom": "Jean", "nom": "Dupont"}, {"prenom": "Marie", "nom": "Curie"}]
        llm = FakeLLMClient([CHAUD_SQL, "Voici vos 2 prospects chauds."])
        db = FakeDatabaseClient(rows=rows)
        service = build_service(llm, db, FakeSupabaseClient())

        response = await service.answer(ask("Montre moi les prospects chauds"), tenant)

        assert response.response == "Voici vos 2 prospects chauds."
        assert response.query == CHAUD_REWRITTEN
        assert response.data == rows
        assert response.data_type == DataType.LIST
        assert response.error is None
        assert db.calls[0]["query"] == CHAUD_REWRITTEN
        assert db.calls[0]["params"] == [ORGANIZATION_ID]

    @pytest.mark.asyncio
    async def test_count_answered_from_template(self, tenant):
        llm = FakeLLMClient(["SELECT COUNT(*) AS total_rdv FROM crm_events WHERE event_type = 'rdv'"])
        db = FakeDatabaseClient(rows=[{"total_rdv": 3}])
        service = build_service(llm, db, FakeSupabaseClient())

        response = await service.answer(ask("Combien de RDV cette semaine?"), tenant)

        assert response.response.startswith("Vous avez **3 RDV** cette semaine.")
        assert response.data_type == DataType.COUNT
        assert response.query == (
            "SELECT COUNT(*) AS total_rdv FROM crm_events "
            "WHERE organization_id = $1 AND (event_type = 'rdv') LIMIT 50"
        )
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_result(self, tenant):
        llm = FakeLLMClient([CHAUD_SQL])
        service = build_service(llm, FakeDatabaseClient(rows=[]), FakeSupabaseClient())

        response = await service.answer(ask("Montre moi les prospects chauds"), tenant)

        assert response.data == []
        assert response.data_type == DataType.EMPTY
        assert response.response.startswith("Je n'ai trouve aucun resultat")

    @pytest.mark.asyncio
    async def test_fallback_execution(self, tenant):
        llm = FakeLLMClient([CHAUD_SQL, "Voici Jean."])
        db = FakeDatabaseClient(error=DataSourceUnavailableError("connection refused"))
        supabase = FakeSupabaseClient(tables={"crm_prospects": [{"first_name": "Jean", "last_name": "Dupont"}]})
        service = build_service(llm, db, supabase)

        response = await service.answer(ask("Montre moi les prospects chauds"), tenant)

        assert response.error is None
        assert response.data == [{"first_name": "Jean", "last_name": "Dupont"}]
        assert response.data_type == DataType.RECORD
        assert supabase.calls[0]["filters"] == {
            "organization_id": f"eq.{ORGANIZATION_ID}",
            "qualification": "eq.chaud",
        }
        assert supabase.calls[0]["columns"] == "prenom:first_name,nom:last_name"

    @pytest.mark.asyncio
    async def test_generation_error(self, tenant):
        llm = FakeLLMClient(["Je ne sais pas."])
        db = FakeDatabaseClient()
        service = build_service(llm, db, FakeSupabaseClient())

        response = await service.answer(ask("Quelle est la meteo ?"), tenant)

        assert response.error == AssistantErrorCode.SQL_GENERATION_ERROR
        assert response.response.startswith("Je n'ai pas compris votre question.")
        assert response.query is None
        assert db.calls == []

    @pytest.mark.asyncio
    async def test_validation_error(self, tenant):
        llm = FakeLLMClient(["SELECT * FROM secrets"])
        db = FakeDatabaseClient()
        service = build_service(llm, db, FakeSupabaseClient())

        response = await service.answer(ask("Montre moi les secrets"), tenant)

        assert response.error == AssistantErrorCode.VALIDATION_ERROR
        assert response.response == "Je ne peux pas executer cette requete: Table non autorisee: secrets"
        assert response.query is None
        assert response.data is None
        assert db.calls == []

    @pytest.mark.asyncio
    async def test_execution_error(self, tenant):
        llm = FakeLLMClient([CHAUD_SQL])
        db = FakeDatabaseClient(error=DatabaseQueryError('column "qualification" does not exist'))
        service = build_service(llm, db, FakeSupabaseClient())

        response = await service.answer(ask("Montre moi les prospects chauds"), tenant)

        assert response.error == AssistantErrorCode.EXECUTION_ERROR
        assert response.query == CHAUD_REWRITTEN
        assert "does not exist" not in response.response
