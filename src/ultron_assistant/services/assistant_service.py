"""
Assistant Service - Main orchestrator for the CRM natural-language assistant.

This service is a THIN ORCHESTRATOR that coordinates repositories:
1. IntentClassifier - Greeting / small-talk short-circuit
2. SQLGenerationRepository - LLM-based SQL generation
3. QueryRewriter - Tenant filter and LIMIT injection
4. QueryValidator - Read-only policy evaluation
5. SQLExecutionRepository - Direct execution with structured fallback
6. ResponseFormattingRepository - French answer and dataType

Key principles:
- Service layer only orchestrates, no business logic
- Linear pipeline: every request ends in exactly one terminal response
- Stage failures become 200 responses with an error code; only a missing
  message (400) and unexpected exceptions (500) leave through exceptions
- No retries: a second generation could silently change the question's meaning
"""

from datetime import datetime, timezone

from ultron_assistant.config import AssistantConfig
from ultron_assistant.domain.base_enums import PipelineStepName
from ultron_assistant.domain.errors import AssistantError, InvalidRequestError, QueryValidationError
from ultron_assistant.domain.pipeline import PipelineState
from ultron_assistant.domain.requests import AssistantRequest
from ultron_assistant.domain.responses import AssistantResponse
from ultron_assistant.domain.tenant import TenantContext
from ultron_assistant.repositories.intent_classifier import IntentClassifier
from ultron_assistant.repositories.response_formatting import ResponseFormattingRepository
from ultron_assistant.repositories.sql_execution import SQLExecutionRepository
from ultron_assistant.repositories.sql_generation import SQLGenerationRepository
from ultron_assistant.repositories.sql_validation import QueryRewriter, QueryValidator
from ultron_assistant.utils.logging import get_module_logger
from ultron_assistant.utils.tracing import RequestBudget, current_trace_id

logger = get_module_logger()


class AssistantService:
    """
    Main orchestrator for the assistant pipeline.

    received -> classified -> [non-query: responded]
             -> generated -> rewritten -> validated -> [invalid: responded with reason]
             -> executed -> [error: responded with generic message]
             -> formatted -> responded
    """

    def __init__(
        self,
        intent_classifier: IntentClassifier,
        sql_generation_repository: SQLGenerationRepository,
        query_rewriter: QueryRewriter,
        query_validator: QueryValidator,
        sql_execution_repository: SQLExecutionRepository,
        response_formatting_repository: ResponseFormattingRepository,
        config: AssistantConfig,
    ):
        self.classifier = intent_classifier
        self.generation_repo = sql_generation_repository
        self.rewriter = query_rewriter
        self.validator = query_validator
        self.execution_repo = sql_execution_repository
        self.formatting_repo = response_formatting_repository
        self.config = config

    async def answer(self, request: AssistantRequest, tenant: TenantContext) -> AssistantResponse:
        """
        Run the full pipeline for one question.

        Args:
            request: Parsed request body
            tenant: Resolved user and organization

        Returns:
            AssistantResponse (success, canned answer, or stage error with HTTP 200)

        Raises:
            InvalidRequestError: If the message is missing, blank or too long
        """
        trace_id = current_trace_id()
        start_time = datetime.now(timezone.utc)

        message = request.cleaned_message()
        if not message:
            raise InvalidRequestError("Message is missing or blank")
        if len(message) > self.config.max_message_chars:
            raise InvalidRequestError(
                f"Message too long: {len(message)} chars",
                user_message=(
                    f"Votre question est trop longue (maximum {self.config.max_message_chars} caracteres). "
                    "Pouvez-vous la raccourcir ?"
                ),
            )

        logger.info(
            "Starting assistant pipeline",
            message_length=len(message),
            history_turns=len(request.conversation_history),
            organization_id=tenant.organization_id,
            trace_id=trace_id,
        )

        state = PipelineState(
            message=message,
            history=request.conversation_history,
            tenant=tenant,
            budget=RequestBudget(self.config.request_timeout_seconds),
        )

        # Step 1: Classification
        state.error_step = PipelineStepName.CLASSIFICATION
        if self.classifier.is_non_query(message):
            state.is_non_query = True
            logger.info("Non-query message answered with canned response", trace_id=trace_id)
            return AssistantResponse(response=self.classifier.canned_response(message))

        try:
            # Step 2-4: Generation, rewriting, validation
            await self._step_generation(state)
            self._step_rewrite_and_validate(state)

            # Step 5: Execution
            await self._step_execution(state)

            # Step 6: Formatting
            await self._step_formatting(state)

        except AssistantError as e:
            return self._error_response(state, e, start_time)

        logger.info(
            "Assistant pipeline completed",
            data_type=state.data_type.value if state.data_type else None,
            row_count=state.execution_result.row_count if state.execution_result else 0,
            execution_path=state.execution_result.execution_path.value if state.execution_result else None,
            total_time_ms=round((datetime.now(timezone.utc) - start_time).total_seconds() * 1000, 2),
            trace_id=trace_id,
        )

        return AssistantResponse(
            response=state.response_text,
            query=state.rewritten_sql,
            data=state.execution_result.rows,
            data_type=state.data_type,
        )

    # =========================================================================
    # Pipeline Steps (thin - delegate to repositories)
    # =========================================================================

    async def _step_generation(self, state: PipelineState) -> None:
        state.error_step = PipelineStepName.SQL_GENERATION

        result = await self.generation_repo.generate_sql(
            message=state.message,
            history=state.history,
            timeout=state.budget.remaining(),
        )
        state.generated_sql = result.sql

    def _step_rewrite_and_validate(self, state: PipelineState) -> None:
        state.error_step = PipelineStepName.SQL_REWRITE
        state.rewritten_sql = self.rewriter.rewrite(state.generated_sql)

        state.error_step = PipelineStepName.SQL_VALIDATION
        state.validation = self.validator.validate(state.rewritten_sql)

        if not state.validation.valid:
            raise QueryValidationError(
                state.validation.reason,
                details={"failed_rule": state.validation.steps[-1].rule.value},
            )

    async def _step_execution(self, state: PipelineState) -> None:
        state.error_step = PipelineStepName.SQL_EXECUTION

        state.execution_result = await self.execution_repo.execute(
            sql=state.rewritten_sql,
            organization_id=state.tenant.organization_id,
            budget=state.budget,
        )

    async def _step_formatting(self, state: PipelineState) -> None:
        state.error_step = PipelineStepName.RESPONSE_FORMATTING

        rows = state.execution_result.rows
        state.data_type = self.formatting_repo.classify(rows)
        state.response_text = await self.formatting_repo.format(
            question=state.message,
            rows=rows,
            sql=state.rewritten_sql,
            timeout=state.budget.remaining(),
        )

    # =========================================================================
    # Response Building
    # =========================================================================

    @staticmethod
    def _error_response(state: PipelineState, error: AssistantError, start_time: datetime) -> AssistantResponse:
        """Terminal response for a failed stage. The internal message is logged, never returned."""
        logger.warning(
            "Assistant pipeline stopped",
            error_step=state.error_step.value if state.error_step else None,
            error_code=error.error_code,
            error=error.message,
            total_time_ms=round((datetime.now(timezone.utc) - start_time).total_seconds() * 1000, 2),
            trace_id=current_trace_id(),
        )

        return AssistantResponse(
            response=error.user_message,
            query=error.query,
            error=error.assistant_error_code,
        )
