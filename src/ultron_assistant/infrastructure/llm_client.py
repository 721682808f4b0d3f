"""
LLM client for OpenRouter using LangChain.

This module provides an async LLM client that uses LangChain's ChatOpenAI
with OpenRouter API. The assistant uses it twice per request at most: once
to generate SQL and once to phrase the answer.
"""

from typing import Any, Dict, List, Optional
from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage, BaseMessage
from pydantic import SecretStr

from ..config import LLMConfig
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..utils.token_utils import InputValidator
from ..domain.errors import LLMError


logger = get_module_logger()


class LLMClient:
    """
    LLM client using LangChain's ChatOpenAI with OpenRouter.

    This is a thin infrastructure layer. Prompts are built in the
    repository layer.

    Usage:
        client = LLMClient(config)
        await client.connect()

        response = await client.generate(
            'Question de l\'utilisateur: "Combien de prospects chauds ?"',
            system_prompt="Tu es un expert SQL PostgreSQL...",
            max_tokens=1024,
        )

        await client.close()
    """

    def __init__(self, config: LLMConfig):
        self.config = config
        self._llm: Optional[ChatOpenAI] = None
        self._is_connected = False

        logger.info(
            "LLMClient initialized",
            default_model=config.default_model,
            base_url=config.base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens
        )

    async def connect(self) -> None:
        """
        Initialize LangChain ChatOpenAI client.

        Creates the client configuration only; no API call is made.

        Raises:
            LLMError: If initialization fails
        """
        if self._is_connected:
            logger.warning("LLM client already connected")
            return

        trace_id = current_trace_id()
        logger.info("Initializing LLM client", trace_id=trace_id)

        try:
            # max_completion_tokens replaces the deprecated max_tokens parameter
            self._llm = ChatOpenAI(
                model=self.config.default_model,
                api_key=SecretStr(self.config.openrouter_api_key),
                base_url=self.config.base_url,
                temperature=self.config.temperature,
                max_completion_tokens=self.config.max_tokens,
                top_p=self.config.top_p,
                timeout=self.config.timeout_seconds,
                max_retries=self.config.max_retries
            )

            self._is_connected = True
            logger.info("LLM client initialized successfully", trace_id=trace_id)

        except Exception as e:
            error_msg = f"Failed to initialize LLM client: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise LLMError(error_msg) from e

    async def close(self) -> None:
        """Close LLM client and release resources."""
        trace_id = current_trace_id()
        logger.info("Closing LLM client", trace_id=trace_id)

        # ChatOpenAI holds no resources that need explicit cleanup
        self._is_connected = False
        self._llm = None

        logger.info("LLM client closed", trace_id=trace_id)

    def is_connected(self) -> bool:
        """Check if LLM client is connected."""
        return self._is_connected and self._llm is not None

    def health_check(self) -> Dict[str, Any]:
        """Report client readiness without spending tokens."""
        if not self.is_connected():
            return {"status": "unhealthy", "connected": False, "error": "LLM client not connected"}
        return {"status": "healthy", "connected": True, "model": self.config.default_model}

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None
    ) -> str:
        """
        Generate text response from LLM.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            temperature: Optional temperature override (0.0-1.0)
            max_tokens: Optional max tokens override
            model: Optional model override

        Returns:
            Generated text response

        Raises:
            LLMError: If generation fails, returns nothing, or input is too large
        """
        if not self.is_connected() or self._llm is None:
            raise LLMError("LLM client is not connected")

        try:
            InputValidator.validate_total_chars(
                prompt=prompt,
                system_prompt=system_prompt,
                max_chars=self.config.max_input_chars
            )
        except ValueError as e:
            raise LLMError(str(e)) from e

        trace_id = current_trace_id()

        logger.info(
            "Generating LLM response",
            prompt_length=len(prompt),
            system_prompt_length=len(system_prompt) if system_prompt else 0,
            max_tokens=max_tokens or self.config.max_tokens,
            temperature=temperature if temperature is not None else self.config.temperature,
            trace_id=trace_id
        )

        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        llm = self._llm

        # bind() returns a runnable with per-call overrides, the shared client is untouched
        bind_kwargs: Dict[str, Any] = {}
        if model is not None:
            bind_kwargs["model"] = model
        if temperature is not None:
            bind_kwargs["temperature"] = temperature
        if max_tokens is not None:
            bind_kwargs["max_completion_tokens"] = max_tokens

        try:
            runnable = llm.bind(**bind_kwargs) if bind_kwargs else llm
            response = await runnable.ainvoke(messages)

        except Exception as e:
            error_msg = f"LLM generation failed: {e}"
            logger.error(
                error_msg,
                error_type=type(e).__name__,
                prompt_length=len(prompt),
                trace_id=trace_id
            )
            raise LLMError(error_msg) from e

        content = str(response.content) if response is not None and response.content else ""
        if not content.strip():
            logger.error("LLM returned empty response", trace_id=trace_id)
            raise LLMError("LLM returned empty response")

        logger.info(
            "LLM response generated successfully",
            response_length=len(content),
            trace_id=trace_id
        )

        return content
