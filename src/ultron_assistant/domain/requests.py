"""
API request models for the Ultron CRM assistant.

These models define the structure of incoming API requests. The assistant
endpoint is called by the CRM front-end, which sends camelCase JSON.

All fields include descriptions that appear in Swagger/OpenAPI documentation.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, List, Optional

from .base_enums import ConversationRole


class ConversationTurn(BaseModel):
    """One previous message of the conversation."""

    model_config = ConfigDict(frozen=True)

    role: ConversationRole = Field(
        ...,
        description="Author of the message: 'user' or 'assistant'."
    )
    content: str = Field(
        ...,
        description="Message text as it was shown in the chat."
    )


class AssistantRequest(BaseModel):
    """
    Request model for the natural-language assistant endpoint.

    The message is deliberately lenient at the schema level: a missing,
    non-string or blank message is reported by the endpoint as
    INVALID_REQUEST (HTTP 400) with a French message, not as a 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(
        default=None,
        description="Question asked by the advisor, in French. "
                    "Examples: 'Montre moi les prospects chauds', "
                    "'Combien de RDV cette semaine?', "
                    "'Prospects sans conseiller assigne'",
        json_schema_extra={"example": "Montre moi les prospects chauds"}
    )
    conversation_history: List[ConversationTurn] = Field(
        default_factory=list,
        alias="conversationHistory",
        description="Previous turns of the conversation, oldest first. "
                    "Only the most recent turns are used as context for query generation."
    )

    @field_validator("message", mode="before")
    @classmethod
    def _non_string_message_is_missing(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    @field_validator("conversation_history", mode="before")
    @classmethod
    def _drop_malformed_turns(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        roles = {role.value for role in ConversationRole}
        return [
            turn for turn in value
            if isinstance(turn, dict)
            and turn.get("role") in roles
            and isinstance(turn.get("content"), str)
        ]

    def cleaned_message(self) -> str:
        """Message with surrounding whitespace removed ("" when missing)."""
        return (self.message or "").strip()
