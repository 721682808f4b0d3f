"""
Input size utilities for LLM calls and log output.

Uses plain character counts rather than tokenizer counts: the limits are
coarse guards against runaway prompts, not exact token budgets.
"""

from typing import Any, Optional


def truncate_text(value: Any, max_length: int) -> Any:
    """
    Truncate a string for logging, keeping the beginning.

    Non-string values are returned unchanged.

    Example:
        >>> truncate_text("SELECT " + "x" * 300, max_length=20)
        'SELECT xxxxxxxxxx...'
    """
    if not isinstance(value, str):
        return value

    if len(value) <= max_length:
        return value

    if max_length <= 3:
        return value[:max_length]

    return value[:max_length - 3] + "..."


class InputValidator:
    """
    Input validation utility for checking character limits.
    """

    @staticmethod
    def validate_char_limit(
        text: str,
        max_chars: int,
        error_message: Optional[str] = None
    ) -> None:
        """
        Validate that text does not exceed maximum character limit.

        Raises:
            ValueError: If text exceeds character limit
        """
        char_count = len(text)

        if char_count > max_chars:
            raise ValueError(
                error_message
                or f"Input too large: {char_count} characters, maximum allowed: {max_chars}"
            )

    @staticmethod
    def validate_total_chars(
        prompt: str,
        system_prompt: Optional[str] = None,
        max_chars: int = 0
    ) -> None:
        """
        Validate total character count for an LLM request.

        Raises:
            ValueError: If prompt plus system prompt exceeds max_chars
        """
        total_chars = len(prompt)
        if system_prompt:
            total_chars += len(system_prompt)

        if total_chars > max_chars:
            raise ValueError(
                f"Total input too large: {total_chars} characters, "
                f"maximum allowed: {max_chars}"
            )
