"""
Infrastructure layer for external integrations.

This module contains clients for the CRM database (asyncpg), Supabase
(Auth + PostgREST over httpx) and the LLM provider (OpenRouter).
"""

from .database_client import DatabaseClient
from .llm_client import LLMClient
from .supabase_client import SupabaseClient

__all__ = ["DatabaseClient", "LLMClient", "SupabaseClient"]
