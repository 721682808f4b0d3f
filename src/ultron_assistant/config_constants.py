from enum import Enum


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"

class OPENROUTER_LLM_MODELS(str, Enum):
    # OpenAI models
    GPT_4O = "openai/gpt-4o"
    GPT_4O_MINI = "openai/gpt-4o-mini"

    # Anthropic Claude models
    ANTHROPIC_SONNET_4 = "anthropic/claude-sonnet-4"
    ANTHROPIC_SONNET_45 = "anthropic/claude-4.5-sonnet"
    ANTHROPIC_HAIKU_45 = "anthropic/claude-haiku-4.5"

class TableAllowlistMode(str, Enum):
    ENFORCE = "enforce"
    WARN = "warn"

OPEN_ROUTER_API_URL = "https://openrouter.ai/api/v1"

# -------------------------
# Supabase Constants
# -------------------------

SUPABASE_AUTH_PATH = "/auth/v1"
SUPABASE_REST_PATH = "/rest/v1"

# Cookie set by the Supabase JS client when the session is persisted in cookies
SUPABASE_ACCESS_TOKEN_COOKIE = "sb-access-token"

# -------------------------
# API Constants
# -------------------------

ASSISTANT_ROUTE = "/assistant"
