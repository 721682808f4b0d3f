from enum import Enum


class AssistantErrorCode(str, Enum):
    """Values of the "error" field of an assistant response."""
    AUTH_ERROR = "AUTH_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    SQL_GENERATION_ERROR = "SQL_GENERATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class DataType(str, Enum):
    """Result-shape classification used by the UI to pick a renderer."""
    EMPTY = "empty"
    COUNT = "count"
    RECORD = "record"
    TABLE = "table"
    LIST = "list"


class ConversationRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ExecutionPath(str, Enum):
    DIRECT = "direct"
    FALLBACK = "fallback"


class PipelineStepName(str, Enum):
    """Pipeline step names for the assistant request pipeline."""
    CLASSIFICATION = "classification"
    SQL_GENERATION = "sql_generation"
    SQL_REWRITE = "sql_rewrite"
    SQL_VALIDATION = "sql_validation"
    SQL_EXECUTION = "sql_execution"
    RESPONSE_FORMATTING = "response_formatting"


class PolicyRuleKind(str, Enum):
    """Kinds of read-only policy rules, evaluated in list order."""
    REQUIRE_PREFIX = "require_prefix"
    DENY_STATEMENT_CHAINING = "deny_statement_chaining"
    DENY_SET_OPERATIONS = "deny_set_operations"
    DENY_KEYWORDS = "deny_keywords"
    REQUIRE_TENANT_FILTER = "require_tenant_filter"
    ALLOWED_TABLES = "allowed_tables"
    MAX_LIMIT = "max_limit"
    DENY_PATTERNS = "deny_patterns"


class FilterOperator(str, Enum):
    """Predicates the structured fallback can express."""
    EQ = "eq"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"
