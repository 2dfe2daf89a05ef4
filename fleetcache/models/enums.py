from enum import StrEnum


class ErrorType(StrEnum):
    NETWORK = "network"
    API = "api"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    AUTH = "auth"
    PERMISSION = "permission"
    RUNTIME = "runtime"
    UNKNOWN = "unknown"


class ErrorSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryStrategy(StrEnum):
    RETRY = "retry"
    MANUAL_RETRY = "manual_retry"
    FALLBACK = "fallback"
    REDIRECT = "redirect"
    REFRESH = "refresh"
    LOGOUT = "logout"
    CONTACT_SUPPORT = "contact_support"
    IGNORE = "ignore"
