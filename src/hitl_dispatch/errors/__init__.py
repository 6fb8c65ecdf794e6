"""错误体系：为重试、熔断、SLA 和 Webhook 提供结构化错误类型。

Error hierarchy for hitl-dispatch.

Distinct types let callers branch on why a dispatch failed: retries
exhausted, circuit open, or deadline missed.
"""

from hitl_dispatch.errors.base import (
    CircuitOpenError,
    DispatchError,
    ErrorContext,
    RetryError,
    SLAError,
    SLAViolationError,
    ValidationError,
    WebhookError,
)
from hitl_dispatch.errors.classification import (
    DEFAULT_RETRYABLE_ERRORS,
    HUMAN_RETRYABLE_ERRORS,
    HumanErrorCode,
    is_retryable_status,
    matches_retryable,
)

__all__ = [
    "DEFAULT_RETRYABLE_ERRORS",
    "HUMAN_RETRYABLE_ERRORS",
    "CircuitOpenError",
    "DispatchError",
    "ErrorContext",
    "HumanErrorCode",
    "RetryError",
    "SLAError",
    "SLAViolationError",
    "ValidationError",
    "WebhookError",
    "is_retryable_status",
    "matches_retryable",
]
