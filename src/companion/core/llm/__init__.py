"""Model access: provider protocol, litellm implementation, retry."""

from companion.core.llm.litellm_provider import LiteLLMProvider
from companion.core.llm.provider import (
    CompletionResult,
    LLMProvider,
    Message,
    Role,
)
from companion.core.llm.transport import (
    FailureClass,
    RetryingTransport,
    classify_failure,
)

__all__ = [
    "CompletionResult",
    "FailureClass",
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "RetryingTransport",
    "Role",
    "classify_failure",
]
