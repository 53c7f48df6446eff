"""Type definitions for basketllm."""

from .messages import Message, MessageRole, ContentPart, ContentType
from .requests import ChatOptions, ResponseFormat
from .responses import ChatResult, FinishReason, LLMResponse, TokenUsage
from .common import ErrorDetail, SubscriptionTier, TaskType

__all__ = [
    # Messages
    "Message",
    "MessageRole",
    "ContentPart",
    "ContentType",
    # Requests
    "ChatOptions",
    "ResponseFormat",
    # Responses
    "ChatResult",
    "FinishReason",
    "LLMResponse",
    "TokenUsage",
    # Common
    "ErrorDetail",
    "SubscriptionTier",
    "TaskType",
]
