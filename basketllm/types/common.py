"""Common type definitions shared across the package."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel


class TaskType(str, Enum):
    """Task label selecting a provider chain and an attribution bucket."""

    ASSISTANT_CHAT = "assistant_chat"
    PRODUCT_MATCHING = "product_matching"
    RECEIPT_OCR = "receipt_ocr"
    PRICE_ANALYSIS = "price_analysis"
    MEAL_PLANNING = "meal_planning"
    LIST_BUILDING = "list_building"
    SPENDING_ANALYSIS = "spending_analysis"
    ALERT_CONTEXT = "alert_context"
    CONTENT_GENERATION = "content_generation"
    DATA_QUALITY = "data_quality"
    TRANSLATION = "translation"
    TITLE_GENERATION = "title_generation"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid task type values."""
        return [t.value for t in cls]


class SubscriptionTier(str, Enum):
    """Subscription level defining default rate-limit thresholds."""

    FREE = "free"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class ErrorDetail(BaseModel):
    """Error detail returned to callers instead of raising."""

    message: str
    type: Optional[str] = None
    code: Optional[str] = None
    reset_at: Optional[datetime] = None
    remaining: Optional[int] = None
