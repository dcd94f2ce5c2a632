from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

GENERAL_MEDICINE = "General Medicine"
SPECIALTY_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-_.,'()]{1,100}$")


class BaseSchema(BaseModel):
    """Base schema with attribute extraction enabled."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class RecordSchema(BaseModel):
    """Persisted records use camelCase keys on the wire."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, alias_generator=to_camel)


class Rarity(str, Enum):
    VERY_COMMON = "Very Common"
    COMMON = "Common"
    UNCOMMON = "Uncommon"
    RARE = "Rare"
    VERY_RARE = "Very Rare"


class RaritySelection(str, Enum):
    ANY = "Any"
    VERY_COMMON = "Very Common"
    COMMON = "Common"
    UNCOMMON = "Uncommon"
    RARE = "Rare"
    VERY_RARE = "Very Rare"


class Tier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class OperationClass(str, Enum):
    GENERATION = "generation"
    CHAT_REPLY = "chat_reply"
    CASE_FEEDBACK = "case_feedback"
    INVESTIGATION_REPORT = "investigation_report"
    PAYMENT_ORDER = "payment_order"
    GUIDANCE = "guidance"


class SystemHealth(BaseSchema):
    status: str
    components: Dict[str, str] = Field(default_factory=dict)


class DiseaseEntry(BaseSchema):
    name: str = Field(..., min_length=1)
    rarity: Rarity


class Selection(BaseSchema):
    domain: str
    disease_name: str
    disease_rarity: Rarity


class Decision(BaseSchema):
    """Outcome of an admission check."""

    allowed: bool
    remaining: int
    reset_time: datetime


class Subscription(RecordSchema):
    tier: Tier = Tier.FREE
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    total_used: int = 0
    ceiling: int = 2


class UsageStats(RecordSchema):
    today: int = 0
    this_week: int = 0
    last_generated_at: Optional[datetime] = None
    total_generated: int = 0
    subscription: Subscription = Field(default_factory=Subscription)


class UserRecord(RecordSchema):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    usage_stats: UsageStats = Field(default_factory=UsageStats)


class GenerateCaseRequest(BaseSchema):
    specialty: str = Field(..., max_length=100)
    rarity: RaritySelection = RaritySelection.ANY
    recent_diagnoses: List[str] = Field(default_factory=list, alias="recentDiagnoses", max_length=50)

    @field_validator("specialty")
    @classmethod
    def _check_specialty(cls, value: str) -> str:
        value = value.strip()
        if not SPECIALTY_PATTERN.match(value):
            raise ValueError("Specialty contains invalid characters")
        return value

    @field_validator("recent_diagnoses")
    @classmethod
    def _check_recent(cls, values: List[str]) -> List[str]:
        cleaned = [item.strip() for item in values if item and item.strip()]
        if any(len(item) > 200 for item in cleaned):
            raise ValueError("Recent diagnosis names are limited to 200 characters")
        return cleaned


class GeneratedCase(BaseSchema):
    case: Dict[str, Any]
    selection: Selection
    recent_diagnoses: List[str]
    quota: Decision


class ChatMessage(BaseSchema):
    sender: str = Field(..., pattern="^(user|patient)$")
    text: str = Field(..., max_length=2000)


class ChatRequest(BaseSchema):
    diagnosis: str = Field(..., max_length=500)
    patient: Dict[str, Any]
    chat_history: List[ChatMessage] = Field(default_factory=list, alias="chatHistory", max_length=50)


class FeedbackRequest(BaseSchema):
    diagnosis: str = Field(..., max_length=500)
    submitted_diagnosis: str = Field(..., alias="submittedDiagnosis", max_length=500)
    reasoning: str = Field(default="", max_length=5000)
    confidence: int = Field(default=50, ge=0, le=100)


class InvestigationRequest(BaseSchema):
    diagnosis: str = Field(..., max_length=500)
    test_name: str = Field(..., alias="testName", min_length=1, max_length=200)


class GuidanceRequest(BaseSchema):
    diagnosis: str = Field(..., max_length=500)
    question: str = Field(..., min_length=1, max_length=2000)


class AssistantReply(BaseSchema):
    operation: OperationClass
    payload: Dict[str, Any]


class PaymentOrderRequest(BaseSchema):
    plan: str = Field(default="premium", pattern="^premium$")


class PaymentOrder(BaseSchema):
    id: str
    amount: int
    currency: str
    receipt: str
    simulated: bool = False


class PaymentVerification(BaseSchema):
    razorpay_order_id: str = Field(..., pattern=r"^[a-zA-Z0-9_]{1,100}$")
    razorpay_payment_id: str = Field(..., pattern=r"^[a-zA-Z0-9_]{1,100}$")
    razorpay_signature: str = Field(..., min_length=32, max_length=256)


class PaymentResult(BaseSchema):
    success: bool
    subscription: Subscription


class SessionResponse(BaseSchema):
    token: str
    user: UserRecord
