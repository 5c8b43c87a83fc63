from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Verse(BaseModel):
    model_config = ConfigDict(frozen=True)

    reference: str
    text: str
    translation: Optional[str] = None
    link: Optional[str] = None


class Commentary(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    text: str
    link: Optional[str] = None


class ChatResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ai_answer: str
    referenced_verses: List[Verse] = []
    commentary_excerpts: List[Commentary] = []


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    question: str
    response: ChatResponse
    created_at: datetime


class ChatSession(BaseModel):
    id: str
    title: str
    full_prompt: str = ""
    # newest first
    messages: List[ChatMessage] = []
    created_at: datetime
    updated_at: datetime


ContentType = Literal["topic", "character", "verse", "general"]


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0


class AIRequestMetadata(BaseModel):
    provider: str
    from_cache: bool = False
    token_usage: Optional[TokenUsage] = None
    latency_ms: int = 0
    cost: Optional[float] = None
    # "primary" or "fallback" for orchestrated asks
    path: Optional[str] = None
    query: Optional[str] = None
    status: Literal["success", "error"] = "success"
    error_type: Optional[str] = None
    cache_key: Optional[str] = None
    cache_age: Optional[int] = None


class CacheOperationMetadata(BaseModel):
    operation: Literal["hit", "miss", "set", "expired", "evicted"]
    key: str
    latency_ms: Optional[int] = None
    size: Optional[int] = None
    ttl: Optional[int] = None


class RateLimitMetadata(BaseModel):
    provider: str
    limit_type: Literal["requests_per_minute", "requests_per_hour", "tokens_per_minute"]
    current_count: int
    limit: int


class AIRequestEvent(BaseModel):
    event_type: Literal["ai_request"] = "ai_request"
    timestamp: int
    metadata: AIRequestMetadata


class CacheOperationEvent(BaseModel):
    event_type: Literal["cache_operation"] = "cache_operation"
    timestamp: int
    metadata: CacheOperationMetadata


class RateLimitEvent(BaseModel):
    event_type: Literal["rate_limit"] = "rate_limit"
    timestamp: int
    metadata: RateLimitMetadata


AnalyticsEvent = Annotated[
    Union[AIRequestEvent, CacheOperationEvent, RateLimitEvent],
    Field(discriminator="event_type"),
]


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    hit_ratio: float = 0.0
    estimated_savings: float = 0.0


class ProviderStats(BaseModel):
    count: int = 0
    cost: float = 0.0


class TimeWindowStats(BaseModel):
    today: int = 0
    this_week: int = 0
    this_month: int = 0


class AnalyticsSummary(BaseModel):
    total_requests: int
    cached_requests: int
    cache_hit_ratio: float
    total_cost: float
    estimated_savings: float
    provider_breakdown: Dict[str, ProviderStats]
    time_window_stats: TimeWindowStats


class VerseExplanation(BaseModel):
    theological: str
    historical: str
    application: str
    source: Literal["api", "mock"] = "api"
