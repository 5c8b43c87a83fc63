from typing import Any, List, Optional

from pydantic import BaseModel

from gateway.config import DEFAULT_NAMESPACE


class AskRequest(BaseModel):
    question: Any = None
    useFallback: bool = False
    timeoutEnabled: bool = False
    options: Optional[dict] = None


class VectorSearchRequest(BaseModel):
    query: Optional[str] = None
    namespace: str = DEFAULT_NAMESPACE
    topK: int = 5
    minScore: float = 0.6


class VectorDocument(BaseModel):
    text: str
    metadata: Optional[dict] = None


class VectorStoreRequest(BaseModel):
    text: Optional[str] = None
    metadata: Optional[dict] = None
    namespace: str = DEFAULT_NAMESPACE


class VectorBatchRequest(BaseModel):
    documents: Optional[List[VectorDocument]] = None
    namespace: str = DEFAULT_NAMESPACE


class ExplainVerseRequest(BaseModel):
    reference: Optional[str] = None
    text: Optional[str] = None
    translation: str = "NIV"


class ExplainVerseResponse(BaseModel):
    theological: str
    historical: str
    application: str
    source: str


class VectorStatus(BaseModel):
    available: bool
    mode: str


class VectorStatusResponse(BaseModel):
    data: VectorStatus
    message: Optional[str] = None


class AnalyticsIngestResponse(BaseModel):
    success: bool
    eventsReceived: int
    backendResponse: Optional[Any] = None
    backendError: Optional[str] = None
