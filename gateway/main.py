import os
from typing import Any, Optional
from urllib.parse import quote

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bibscrip.analytics import AnalyticsRecorder
from bibscrip.config import ANALYTICS_TIMEOUT_SEC, ENDPOINTS, is_development
from bibscrip.events import log_event, reset_event_log
from bibscrip.explain import explain_verse
from bibscrip.ref_parser import extract_translation_preference
from gateway.config import (
    ANALYTICS_DATA_TIMEOUT_SEC,
    API_TITLE,
    API_VERSION,
    ASK_PROXY_TIMEOUT_SEC,
    BIBLE_TIMEOUT_SEC,
    DEFAULT_TRANSLATION,
    EVENT_LOG_RESET_ON_STARTUP,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SEC,
    VECTOR_BATCH_TIMEOUT_SEC,
    VECTOR_STATUS_TIMEOUT_SEC,
    VECTOR_TIMEOUT_SEC,
)
from gateway.models import (
    AnalyticsIngestResponse,
    AskRequest,
    ExplainVerseRequest,
    ExplainVerseResponse,
    VectorBatchRequest,
    VectorSearchRequest,
    VectorStatusResponse,
    VectorStoreRequest,
)
from gateway.proxy import ProxyError, forward, require
from gateway.ratelimit import RateLimiter

app = FastAPI(title=API_TITLE, version=API_VERSION)

CORS_ALLOW_ALL = os.getenv("CORS_ALLOW_ALL", "1") == "1"
if CORS_ALLOW_ALL:
    allow_origins = ["*"]
else:
    raw_origins = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)

limiter = RateLimiter(RATE_LIMIT_WINDOW_SEC, RATE_LIMIT_MAX_REQUESTS)


@app.on_event("startup")
def _start_analytics() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")
    recorder = AnalyticsRecorder(collector_url=ENDPOINTS["analytics_events"])
    recorder.init()
    app.state.analytics = recorder


@app.on_event("shutdown")
def _stop_analytics() -> None:
    recorder = getattr(app.state, "analytics", None)
    if recorder is not None:
        recorder.shutdown()


def _error_body(message: str, details: Any = None) -> dict:
    content = {"error": message}
    if details is not None and is_development():
        content["details"] = details
    return content


@app.exception_handler(ProxyError)
def handle_proxy_error(_request: Request, exc: ProxyError):
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.details))


@app.exception_handler(HTTPException)
def handle_http_exception(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=_error_body("invalid request", exc.errors()))


def get_analytics(request: Request) -> Optional[AnalyticsRecorder]:
    return getattr(request.app.state, "analytics", None)


def _get_client_ip(request: Request) -> str:
    xff = request.headers.get("X-Forwarded-For", "")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


@app.post("/api/ask")
def ask(payload: AskRequest, request: Request, analytics=Depends(get_analytics)):
    ip = _get_client_ip(request)
    limited, count = limiter.hit(ip)
    if limited:
        log_event("rate_limited", {"ip": ip, "count": count})
        if analytics is not None:
            analytics.record_rate_limit("gateway", "requests_per_minute", count, limiter.max_requests)
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(limiter.retry_after(ip))},
        )

    question = payload.question
    if not isinstance(question, str) or not question.strip():
        raise ProxyError(400, "Question is required and must be a string.")

    body = {
        "question": question,
        "useFallback": payload.useFallback,
        "timeoutEnabled": payload.timeoutEnabled,
    }
    translation = extract_translation_preference(question)
    if translation:
        body["translation"] = translation
    if payload.options:
        body["options"] = payload.options
    log_event("ask_proxy", {"fallback": payload.useFallback, "translation": translation})
    return forward("POST", ENDPOINTS["ask"], "AI service", ASK_PROXY_TIMEOUT_SEC, json_body=body)


@app.get("/api/bible/chapter")
def bible_chapter(
    book: Optional[str] = Query(None),
    chapter: Optional[str] = Query(None),
    translation: str = Query(DEFAULT_TRANSLATION),
):
    if not book or not chapter:
        raise ProxyError(400, "Missing required parameters: book and chapter")
    url = f"{ENDPOINTS['bible_chapter']}/{quote(book, safe='')}/{quote(chapter, safe='')}"
    return forward("GET", url, "Bible service", BIBLE_TIMEOUT_SEC, params={"translation": translation})


@app.get("/api/bible/chapters")
def bible_chapters(
    book: Optional[str] = Query(None),
    startChapter: Optional[int] = Query(None),
    endChapter: Optional[int] = Query(None),
    translation: str = Query(DEFAULT_TRANSLATION),
):
    if not book or startChapter is None or endChapter is None:
        raise ProxyError(400, "Missing required parameters: book, startChapter and endChapter")
    if endChapter < startChapter:
        raise ProxyError(400, "endChapter must not be before startChapter")
    url = f"{ENDPOINTS['bible_chapters']}/{quote(book, safe='')}/{startChapter}/{endChapter}"
    return forward("GET", url, "Bible service", BIBLE_TIMEOUT_SEC, params={"translation": translation})


@app.get("/api/bible/passage")
def bible_passage(
    reference: Optional[str] = Query(None),
    translation: str = Query(DEFAULT_TRANSLATION),
):
    require(reference, "Missing required parameter: reference")
    return forward(
        "GET",
        ENDPOINTS["bible_passage"],
        "Bible service",
        BIBLE_TIMEOUT_SEC,
        params={"reference": reference, "translation": translation},
    )


@app.get("/api/bible/translations")
def bible_translations():
    return forward("GET", ENDPOINTS["bible_translations"], "Bible service", BIBLE_TIMEOUT_SEC)


@app.post("/api/vector/search")
def vector_search(payload: VectorSearchRequest):
    require(payload.query, "Missing required parameter: query")
    return forward(
        "POST",
        ENDPOINTS["vector_search"],
        "vector database",
        VECTOR_TIMEOUT_SEC,
        json_body=payload.model_dump(),
    )


@app.post("/api/vector/store")
def vector_store(payload: VectorStoreRequest):
    require(payload.text, "Missing required parameter: text")
    return forward(
        "POST",
        ENDPOINTS["vector_store"],
        "vector database",
        VECTOR_TIMEOUT_SEC,
        json_body=payload.model_dump(),
    )


@app.post("/api/vector/batch")
def vector_batch(payload: VectorBatchRequest):
    if not payload.documents:
        raise ProxyError(400, "Missing or invalid required parameter: documents")
    return forward(
        "POST",
        ENDPOINTS["vector_batch"],
        "vector database",
        VECTOR_BATCH_TIMEOUT_SEC,
        json_body=payload.model_dump(),
    )


@app.get("/api/vector/status")
def vector_status():
    try:
        return forward("GET", ENDPOINTS["vector_status"], "vector database", VECTOR_STATUS_TIMEOUT_SEC)
    except ProxyError:
        return VectorStatusResponse(
            data={"available": False, "mode": "unavailable"},
            message="Failed to connect to vector database",
        ).model_dump()


@app.post("/api/explain-verse", response_model=ExplainVerseResponse)
def explain(payload: ExplainVerseRequest):
    if not payload.reference or not payload.text:
        raise ProxyError(400, "Reference and text are required")
    explanation = explain_verse(payload.reference, payload.text, payload.translation)
    return explanation.model_dump()


@app.post("/api/analytics", response_model=AnalyticsIngestResponse)
def ingest_analytics(events: Any = Body(None)):
    if not isinstance(events, list):
        raise ProxyError(400, "Invalid events format, array expected")
    try:
        data = forward(
            "POST",
            ENDPOINTS["analytics_events"],
            "analytics service",
            ANALYTICS_TIMEOUT_SEC,
            json_body={"events": events},
        )
    except ProxyError as exc:
        # analytics must not disrupt the client
        return {
            "success": True,
            "eventsReceived": len(events),
            "backendError": exc.message if is_development() else "Analytics service unavailable",
        }
    return {"success": True, "eventsReceived": len(events), "backendResponse": data}


@app.get("/api/analytics")
def analytics_data(
    format: str = Query("summary"),
    timeframe: str = Query("7d"),
):
    return forward(
        "GET",
        ENDPOINTS["analytics_data"],
        "analytics service",
        ANALYTICS_DATA_TIMEOUT_SEC,
        params={"format": format, "timeframe": timeframe},
    )
