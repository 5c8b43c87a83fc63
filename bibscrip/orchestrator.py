import threading
import time
from typing import Callable, List, Optional

import requests
from pydantic import BaseModel

from bibscrip.analytics import UNKNOWN_PROVIDER, AnalyticsRecorder
from bibscrip.config import ASK_FALLBACK_TIMEOUT_SEC, ASK_TIMEOUT_SEC, ENDPOINTS
from bibscrip.events import log_event
from bibscrip.models import ChatResponse, Commentary, ContentType, Verse
from bibscrip.ref_parser import classify_content_type
from bibscrip.sessions import SessionManager

EMPTY_QUESTION_MESSAGE = "Please enter a question."
FALLBACK_NOTICE = "The AI service is taking too long. Trying an alternate provider..."
FALLBACK_FAILED_MESSAGE = (
    "We couldn't get an answer from any AI provider right now. Please try again in a moment."
)
GENERIC_ERROR_MESSAGE = "Failed to get answer. Please try again."


class MalformedResponseError(ValueError):
    """The backend answered 2xx with a body that is not an ask payload."""


class AskState(BaseModel):
    is_loading: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    notice: Optional[str] = None
    question: Optional[str] = None
    response: Optional[ChatResponse] = None
    content_type: ContentType = "general"


def _normalize_verse(item) -> Optional[Verse]:
    if not isinstance(item, dict):
        return None
    reference = item.get("ref") or item.get("reference")
    text = item.get("text")
    if not isinstance(reference, str) or not isinstance(text, str) or not reference or not text:
        return None
    translation = item.get("translation")
    link = item.get("link")
    return Verse(
        reference=reference,
        text=text,
        translation=translation if isinstance(translation, str) else None,
        link=link if isinstance(link, str) else None,
    )


def _normalize_commentary(item) -> Optional[Commentary]:
    if not isinstance(item, dict):
        return None
    source = item.get("source")
    text = item.get("text")
    if not isinstance(source, str) or not isinstance(text, str):
        return None
    link = item.get("link")
    return Commentary(source=source, text=text, link=link if isinstance(link, str) else None)


def normalize_ask_payload(data) -> ChatResponse:
    if not isinstance(data, dict):
        raise MalformedResponseError("ask response must be an object")
    answer = data.get("ai", data.get("aiAnswer"))
    if not isinstance(answer, str):
        raise MalformedResponseError("ask response has no answer text")
    raw_verses = data.get("verses") or []
    raw_commentary = data.get("commentary") or []
    if not isinstance(raw_verses, list) or not isinstance(raw_commentary, list):
        raise MalformedResponseError("ask response verses and commentary must be lists")
    verses: List[Verse] = []
    for item in raw_verses:
        verse = _normalize_verse(item)
        if verse is not None:
            verses.append(verse)
    commentary: List[Commentary] = []
    for item in raw_commentary:
        excerpt = _normalize_commentary(item)
        if excerpt is not None:
            commentary.append(excerpt)
    return ChatResponse(ai_answer=answer, referenced_verses=verses, commentary_excerpts=commentary)


def _error_message(res: requests.Response) -> str:
    try:
        body = res.json()
    except ValueError:
        return GENERIC_ERROR_MESSAGE
    if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"]:
        return body["error"]
    return GENERIC_ERROR_MESSAGE


class RequestOrchestrator:
    """Turns a question into a ChatResponse, falling back on primary timeout.

    Only a timeout of the primary request triggers the fallback request; any
    other primary failure is reported as is. A submission that arrives while
    another one is in flight is ignored.
    """

    def __init__(
        self,
        sessions: Optional[SessionManager] = None,
        analytics: Optional[AnalyticsRecorder] = None,
        ask_url: str = ENDPOINTS["ask"],
        timeout: float = ASK_TIMEOUT_SEC,
        fallback_timeout: float = ASK_FALLBACK_TIMEOUT_SEC,
        listener: Optional[Callable[[AskState], None]] = None,
    ):
        self._sessions = sessions
        self._analytics = analytics
        self._ask_url = ask_url
        self._timeout = timeout
        self._fallback_timeout = fallback_timeout
        self._listener = listener
        self._in_flight = threading.Lock()
        self.state = AskState()

    @property
    def is_loading(self) -> bool:
        return self.state.is_loading

    def _publish(self, **changes) -> None:
        self.state = self.state.model_copy(update=changes)
        if self._listener is not None:
            self._listener(self.state)

    def submit(self, question: str, options: Optional[dict] = None) -> Optional[ChatResponse]:
        text = (question or "").strip()
        if not text:
            self._publish(error=EMPTY_QUESTION_MESSAGE, error_kind="validation", notice=None)
            return None
        if not self._in_flight.acquire(blocking=False):
            log_event("ask_ignored", {"reason": "in_flight"})
            return None
        try:
            self._publish(
                is_loading=True,
                error=None,
                error_kind=None,
                notice=None,
                question=text,
                response=None,
                content_type="general",
            )
            return self._run(text, options or {})
        finally:
            self._publish(is_loading=False)
            self._in_flight.release()

    def _post(self, payload: dict, timeout: float) -> dict:
        res = requests.post(self._ask_url, json=payload, timeout=timeout)
        if res.status_code >= 400:
            raise requests.HTTPError(_error_message(res), response=res)
        try:
            return res.json()
        except ValueError as exc:
            raise MalformedResponseError("ask response is not JSON") from exc

    def _run(self, text: str, options: dict) -> Optional[ChatResponse]:
        payload = {**options, "question": text, "timeoutEnabled": True}
        start = time.perf_counter()
        try:
            data = self._post(payload, self._timeout)
            response = normalize_ask_payload(data)
        except requests.Timeout:
            log_event("ask_primary_timeout", {"timeout_sec": self._timeout})
            self._record_failure("primary", "timeout", start)
            return self._run_fallback(payload)
        except (requests.RequestException, MalformedResponseError) as exc:
            message = str(exc) if isinstance(exc, requests.HTTPError) else GENERIC_ERROR_MESSAGE
            log_event("ask_primary_failed", {"error": type(exc).__name__})
            self._record_failure("primary", type(exc).__name__, start)
            self._publish(error=message, error_kind="upstream")
            return None
        return self._complete(text, data, response, start, "primary")

    def _run_fallback(self, payload: dict) -> Optional[ChatResponse]:
        self._publish(notice=FALLBACK_NOTICE)
        start = time.perf_counter()
        try:
            data = self._post({**payload, "useFallback": True}, self._fallback_timeout)
            response = normalize_ask_payload(data)
        except (requests.RequestException, MalformedResponseError) as exc:
            log_event("ask_fallback_failed", {"error": type(exc).__name__})
            self._record_failure("fallback", type(exc).__name__, start)
            self._publish(error=FALLBACK_FAILED_MESSAGE, error_kind="fallback_failed", notice=None)
            return None
        return self._complete(payload["question"], data, response, start, "fallback")

    def _complete(self, text: str, data: dict, response: ChatResponse, start: float, path: str) -> ChatResponse:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_event(
            "ask_success",
            {"path": path, "elapsed_ms": elapsed_ms, "verses": len(response.referenced_verses)},
        )
        if self._analytics is not None:
            self._analytics.record_ai_request(
                provider=str(data.get("provider") or UNKNOWN_PROVIDER),
                path=path,
                from_cache=bool(data.get("fromCache", False)),
                token_usage=data.get("tokenUsage") if isinstance(data.get("tokenUsage"), dict) else None,
                latency_ms=elapsed_ms,
                status="success",
                query=text,
            )
        if self._sessions is not None:
            self._sessions.add_message(text, response)
        self._publish(
            response=response,
            content_type=classify_content_type(text),
            error=None,
            error_kind=None,
            notice=None,
        )
        return response

    def _record_failure(self, path: str, error_type: str, start: float) -> None:
        if self._analytics is None:
            return
        self._analytics.record_ai_request(
            provider=UNKNOWN_PROVIDER,
            path=path,
            latency_ms=int((time.perf_counter() - start) * 1000),
            status="error",
            error_type=error_type,
        )
