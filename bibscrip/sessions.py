import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from bibscrip.config import MAX_SESSIONS, TITLE_MAX_CHARS
from bibscrip.events import log_event
from bibscrip.models import ChatMessage, ChatResponse, ChatSession
from bibscrip.storage import KeyValueStore, StorageError

SESSIONS_KEY = "bibscrip-chat-sessions"
ACTIVE_SESSION_KEY = "bibscrip-active-session"
DEFAULT_TITLE = "New Chat"
ELLIPSIS = "..."

_SESSIONS_ADAPTER = TypeAdapter(List[ChatSession])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_title(question: str, limit: int = TITLE_MAX_CHARS) -> str:
    text = " ".join((question or "").split())
    if not text:
        return DEFAULT_TITLE
    if len(text) <= limit:
        return text
    if limit <= len(ELLIPSIS):
        return text[: max(limit, 0)]
    cut = text[: limit - len(ELLIPSIS)]
    # cut mid-word: back off to the previous space when there is one
    if text[len(cut)] != " ":
        head, _, _ = cut.rpartition(" ")
        if head:
            cut = head
    return cut.rstrip() + ELLIPSIS


class SessionStore:
    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    def load(self) -> Tuple[List[ChatSession], Optional[str]]:
        try:
            raw = self._kv.get(SESSIONS_KEY)
            active_id = self._kv.get(ACTIVE_SESSION_KEY)
        except StorageError:
            log_event("storage_error", {"op": "load_sessions"})
            return [], None
        if not raw:
            return [], None
        try:
            sessions = _SESSIONS_ADAPTER.validate_json(raw)
        except ValidationError:
            log_event("storage_error", {"op": "load_sessions", "reason": "corrupt"})
            return [], None
        return sessions, active_id

    def save(self, sessions: List[ChatSession], active_id: Optional[str]) -> None:
        self._kv.set(SESSIONS_KEY, _SESSIONS_ADAPTER.dump_json(sessions).decode("utf-8"))
        if active_id:
            self._kv.set(ACTIVE_SESSION_KEY, active_id)
        else:
            self._kv.delete(ACTIVE_SESSION_KEY)

    def clear(self) -> None:
        self._kv.delete(SESSIONS_KEY)
        self._kv.delete(ACTIVE_SESSION_KEY)


class SessionManager:
    """Owns the chat session collection and the active session id.

    Every mutation runs under one lock and is written through to the
    ``SessionStore`` before returning. If the store fails, the manager logs
    the failure and keeps serving from memory.
    """

    def __init__(
        self,
        store: SessionStore,
        clock: Optional[Callable[[], datetime]] = None,
        max_sessions: int = MAX_SESSIONS,
        title_max_chars: int = TITLE_MAX_CHARS,
    ):
        self._store = store
        self._clock = clock or _utcnow
        self._max_sessions = max_sessions
        self._title_max_chars = title_max_chars
        self._lock = threading.RLock()
        self._sessions: List[ChatSession] = []
        self._active_id: Optional[str] = None
        self.reload()

    def reload(self) -> None:
        sessions, active_id = self._store.load()
        with self._lock:
            self._sessions = sessions
            if active_id and self._find(active_id) is not None:
                self._active_id = active_id
            elif sessions:
                self._active_id = sessions[0].id
            else:
                self._active_id = None

    def _find(self, session_id: str) -> Optional[ChatSession]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def _persist(self) -> None:
        try:
            self._store.save(self._sessions, self._active_id)
        except StorageError:
            log_event("storage_error", {"op": "save_sessions", "mode": "memory"})

    @property
    def sessions(self) -> List[ChatSession]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions]

    @property
    def active_session_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active_session(self) -> Optional[ChatSession]:
        with self._lock:
            if self._active_id is None:
                return None
            session = self._find(self._active_id)
            return session.model_copy(deep=True) if session else None

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            session = self._find(session_id)
            return session.model_copy(deep=True) if session else None

    def _create_locked(self) -> ChatSession:
        now = self._clock()
        session = ChatSession(
            id=uuid.uuid4().hex,
            title=DEFAULT_TITLE,
            full_prompt="",
            messages=[],
            created_at=now,
            updated_at=now,
        )
        self._sessions.insert(0, session)
        del self._sessions[self._max_sessions :]
        self._active_id = session.id
        return session

    def create_session(self) -> str:
        with self._lock:
            session = self._create_locked()
            self._persist()
        log_event("session_create", {"session_id": session.id})
        return session.id

    def add_message(self, question: str, response: ChatResponse) -> ChatMessage:
        with self._lock:
            session = self._find(self._active_id) if self._active_id else None
            if session is None:
                session = self._create_locked()
                log_event("session_create", {"session_id": session.id, "reason": "auto"})
            now = self._clock()
            message = ChatMessage(
                id=uuid.uuid4().hex,
                question=question,
                response=response,
                created_at=now,
            )
            if not session.messages:
                session.title = derive_title(question, self._title_max_chars)
                session.full_prompt = question
            session.messages.insert(0, message)
            session.updated_at = now
            self._persist()
        log_event(
            "session_message_add",
            {"session_id": session.id, "message_count": len(session.messages)},
        )
        return message

    def switch_session(self, session_id: str) -> bool:
        with self._lock:
            if session_id == self._active_id:
                return True
            if self._find(session_id) is None:
                return False
            self._active_id = session_id
            self._persist()
        log_event("session_switch", {"session_id": session_id})
        return True

    def update_session_title(self, session_id: str, new_title: str) -> bool:
        title = (new_title or "").strip()
        if not title:
            return False
        with self._lock:
            session = self._find(session_id)
            if session is None:
                return False
            session.title = title
            session.updated_at = self._clock()
            self._persist()
        log_event("session_rename", {"session_id": session_id})
        return True

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            session = self._find(session_id)
            if session is None:
                return False
            self._sessions.remove(session)
            if session_id == self._active_id:
                if self._sessions:
                    # max() keeps the first of equal timestamps, i.e. the newest-created
                    self._active_id = max(self._sessions, key=lambda s: s.updated_at).id
                else:
                    self._active_id = None
            self._persist()
        log_event("session_delete", {"session_id": session_id, "remaining": len(self._sessions)})
        return True

    def clear_all_sessions(self) -> None:
        with self._lock:
            self._sessions = []
            self._active_id = None
            try:
                self._store.clear()
            except StorageError:
                log_event("storage_error", {"op": "clear_sessions", "mode": "memory"})
        log_event("session_clear", {})
