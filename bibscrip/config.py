import os

API_BASE_URL = os.getenv("BIBSCRIP_API_URL", "http://localhost:4000/api").rstrip("/")
ENV = os.getenv("BIBSCRIP_ENV", "production")

ENDPOINTS = {
    "ask": f"{API_BASE_URL}/ask",
    "bible_verse": f"{API_BASE_URL}/bible/verse",
    "bible_passage": f"{API_BASE_URL}/bible/passage",
    "bible_chapter": f"{API_BASE_URL}/bible/chapter",
    "bible_chapters": f"{API_BASE_URL}/bible/chapters",
    "bible_translations": f"{API_BASE_URL}/bible/translations",
    "vector_store": f"{API_BASE_URL}/vector/store",
    "vector_search": f"{API_BASE_URL}/vector/search",
    "vector_batch": f"{API_BASE_URL}/vector/batch",
    "vector_status": f"{API_BASE_URL}/vector/status",
    "generate_text": f"{API_BASE_URL}/generate/text",
    "analytics_events": f"{API_BASE_URL}/analytics/events",
    "analytics_data": f"{API_BASE_URL}/analytics/data",
}

ASK_TIMEOUT_SEC = float(os.getenv("ASK_TIMEOUT_SEC", "20"))
ASK_FALLBACK_TIMEOUT_SEC = float(os.getenv("ASK_FALLBACK_TIMEOUT_SEC", "30"))
EXPLAIN_TIMEOUT_SEC = float(os.getenv("EXPLAIN_TIMEOUT_SEC", "20"))
ANALYTICS_TIMEOUT_SEC = float(os.getenv("ANALYTICS_TIMEOUT_SEC", "5"))

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
EVENT_LOG_PATH = os.getenv("EVENT_LOG_PATH", "logs/events.log")
LOG_ID_SALT = os.getenv("LOG_ID_SALT", "")

ANALYTICS_FLUSH_THRESHOLD = int(os.getenv("ANALYTICS_FLUSH_THRESHOLD", "50"))
ANALYTICS_FLUSH_INTERVAL_SEC = float(os.getenv("ANALYTICS_FLUSH_INTERVAL_SEC", "300"))

MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "20"))
TITLE_MAX_CHARS = int(os.getenv("TITLE_MAX_CHARS", "50"))

USE_MOCK_EXPLANATIONS = os.getenv("USE_MOCK_EXPLANATIONS", "0") == "1"


def is_development() -> bool:
    return ENV == "development"
