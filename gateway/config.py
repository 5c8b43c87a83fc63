import os

API_TITLE = "BibScrip Gateway"
API_VERSION = "0.1.0"

DEFAULT_TRANSLATION = os.getenv("DEFAULT_TRANSLATION", "NIV")
DEFAULT_NAMESPACE = "bible-verses"

ASK_PROXY_TIMEOUT_SEC = float(os.getenv("ASK_PROXY_TIMEOUT_SEC", "30"))
BIBLE_TIMEOUT_SEC = float(os.getenv("BIBLE_TIMEOUT_SEC", "10"))
VECTOR_TIMEOUT_SEC = float(os.getenv("VECTOR_TIMEOUT_SEC", "10"))
VECTOR_STATUS_TIMEOUT_SEC = float(os.getenv("VECTOR_STATUS_TIMEOUT_SEC", "5"))
VECTOR_BATCH_TIMEOUT_SEC = float(os.getenv("VECTOR_BATCH_TIMEOUT_SEC", "30"))
ANALYTICS_DATA_TIMEOUT_SEC = float(os.getenv("ANALYTICS_DATA_TIMEOUT_SEC", "10"))

RATE_LIMIT_WINDOW_SEC = float(os.getenv("RATE_LIMIT_WINDOW_SEC", "60"))
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "0") == "1"
