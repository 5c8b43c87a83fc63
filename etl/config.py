# etl/config.py
import os

API_URL = os.getenv("BIBSCRIP_API_URL", "http://localhost:4000/api").rstrip("/")

BIBLE_DATA_PATH = os.getenv("BIBLE_DATA_PATH", "data/bible.json")

NAMESPACE = "bible-verses"

# verses per vector batch request
BATCH_SIZE = 50

# delay between batches (seconds) to stay under backend rate limits
BATCH_DELAY_SEC = float(os.getenv("BATCH_DELAY_SEC", "1.0"))

MAX_RETRY = 3

STATUS_TIMEOUT_SEC = 5
BATCH_TIMEOUT_SEC = 30
