# etl/populate_vector_db.py
import json
import os
import sys

import requests
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from etl.config import (
    API_URL,
    BATCH_DELAY_SEC,
    BATCH_SIZE,
    BATCH_TIMEOUT_SEC,
    BIBLE_DATA_PATH,
    MAX_RETRY,
    NAMESPACE,
    STATUS_TIMEOUT_SEC,
)
from etl.utils import batched, normalize_text, sleep_delay


def check_status() -> bool:
    try:
        r = requests.get(f"{API_URL}/vector/status", timeout=STATUS_TIMEOUT_SEC)
        r.raise_for_status()
    except requests.RequestException:
        return False
    return True


def load_bible_data(path: str = BIBLE_DATA_PATH):
    if not os.path.exists(path):
        print(f"WARN bible data not found at {path} (run python -m etl.sample_data)")
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f).get("verses") or []
    except (OSError, ValueError, AttributeError) as e:
        print(f"WARN failed to parse bible data path={path} err={e}")
        return None


def to_document(verse: dict) -> dict:
    """
    Map one bible.json verse record to a vector document.
    """
    return {
        "text": normalize_text(verse["text"]),
        "metadata": {
            "reference": verse.get("reference"),
            "translation": verse.get("translation") or "Unknown",
            "book": verse.get("book"),
            "chapter": verse.get("chapter"),
            "verse": verse.get("verse"),
        },
    }


@retry(
    stop=stop_after_attempt(MAX_RETRY),
    wait=wait_exponential(multiplier=1, min=2, max=8),
    retry=retry_if_exception_type(requests.RequestException),
)
def send_batch(documents) -> list:
    r = requests.post(
        f"{API_URL}/vector/batch",
        json={"documents": documents, "namespace": NAMESPACE},
        timeout=BATCH_TIMEOUT_SEC,
    )
    r.raise_for_status()
    return r.json()["data"]["ids"]


def populate(verses, delay_sec: float = BATCH_DELAY_SEC) -> tuple[int, int]:
    total_batches = (len(verses) + BATCH_SIZE - 1) // BATCH_SIZE
    success_count = 0
    fail_count = 0

    for batch_no, chunk in enumerate(batched(verses, BATCH_SIZE), start=1):
        documents = [to_document(v) for v in chunk]
        try:
            ids = send_batch(documents)
        except (RetryError, requests.RequestException, KeyError, TypeError, ValueError) as e:
            fail_count += len(documents)
            print(f"WARN batch {batch_no}/{total_batches} failed err={e}", flush=True)
        else:
            success_count += len(ids)
            print(f"OK batch {batch_no}/{total_batches} verses={len(ids)}")
        if delay_sec:
            sleep_delay(delay_sec)

    return success_count, fail_count


def main():
    if not check_status():
        print("ERROR vector database API is not available; is the backend running?")
        sys.exit(1)

    verses = load_bible_data()
    if not verses:
        print("ERROR no verses loaded; cannot populate database")
        sys.exit(1)

    print(f"Loaded {len(verses)} verses")
    ok, failed = populate(verses)
    print(f"DONE added={ok} failed={failed}")


if __name__ == "__main__":
    main()
