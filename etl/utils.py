# etl/utils.py
import os
import re
import time
from typing import Iterator, List


def ensure_dir(path: str):
    if path:
        os.makedirs(path, exist_ok=True)


def normalize_text(s: str) -> str:
    s = s.replace("\xa0", " ")
    return re.sub(r"\s+", " ", s).strip()


def batched(items: List, size: int) -> Iterator[List]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def sleep_delay(sec: float):
    time.sleep(sec)
