import re
from typing import List, Optional

from bibscrip.models import ContentType

TRANSLATIONS = ["NIV", "ESV", "KJV", "NKJV", "NLT", "NASB", "NRSV", "MSG", "AMP", "CSB", "WEB"]

VERSE_REFERENCE_PATTERN = re.compile(
    r"\b(?P<book>(?:[1-3]\s+)?[A-Za-z]+)\s+(?P<chapter>\d+)"
    r":(?P<verses>\d+(?:(?:-\d+)|(?:,\s*\d+))*)"
)
LEADING_VERSE_PATTERN = re.compile(r"^\s*[a-zA-Z]+\s+\d+:\d+")

TOPIC_KEYWORDS = ("topic", "theme")
CHARACTER_KEYWORDS = ("character", "person")


def extract_verse_references(text: str) -> List[str]:
    if not text:
        return []
    refs = []
    seen = set()
    for m in VERSE_REFERENCE_PATTERN.finditer(text):
        book = re.sub(r"\s+", " ", m.group("book").strip())
        verses = re.sub(r"\s", "", m.group("verses"))
        ref = f"{book} {m.group('chapter')}:{verses}"
        key = ref.lower()
        if key in seen:
            continue
        seen.add(key)
        refs.append(ref)
    return refs


def extract_translation_preference(question: str) -> Optional[str]:
    if not question:
        return None
    m = re.search(rf"\b({'|'.join(TRANSLATIONS)})\b", question, flags=re.IGNORECASE)
    if m:
        return m.group(1).upper()
    return None


def classify_content_type(question: str) -> ContentType:
    lowered = (question or "").lower()
    if any(kw in lowered for kw in TOPIC_KEYWORDS):
        return "topic"
    if any(kw in lowered for kw in CHARACTER_KEYWORDS):
        return "character"
    if LEADING_VERSE_PATTERN.match(question or ""):
        return "verse"
    return "general"
