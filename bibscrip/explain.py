import re
import time
from typing import Dict, Optional

import requests

from bibscrip.config import ENDPOINTS, EXPLAIN_TIMEOUT_SEC, USE_MOCK_EXPLANATIONS, is_development
from bibscrip.events import log_event
from bibscrip.models import VerseExplanation

THEOLOGICAL_PLACEHOLDER = "No theological explanation available."
HISTORICAL_PLACEHOLDER = "No historical context available."
APPLICATION_PLACEHOLDER = "No application insights available."

SECTION_PATTERNS = {
    "theological": re.compile(r"Theological Meaning:(.*?)(?=Historical Context:|$)", re.IGNORECASE | re.DOTALL),
    "historical": re.compile(r"Historical Context:(.*?)(?=Modern Application:|$)", re.IGNORECASE | re.DOTALL),
    "application": re.compile(r"Modern Application:(.*)$", re.IGNORECASE | re.DOTALL),
}
SECTION_PLACEHOLDERS = {
    "theological": THEOLOGICAL_PLACEHOLDER,
    "historical": HISTORICAL_PLACEHOLDER,
    "application": APPLICATION_PLACEHOLDER,
}

MOCK_EXPLANATIONS: Dict[str, Dict[str, str]] = {
    "john3:16": {
        "theological": (
            "This verse expresses the core of Christian theology: God's sacrificial love. God gave "
            "His only Son so that through faith people can have eternal life rather than face "
            "condemnation for their sins."
        ),
        "historical": (
            "Written by the apostle John (around 85-95 AD), the verse appears in Jesus' conversation "
            "with Nicodemus, a Pharisee. God's love extending to the whole world was a striking claim "
            "to a first-century Jewish audience."
        ),
        "application": (
            "God's love is offered to everyone. The verse invites a response of faith and challenges "
            "believers to extend the same love to others, and it gives hope beyond present trouble."
        ),
    },
    "rom8:28": {
        "theological": (
            "The verse affirms God's sovereignty and providential care: God works in all "
            "circumstances for the good of those who love Him. It does not call every event good."
        ),
        "historical": (
            "Paul wrote to the Roman church around 57 AD, to believers facing social rejection, "
            "economic hardship and the threat of persecution."
        ),
        "application": (
            "In suffering or confusion the verse points to God at work behind the scenes. It does not "
            "deny pain but asks for trust in a larger purpose."
        ),
    },
    "psalm23:1": {
        "theological": (
            "The Lord is pictured as shepherd: guide, protector and provider who relates to His people "
            "personally. \"I shall not want\" affirms that He is sufficient."
        ),
        "historical": (
            "David, once a shepherd himself, likely wrote the psalm as king (around 1000 BC). Shepherd "
            "language was used of kings and gods across the ancient Near East."
        ),
        "application": (
            "The verse invites an honest admission of dependence on God and contentment in His care "
            "when anxious about provision."
        ),
    },
    "phil4:13": {
        "theological": (
            "Christ supplies the strength needed for whatever God calls a believer to endure or do. "
            "It speaks of spiritual enablement, not unlimited personal power."
        ),
        "historical": (
            "Paul wrote from prison around 62 AD. In context he is describing contentment in plenty "
            "and in need."
        ),
        "application": (
            "Its true application is faithfulness in hard seasons, leaning on Christ's strength rather "
            "than one's own."
        ),
    },
    "jer29:11": {
        "theological": (
            "God's plans for His people aim at their welfare. Even in judgment His intentions are "
            "redemptive, and He remains sovereign over history."
        ),
        "historical": (
            "Jeremiah sent the message around 597 BC to the exiles in Babylon, against prophets who "
            "promised a quick return. The promise was made to the exiled community as a whole."
        ),
        "application": (
            "It is not a personal guarantee of prosperity, but it shows a consistent pattern in God's "
            "character that gives courage during hardship."
        ),
    },
}

DEFAULT_MOCK_EXPLANATION = {
    "theological": (
        "This verse contributes to our understanding of God's character and His relationship with "
        "humanity, as part of the larger biblical narrative of redemption."
    ),
    "historical": (
        "Understanding this passage requires considering its original audience, the cultural context "
        "of the time and its place within the book it belongs to."
    ),
    "application": (
        "Scripture is meant to transform lives, not only inform minds. Reflect on how this verse "
        "might shape beliefs, attitudes, relationships and actions today."
    ),
}

EXPLAIN_PROMPT = """As a biblical scholar with expertise in theology, history, and practical application of scripture,
provide a comprehensive explanation of this Bible verse:

Reference: {reference} ({translation})
Verse Text: "{text}"

Divide your explanation into exactly three sections:

1. Theological Meaning: the core theological concepts and doctrinal significance of the verse.
2. Historical Context: when this was written, to whom, and why, with relevant cultural background.
3. Modern Application: how the verse can be applied to contemporary life.

Keep each section concise but insightful."""


# mock keys use these short book names
BOOK_KEY_ALIASES = {
    "romans": "rom",
    "philippians": "phil",
    "jeremiah": "jer",
    "psalms": "psalm",
}
BOOK_KEY_PATTERN = re.compile(r"^(\d*)([a-z]+)")


def normalize_reference_key(reference: str) -> str:
    key = re.sub(r"\s+", "", (reference or "").lower())
    return BOOK_KEY_PATTERN.sub(
        lambda m: m.group(1) + BOOK_KEY_ALIASES.get(m.group(2), m.group(2)), key, count=1
    )


def get_mock_explanation(reference: str) -> VerseExplanation:
    key = normalize_reference_key(reference)
    sections = MOCK_EXPLANATIONS.get(key)
    if sections is None:
        for mock_key, mock_sections in MOCK_EXPLANATIONS.items():
            if mock_key in key:
                sections = mock_sections
                break
    return VerseExplanation(**(sections or DEFAULT_MOCK_EXPLANATION), source="mock")


def parse_explanation_sections(text: str) -> VerseExplanation:
    sections = {}
    for name, pattern in SECTION_PATTERNS.items():
        m = pattern.search(text or "")
        value = m.group(1).strip() if m else ""
        sections[name] = value or SECTION_PLACEHOLDERS[name]
    return VerseExplanation(**sections, source="api")


def _extract_text(data) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    inner = data.get("data")
    if isinstance(inner, dict) and isinstance(inner.get("text"), str):
        return inner["text"]
    if isinstance(data.get("text"), str):
        return data["text"]
    return None


def explain_verse(
    reference: str,
    text: str,
    translation: Optional[str] = None,
    use_mock: Optional[bool] = None,
    timeout: float = EXPLAIN_TIMEOUT_SEC,
) -> VerseExplanation:
    if use_mock is None:
        use_mock = USE_MOCK_EXPLANATIONS or is_development()
    if use_mock:
        log_event("explain_mock", {"reference": reference, "reason": "configured"})
        return get_mock_explanation(reference)

    prompt = EXPLAIN_PROMPT.format(reference=reference, translation=translation or "", text=text)
    start = time.perf_counter()
    try:
        res = requests.post(
            ENDPOINTS["generate_text"],
            json={"prompt": prompt, "model": "gpt-4", "temperature": 0.7, "maxTokens": 2000},
            timeout=timeout,
        )
        res.raise_for_status()
        body = _extract_text(res.json())
    except requests.Timeout:
        log_event("explain_mock", {"reference": reference, "reason": "timeout"})
        return get_mock_explanation(reference)
    except (requests.RequestException, ValueError) as exc:
        log_event("explain_mock", {"reference": reference, "reason": type(exc).__name__})
        return get_mock_explanation(reference)
    if body is None:
        log_event("explain_mock", {"reference": reference, "reason": "empty"})
        return get_mock_explanation(reference)

    log_event(
        "explain_api",
        {"reference": reference, "elapsed_ms": int((time.perf_counter() - start) * 1000)},
    )
    return parse_explanation_sections(body)
