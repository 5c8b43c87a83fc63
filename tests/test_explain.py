import requests

import bibscrip.explain as explain_mod
from bibscrip.explain import (
    APPLICATION_PLACEHOLDER,
    DEFAULT_MOCK_EXPLANATION,
    HISTORICAL_PLACEHOLDER,
    MOCK_EXPLANATIONS,
    explain_verse,
    get_mock_explanation,
    normalize_reference_key,
    parse_explanation_sections,
)

GENERATED = """1. Theological Meaning: God loves the world.
2. Historical Context: Spoken to Nicodemus at night.
3. Modern Application: Trust and love others."""


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


def _patch_post(monkeypatch, outcome):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(explain_mod.requests, "post", fake_post)
    return calls


def test_normalize_reference_key():
    assert normalize_reference_key("John 3:16") == "john3:16"
    assert normalize_reference_key("  Psalm  23:1 ") == "psalm23:1"
    assert normalize_reference_key("Romans 8:28") == "rom8:28"
    assert normalize_reference_key("Psalms 23:1") == "psalm23:1"


def test_mock_matches_full_book_names():
    assert get_mock_explanation("Romans 8:28").theological == MOCK_EXPLANATIONS["rom8:28"]["theological"]
    assert get_mock_explanation("Philippians 4:13").historical == MOCK_EXPLANATIONS["phil4:13"]["historical"]
    assert get_mock_explanation("Jeremiah 29:11").application == MOCK_EXPLANATIONS["jer29:11"]["application"]
    assert get_mock_explanation("Psalms 23:1").theological == MOCK_EXPLANATIONS["psalm23:1"]["theological"]


def test_mock_exact_and_partial_match():
    assert get_mock_explanation("John 3:16").theological == MOCK_EXPLANATIONS["john3:16"]["theological"]
    partial = get_mock_explanation("1 John 3:16")
    assert partial.historical == MOCK_EXPLANATIONS["john3:16"]["historical"]
    assert partial.source == "mock"


def test_mock_default_for_unknown_reference():
    explanation = get_mock_explanation("Obadiah 1:4")
    assert explanation.application == DEFAULT_MOCK_EXPLANATION["application"]


def test_parse_sections():
    explanation = parse_explanation_sections(GENERATED)
    assert explanation.theological.startswith("God loves the world.")
    assert explanation.historical.startswith("Spoken to Nicodemus")
    assert explanation.application == "Trust and love others."
    assert explanation.source == "api"


def test_parse_sections_fills_placeholders():
    explanation = parse_explanation_sections("Theological Meaning: Grace alone.")
    assert explanation.theological == "Grace alone."
    assert explanation.historical == HISTORICAL_PLACEHOLDER
    assert explanation.application == APPLICATION_PLACEHOLDER


def test_explain_uses_api(monkeypatch):
    calls = _patch_post(monkeypatch, FakeResponse(200, {"data": {"text": GENERATED}}))
    explanation = explain_verse("John 3:16", "For God so loved the world", "NIV", use_mock=False, timeout=3)

    assert explanation.source == "api"
    assert calls[0]["timeout"] == 3
    prompt = calls[0]["json"]["prompt"]
    assert "Reference: John 3:16 (NIV)" in prompt
    assert '"For God so loved the world"' in prompt


def test_explain_timeout_falls_back_to_mock(monkeypatch):
    _patch_post(monkeypatch, requests.Timeout("slow"))
    explanation = explain_verse("Romans 8:28", "And we know", use_mock=False)
    assert explanation.source == "mock"
    assert explanation.theological == MOCK_EXPLANATIONS["rom8:28"]["theological"]


def test_explain_http_error_falls_back_to_mock(monkeypatch):
    _patch_post(monkeypatch, FakeResponse(502, {"error": "bad gateway"}))
    assert explain_verse("John 3:16", "text", use_mock=False).source == "mock"


def test_explain_empty_body_falls_back_to_mock(monkeypatch):
    _patch_post(monkeypatch, FakeResponse(200, {"data": {}}))
    assert explain_verse("John 3:16", "text", use_mock=False).source == "mock"


def test_explain_mock_mode_skips_network(monkeypatch):
    calls = _patch_post(monkeypatch, FakeResponse(200, {"text": GENERATED}))
    assert explain_verse("John 3:16", "text", use_mock=True).source == "mock"
    assert calls == []


def test_explain_defaults_to_mock_in_development(monkeypatch):
    calls = _patch_post(monkeypatch, FakeResponse(200, {"text": GENERATED}))
    monkeypatch.setattr(explain_mod, "USE_MOCK_EXPLANATIONS", False)
    monkeypatch.setattr(explain_mod, "is_development", lambda: True)
    assert explain_verse("John 3:16", "text").source == "mock"
    assert calls == []
