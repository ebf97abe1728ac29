# Turns an OCR service response into the text we reply with.
#
# The service answers with {"regions": [{"lines": [{"words": [{"text": ...}]}]}]}.
# Binary submissions hand us the body as a JSON string, URL submissions may
# hand us an already-decoded object, so every body is first classified as
# RawBody (undecodable text) or StructuredBody (decoded JSON value).

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator

NO_RESULT_REPLY = "Something's amiss, please try again."
NO_TEXT_REPLY = "Could not find text in this image. :( Try again?"


@dataclass(frozen=True)
class RawBody:
    text: str


@dataclass(frozen=True)
class StructuredBody:
    data: Any


OcrBody = RawBody | StructuredBody


def classify_body(body: Any) -> OcrBody:
    if isinstance(body, (RawBody, StructuredBody)):
        return body
    if isinstance(body, (bytes, bytearray)):
        body = bytes(body).decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            return StructuredBody(json.loads(body))
        except ValueError:
            return RawBody(body)
    return StructuredBody(body)


def _items(container: Any, key: str) -> list:
    if not isinstance(container, dict):
        return []
    value = container.get(key)
    return value if isinstance(value, list) else []


def iter_words(regions: list) -> Iterator[str]:
    """Yield word texts in document order: region, then line, then word."""
    for region in regions:
        for line in _items(region, "lines"):
            for word in _items(line, "words"):
                if isinstance(word, dict) and word.get("text") is not None:
                    yield str(word["text"])


def extract_text(body: Any) -> str:
    """Return the words found in an OCR response, or a fallback reply."""
    parsed = classify_body(body)
    if isinstance(parsed, RawBody) or not isinstance(parsed.data, dict):
        return NO_RESULT_REPLY

    regions = parsed.data.get("regions")
    if regions is None:
        return NO_RESULT_REPLY
    if not isinstance(regions, list):
        regions = []

    text = " ".join(iter_words(regions))
    return text if text.strip() else NO_TEXT_REPLY
