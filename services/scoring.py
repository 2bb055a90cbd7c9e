"""Heuristic answer-engine readiness score for draft content."""

from __future__ import annotations

import re

from models import LocationProfile

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

_GENERIC_OPENERS = (
    "welcome",
    "check out",
    "hello",
    "hi ",
    "thanks for",
    "click",
)

_CTA_PHRASES = (
    "call us",
    "call today",
    "reserve",
    "book ",
    "book online",
    "visit us",
    "visit ",
    "order online",
    "stop by",
    "schedule",
    "contact us",
)

# Weights sum to 100.
_OPENER_NAME = 12
_OPENER_CITY = 8
_OPENER_DIRECT = 5
_COVER_NAME = 10
_COVER_CITY = 8
_COVER_CATEGORY = 7
_CTA = 15
_TITLE_CITY = 4
_TITLE_NAME = 4
_TITLE_LENGTH = 2
_TITLE_MAX_CHARS = 60


def score_content(body: str, title: str, profile: LocationProfile) -> int:
    """Score content 0-100 on answer-first structure, local coverage, depth, and CTA."""
    text = body.strip()
    if not text:
        return 0

    lowered = text.lower()
    name = profile.business_name.strip().lower()
    city = (profile.city or "").strip().lower()
    categories = [category.strip().lower() for category in profile.categories if category.strip()]

    score = 0

    opener = _SENTENCE_SPLIT.split(text, maxsplit=1)[0].lower()
    opener_local = False
    if name and name in opener:
        score += _OPENER_NAME
        opener_local = True
    if city and city in opener:
        score += _OPENER_CITY
        opener_local = True
    if opener_local and not opener.startswith(_GENERIC_OPENERS):
        score += _OPENER_DIRECT

    if name and name in lowered:
        score += _COVER_NAME
    if city and city in lowered:
        score += _COVER_CITY
    if any(category in lowered for category in categories):
        score += _COVER_CATEGORY

    score += _depth_points(len(text.split()))

    if any(phrase in lowered for phrase in _CTA_PHRASES):
        score += _CTA

    title_lower = title.strip().lower()
    if title_lower:
        if city and city in title_lower:
            score += _TITLE_CITY
        if name and name in title_lower:
            score += _TITLE_NAME
        if len(title.strip()) <= _TITLE_MAX_CHARS:
            score += _TITLE_LENGTH

    return max(0, min(100, int(score)))


def _depth_points(word_count: int) -> int:
    if word_count < 80:
        return 0
    if word_count < 150:
        return 8
    if word_count < 250:
        return 16
    if word_count <= 400:
        return 25
    if word_count <= 600:
        return 20
    return 14
