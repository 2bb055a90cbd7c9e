"""Answer-engine visibility checks used by post-publication rechecks."""

from __future__ import annotations

import logging
import re
from typing import Protocol

from services.directory import SqliteDirectory
from services.llm import OpenRouterClient
from services.validator import ContentValidationError, extract_json_payload

logger = logging.getLogger(__name__)

VISIBILITY_SYSTEM_PROMPT = (
    "You are a local business search assistant. Always respond with valid JSON only."
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class VisibilityChecker(Protocol):
    def cited_for(self, query: str, location_id: str) -> bool: ...


def build_visibility_prompt(query: str) -> str:
    return (
        f'Answer this question a local person might ask: "{query}"\n\n'
        "List the businesses you would recommend, most relevant first. "
        'Return JSON: {"businesses": ["Business Name", ...], "cited_url": "https://..." or null}'
    )


def name_matches(candidate: str, business_name: str) -> bool:
    """True when the business name appears inside the candidate, ignoring case."""
    left = candidate.strip().lower()
    right = business_name.strip().lower()
    if not left or not right:
        return False
    return right in left


class AnswerEngineVisibilityChecker:
    """Ask the answer-engine model the query and look for the business in its answer."""

    def __init__(self, llm_client: OpenRouterClient, directory: SqliteDirectory) -> None:
        self._llm_client = llm_client
        self._directory = directory

    def cited_for(self, query: str, location_id: str) -> bool:
        profile = self._directory.get_location_profile(location_id)
        if profile is None:
            raise LookupError(f"Unknown location: {location_id}")

        result = self._llm_client.ask_answer_engine(
            system_prompt=VISIBILITY_SYSTEM_PROMPT,
            user_prompt=build_visibility_prompt(query),
        )
        name = profile.business_name

        try:
            payload = extract_json_payload(result.content)
        except ContentValidationError:
            logger.info("Answer engine returned prose for %r; matching on raw text", query)
            payload = {}

        businesses = payload.get("businesses")
        if isinstance(businesses, list):
            if any(isinstance(item, str) and name_matches(item, name) for item in businesses):
                return True
        elif name.lower() in result.content.lower():
            return True

        slug = _NON_ALNUM.sub("", name.lower())
        if not slug:
            return False
        urls = list(result.citations)
        cited_url = payload.get("cited_url")
        if isinstance(cited_url, str):
            urls.append(cited_url)
        return any(slug in _NON_ALNUM.sub("", url.lower()) for url in urls)
