"""OpenRouter-backed implementation of the AI collaborator protocols.

:class:`OpenRouterAnalyst` implements both
:class:`~newsradar.scraper.collaborators.ArticleLinkClassifier` and
:class:`~newsradar.scraper.collaborators.ContentAnalyzer` by calling the
OpenRouter chat completions API with ``temperature=0`` and parsing a JSON
answer.

Error handling maps every failure to
:class:`~newsradar.core.exceptions.AIServiceError`:

- HTTP 429 -> rate limited
- HTTP 401/403 -> invalid API key
- other non-2xx, network errors and unparsable answers
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any

import httpx

from newsradar.config.settings import Settings
from newsradar.core.exceptions import AIServiceError
from newsradar.scraper.collaborators import ContentAnalysis
from newsradar.scraper.config import (
    CONTENT_ANALYZER_SYSTEM_PROMPT,
    LINK_CLASSIFIER_SYSTEM_PROMPT,
    MAX_ANALYSIS_CONTENT_CHARS,
    OPENROUTER_API_URL,
)

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


async def chat_completion(
    client: httpx.AsyncClient,
    *,
    model: str,
    system_prompt: str,
    user_message: str,
    api_key: str,
    timeout: float | None = None,
) -> dict[str, Any]:
    """POST one chat completion to OpenRouter and return the parsed response.

    Raises:
        AIServiceError: On non-2xx responses, network errors or invalid JSON.
    """
    payload: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
        "temperature": 0,
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    try:
        response = await client.post(OPENROUTER_API_URL, json=payload, headers=headers, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        code = exc.response.status_code
        if code == 429:
            raise AIServiceError("openrouter: HTTP 429, rate limited", status_code=code) from exc
        if code in (401, 403):
            raise AIServiceError(f"openrouter: HTTP {code}, invalid API key", status_code=code) from exc
        raise AIServiceError(
            f"openrouter: HTTP {code}, {exc.response.text[:200]}", status_code=code
        ) from exc
    except httpx.RequestError as exc:
        raise AIServiceError(f"openrouter: network error, {exc}") from exc

    try:
        return response.json()  # type: ignore[no-any-return]
    except Exception as exc:  # noqa: BLE001
        raise AIServiceError(f"openrouter: JSON parse error, {exc}") from exc


def extract_message_json(response: dict[str, Any]) -> dict[str, Any]:
    """Return the JSON object in the first choice's message content.

    Tolerates code fences and prose around the object.

    Raises:
        AIServiceError: If the response carries no JSON object.
    """
    try:
        content = response["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as exc:
        raise AIServiceError("openrouter: response has no message content") from exc

    match = _JSON_OBJECT_RE.search(content)
    if not match:
        raise AIServiceError("openrouter: answer is not JSON")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise AIServiceError(f"openrouter: answer is not valid JSON, {exc}") from exc
    if not isinstance(data, dict):
        raise AIServiceError("openrouter: answer is not a JSON object")
    return data


def parse_publish_date(value: Any) -> datetime | None:
    """Parse an ISO 8601 date string; anything else yields ``None``."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("scraper: unparsable publish date from analyzer: %r", value)
        return None


class OpenRouterAnalyst:
    """Link classifier and content analyzer backed by one OpenRouter model.

    Args:
        client: Shared HTTP client.
        api_key: OpenRouter API key.
        model: Model identifier.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        model: str,
        timeout: float | None = None,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient) -> OpenRouterAnalyst | None:
        """Build an analyst, or return ``None`` when no API key is configured."""
        if not settings.openrouter_api_key:
            return None
        return cls(
            client,
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model,
            timeout=settings.ai_timeout_seconds,
        )

    async def _ask(self, system_prompt: str, user_message: str) -> dict[str, Any]:
        response = await chat_completion(
            self.client,
            model=self.model,
            system_prompt=system_prompt,
            user_message=user_message,
            api_key=self.api_key,
            timeout=self.timeout,
        )
        return extract_message_json(response)

    async def classify(self, structured_text: str, context_hint: str | None) -> list[str]:
        message = structured_text
        if context_hint:
            message = f"Source context: {context_hint}\n\n{structured_text}"
        data = await self._ask(LINK_CLASSIFIER_SYSTEM_PROMPT, message)
        urls = data.get("article_urls")
        if not isinstance(urls, list):
            raise AIServiceError("openrouter: 'article_urls' missing from classifier answer")
        return [u.strip() for u in urls if isinstance(u, str) and u.strip()]

    async def analyze(self, content: str, title: str, html_snippet: str) -> ContentAnalysis:
        message = (
            f"Title: {title}\n\n"
            f"Article text:\n{content[:MAX_ANALYSIS_CONTENT_CHARS]}\n\n"
            f"HTML snippet:\n{html_snippet}"
        )
        data = await self._ask(CONTENT_ANALYZER_SYSTEM_PROMPT, message)
        keywords = data.get("keywords") or []
        summary = data.get("summary")
        return ContentAnalysis(
            keywords=[str(k).strip() for k in keywords if str(k).strip()]
            if isinstance(keywords, list)
            else [],
            summary=summary.strip() if isinstance(summary, str) and summary.strip() else None,
            publish_date=parse_publish_date(data.get("publish_date")),
        )
