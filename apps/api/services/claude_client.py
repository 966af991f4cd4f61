"""Anthropic Messages API wrapper for generating book summaries."""

import logging
from typing import Any

import httpx

from core.config import Settings, get_settings
from db.models import SummaryResult, SummaryType

logger = logging.getLogger(__name__)

# Keep prompts short: the model only sees catalog metadata, not the book text
MAX_DESCRIPTION_CHARS = 4000
MAX_CONTENT_CHARS = 12000

SUMMARY_INSTRUCTIONS: dict[SummaryType, str] = {
    SummaryType.OVERVIEW: (
        "Write a concise overview of this book in 2-3 short paragraphs: what it is about, "
        "who it is for and why it matters. Avoid major spoilers."
    ),
    SummaryType.KEY_POINTS: (
        "List the 5-7 most important ideas or takeaways of this book as a bulleted list. "
        "Each bullet is one or two sentences."
    ),
    SummaryType.TOPICS: (
        "List the main topics and themes this book covers as a bulleted list of short "
        "phrases, most central first."
    ),
    SummaryType.READING_GUIDE: (
        "Write a short reading guide for this book: suggested approach, what to pay "
        "attention to, and 3-5 discussion questions."
    ),
}


class ClaudeError(Exception):
    """Base exception for AI summary generation."""
    pass


class ClaudeAPIError(ClaudeError):
    """The Messages API answered with an error status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Anthropic API error {status_code}: {message}")


def build_prompt(
    title: str,
    description: str | None,
    extracted_content: str | None,
    summary_type: SummaryType,
) -> str:
    """Assemble the user prompt for one summary type."""
    parts = [f"Book title: {title}"]
    if description and description.strip():
        parts.append(f"Description:\n{description.strip()[:MAX_DESCRIPTION_CHARS]}")
    if extracted_content and extracted_content.strip():
        parts.append(f"Excerpt from the book:\n{extracted_content.strip()[:MAX_CONTENT_CHARS]}")
    parts.append(SUMMARY_INSTRUCTIONS[summary_type])
    parts.append(
        "If you do not have enough information to say anything specific about this book, "
        "reply with an empty message."
    )
    return "\n\n".join(parts)


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    input_price_per_mtok: float,
    output_price_per_mtok: float,
) -> float:
    """USD cost of one call from token usage and per-million-token prices."""
    return (input_tokens * input_price_per_mtok + output_tokens * output_price_per_mtok) / 1_000_000


class ClaudeSummaryClient:
    """Generates summaries through the Anthropic Messages API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.model = self.settings.ai_model
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.settings.ai_request_timeout)

    @property
    def configured(self) -> bool:
        return self.settings.ai_configured

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def generate(
        self,
        title: str,
        description: str | None,
        extracted_content: str | None,
        summary_type: SummaryType,
    ) -> SummaryResult | None:
        """
        Generate one summary.

        Returns:
            SummaryResult with usage and cost, or None if the model produced no text.

        Raises:
            ClaudeError: No API key, or the request could not be sent.
            ClaudeAPIError: The API answered with a non-2xx status.
        """
        if not self.configured:
            raise ClaudeError("ANTHROPIC_API_KEY is not configured")

        payload = {
            "model": self.model,
            "max_tokens": self.settings.ai_max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": build_prompt(title, description, extracted_content, summary_type),
                }
            ],
        }
        headers = {
            "x-api-key": self.settings.anthropic_api_key or "",
            "anthropic-version": self.settings.anthropic_version,
            "content-type": "application/json",
        }

        try:
            response = await self._client.post(self.settings.anthropic_api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ClaudeError(f"Anthropic request failed: {e}") from e

        if response.status_code >= 400:
            raise ClaudeAPIError(response.status_code, _error_message(response))

        data = response.json()
        content = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        ).strip()
        if not content:
            logger.debug("Empty %s generation for %r", summary_type.value, title)
            return None

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("input_tokens") or 0)
        output_tokens = int(usage.get("output_tokens") or 0)

        return SummaryResult(
            content=content,
            model_used=data.get("model") or self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=estimate_cost(
                input_tokens,
                output_tokens,
                self.settings.ai_input_price_per_mtok,
                self.settings.ai_output_price_per_mtok,
            ),
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message") or body["error"])
    return str(body)[:200]
