"""Goodreads rating lookup by scraping public book and search pages."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx
from bs4 import BeautifulSoup

from core.config import Settings, get_settings
from services.title_matcher import clean_isbn, match_title

logger = logging.getLogger(__name__)

BOOK_ID_PATTERN = re.compile(r'/book/show/(\d+)')
RATING_PATTERNS = [
    re.compile(r'class="RatingStatistics__rating"[^>]*>\s*([0-9.]+)\s*<'),
    re.compile(r'itemprop="ratingValue"[^>]*>\s*([0-9.]+)\s*<'),
    re.compile(r'"average_rating"\s*:\s*"?([0-9.]+)'),
]
RATINGS_COUNT_PATTERNS = [
    re.compile(r'([0-9,]+)\s*ratings'),
    re.compile(r'ratingCount[\'":\s]+([0-9,]+)'),
]
REVIEWS_COUNT_PATTERNS = [
    re.compile(r'([0-9,]+)\s*reviews'),
    re.compile(r'reviewCount[\'":\s]+([0-9,]+)'),
]
MINIRATING_PATTERN = re.compile(r'([0-9.]+)\s*avg\s*rating')
MINIRATING_COUNT_PATTERN = re.compile(r'([0-9,]+)\s*ratings?')
SEARCH_RESULTS_JSON = re.compile(r'window\.__SEARCH_RESULTS__\s*=\s*(\{.*?\});', re.DOTALL)


class GoodreadsError(Exception):
    """Goodreads could not be reached or refused the request."""
    pass


@dataclass
class GoodreadsRating:
    """Rating data for one Goodreads book."""

    goodreads_id: str
    rating: float  # 1-5 scale
    ratings_count: int
    reviews_count: int = 0
    book_url: str = ""


@dataclass
class GoodreadsSearchResult:
    """One row of a Goodreads search results page."""

    goodreads_id: str
    title: str
    author: str | None
    rating: float | None
    ratings_count: int | None
    image_url: str | None
    book_url: str


def _parse_count(raw: str | None) -> int:
    if not raw:
        return 0
    try:
        return int(str(raw).replace(',', ''))
    except ValueError:
        return 0


def _parse_float(raw: Any) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _first_match(patterns: list[re.Pattern[str]], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_book_id(url: str) -> str | None:
    """Pull the numeric id out of /book/show/12345-title or /book/show/12345.Title."""
    match = BOOK_ID_PATTERN.search(url or '')
    return match.group(1) if match else None



def parse_book_page(html: str, goodreads_id: str, book_url: str) -> GoodreadsRating | None:
    """
    Extract rating data from a Goodreads book page.

    Prefers the JSON-LD ``aggregateRating`` block and falls back to page markup.
    Returns None when no rating in (0, 5] can be found.
    """
    soup = BeautifulSoup(html, "html.parser")

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        aggregate = data.get("aggregateRating") if isinstance(data, dict) else None
        if isinstance(aggregate, dict):
            rating = _parse_float(aggregate.get("ratingValue")) or 0.0
            return GoodreadsRating(
                goodreads_id=goodreads_id,
                rating=rating,
                ratings_count=_parse_count(aggregate.get("ratingCount")),
                reviews_count=_parse_count(aggregate.get("reviewCount")),
                book_url=book_url,
            )

    raw_rating = _first_match(RATING_PATTERNS, html)
    rating = _parse_float(raw_rating)
    if rating is not None and 0 < rating <= 5:
        return GoodreadsRating(
            goodreads_id=goodreads_id,
            rating=rating,
            ratings_count=_parse_count(_first_match(RATINGS_COUNT_PATTERNS, html)),
            reviews_count=_parse_count(_first_match(REVIEWS_COUNT_PATTERNS, html)),
            book_url=book_url,
        )

    logger.debug("Goodreads: could not extract rating from book page %s", goodreads_id)
    return None


def parse_search_results(html: str, base_url: str = "https://www.goodreads.com") -> list[GoodreadsSearchResult]:
    """Parse a Goodreads search page, classic table layout first, then the embedded JSON layout."""
    results: list[GoodreadsSearchResult] = []
    soup = BeautifulSoup(html, "html.parser")

    for row in soup.select('tr[itemtype="http://schema.org/Book"]'):
        link = row.find("a", href=BOOK_ID_PATTERN)
        if link is None:
            continue
        goodreads_id = extract_book_id(link["href"])
        if not goodreads_id:
            continue

        title_el = row.select_one(".bookTitle")
        author_el = row.select_one(".authorName")
        minirating_el = row.select_one(".minirating")
        cover_el = row.select_one("img.bookCover")

        rating = None
        ratings_count = None
        if minirating_el is not None:
            minirating = minirating_el.get_text(" ", strip=True)
            rating_match = MINIRATING_PATTERN.search(minirating)
            rating = float(rating_match.group(1)) if rating_match else None
            # Count follows the average, e.g. "4.12 avg rating — 1,234 ratings"
            tail = minirating[rating_match.end():] if rating_match else minirating
            count_match = MINIRATING_COUNT_PATTERN.search(tail)
            ratings_count = _parse_count(count_match.group(1)) if count_match else None

        results.append(
            GoodreadsSearchResult(
                goodreads_id=goodreads_id,
                title=title_el.get_text(strip=True) if title_el else "",
                author=author_el.get_text(strip=True) if author_el else None,
                rating=rating,
                ratings_count=ratings_count,
                image_url=cover_el.get("src") if cover_el else None,
                book_url=f"{base_url}/book/show/{goodreads_id}",
            )
        )

    if results:
        return results

    match = SEARCH_RESULTS_JSON.search(html)
    if match:
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("Goodreads: embedded search results are not valid JSON")
            return results
        for item in data.get("results") or []:
            book_id = item.get("bookId")
            if not book_id:
                continue
            author = item.get("author")
            results.append(
                GoodreadsSearchResult(
                    goodreads_id=str(book_id),
                    title=item.get("title") or "",
                    author=author.get("name") if isinstance(author, dict) else None,
                    rating=_parse_float(item.get("avgRating")),
                    ratings_count=item.get("ratingsCount"),
                    image_url=item.get("imageUrl"),
                    book_url=f"{base_url}/book/show/{book_id}",
                )
            )

    return results


class GoodreadsClient:
    """
    Async Goodreads lookup client.

    Methods return None when Goodreads answers but has nothing usable, and
    raise GoodreadsError when the request itself fails (network, 429, 5xx),
    so callers can tell "no rating exists" from "try again later".
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.base_url = self.settings.goodreads_base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=self.settings.ratings_request_timeout,
            follow_redirects=True,
        )
        self._headers = {
            "User-Agent": self.settings.goodreads_user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, url: str, params: dict[str, str] | None = None) -> httpx.Response | None:
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as e:
            raise GoodreadsError(f"Goodreads request failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code == 429 or response.status_code >= 500:
            raise GoodreadsError(f"Goodreads returned HTTP {response.status_code}")
        if response.status_code >= 400:
            logger.warning("Goodreads returned HTTP %d for %s", response.status_code, url)
            return None
        return response

    async def fetch_by_id(self, goodreads_id: str) -> GoodreadsRating | None:
        """Fetch rating data for a known Goodreads book id."""
        book_url = f"{self.base_url}/book/show/{goodreads_id}"
        logger.debug("Goodreads: fetching book %s", goodreads_id)
        response = await self._get(book_url)
        if response is None:
            return None
        return parse_book_page(response.text, goodreads_id, book_url)

    async def search_by_isbn(self, isbn: str) -> GoodreadsRating | None:
        """Look up a book by ISBN-10 or ISBN-13; the first search row is taken."""
        compact = clean_isbn(isbn)
        if compact is None:
            logger.debug("Goodreads: skipping malformed ISBN %r", isbn)
            return None
        logger.debug("Goodreads: searching by ISBN %s", compact)
        return await self._search(compact, title=None)

    async def search_by_title(self, title: str, author: str | None = None) -> GoodreadsRating | None:
        """Look up a book by title, narrowed by author when given."""
        query = f"{title} {author}" if author else title
        logger.debug("Goodreads: searching by title %r", query)
        return await self._search(query, title=title)

    async def _search(self, query: str, title: str | None) -> GoodreadsRating | None:
        response = await self._get(f"{self.base_url}/search", params={"q": query, "search_type": "books"})
        if response is None:
            return None

        # Exact ISBN hits redirect straight to the book page
        final_url = str(response.url)
        if "/book/show/" in final_url:
            goodreads_id = extract_book_id(final_url)
            if goodreads_id:
                return parse_book_page(response.text, goodreads_id, final_url)

        results = parse_search_results(response.text, self.base_url)
        if not results:
            logger.debug("Goodreads: no results for %r", query)
            return None

        best = results[0]
        if title is not None:
            match = match_title(title, [{"title": r.title} for r in results])
            if match.index is not None:
                best = results[match.index]

        if best.rating and best.ratings_count:
            return GoodreadsRating(
                goodreads_id=best.goodreads_id,
                rating=best.rating,
                ratings_count=best.ratings_count,
                book_url=best.book_url,
            )

        # Search row lacked rating data, the book page has it
        return await self.fetch_by_id(best.goodreads_id)
