"""
Title matching utilities for picking the right Goodreads search result.

Goodreads search rows look like:
- "The Way of Kings (The Stormlight Archive, #1)"
- "Dune (Kindle Edition)"
while our catalog usually stores the bare title, sometimes with a subtitle.
"""

import re
import unicodedata
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Any


@dataclass
class TitleMatchResult:
    """Result of a title match operation."""
    matched: bool
    index: int | None  # position in the candidate list
    confidence: float  # 0.0 to 1.0
    match_method: str  # "title_exact", "title_contains", "title_fuzzy", "first_result", "none"
    normalized_title: str
    original_title: str


ISBN_CHARS = re.compile(r'[-\s]')
ISBN10_PATTERN = re.compile(r'^\d{9}[\dX]$')
ISBN13_PATTERN = re.compile(r'^\d{13}$')

# Goodreads appends series info in parentheses
SERIES_SUFFIXES = [
    re.compile(r'\s*\([^()]*#\s*\d+(?:\.\d+)?\)\s*$'),
    re.compile(r',?\s*(?:Book|Volume)\s+\d+\s*$', re.IGNORECASE),
    re.compile(r',?\s*Vol\.\s*\d+\s*$', re.IGNORECASE),
    re.compile(r',?\s*#\d+\s*$'),
    re.compile(r'\s*\[\s*Book\s+\d+\s*\]\s*$', re.IGNORECASE),
]

EDITION_SUFFIXES = [
    re.compile(r'\s*\((?:Kindle|Paperback|Hardcover|Mass Market Paperback|ebook)(?: Edition)?\)\s*$', re.IGNORECASE),
    re.compile(r'\s*\((?:Revised|Updated|Anniversary|Illustrated|Annotated)[^()]*Edition\)\s*$', re.IGNORECASE),
    re.compile(r'\s*\(Unabridged\)\s*$', re.IGNORECASE),
]

# Dashes split words; quotes and apostrophes join them ("Ender's" -> "enders")
_TITLE_TRANSLATION = str.maketrans({
    ';': ' ',
    '—': ' ',
    '–': ' ',
    '"': None,
    "'": None,
    '“': None,
    '”': None,
    '‘': None,
    '’': None,
    '…': None,
    '&': ' and ',
})
_NON_WORD = re.compile(r'[^\w\s]')


def clean_isbn(isbn: str | None) -> str | None:
    """
    Strip hyphens and spaces from an ISBN.

    Returns:
        The compact ISBN if it looks like an ISBN-10 or ISBN-13, None otherwise.
    """
    if not isbn:
        return None
    compact = ISBN_CHARS.sub('', isbn).upper()
    if ISBN10_PATTERN.match(compact) or ISBN13_PATTERN.match(compact):
        return compact
    return None


def _strip_suffixes(title: str) -> str:
    for pattern in (*EDITION_SUFFIXES, *SERIES_SUFFIXES):
        title = pattern.sub('', title)
    return title


def normalize_title(title: str, strip_subtitle: bool = False) -> str:
    """
    Reduce a title to lowercase words for comparison.

    Edition and series suffixes are dropped before punctuation is, since
    the patterns rely on the parentheses and '#'. With ``strip_subtitle``
    everything after the first colon goes too.
    """
    if not title:
        return ""

    text = _strip_suffixes(unicodedata.normalize('NFKD', title))
    if strip_subtitle:
        text = text.partition(':')[0]

    text = _NON_WORD.sub(' ', text.lower().translate(_TITLE_TRANSLATION))
    return ' '.join(text.split())


def similarity_ratio(s1: str, s2: str) -> float:
    """SequenceMatcher ratio, 0.0 when either side is empty."""
    if not s1 or not s2:
        return 0.0
    return SequenceMatcher(None, s1, s2).ratio()


def match_title(
    title: str,
    candidates: list[dict[str, Any]],
    threshold: float = 0.8,
) -> TitleMatchResult:
    """
    Pick the candidate whose title best matches ``title``.

    Strategy order:
    1. Exact match after normalization
    2. Containment either way (catalog title vs. title with subtitle)
    3. Best fuzzy ratio at or above ``threshold``
    4. The first candidate, since Goodreads ranks by relevance

    Args:
        title: Catalog title to match
        candidates: Search rows, each a dict with a 'title' key
        threshold: Minimum similarity ratio for a fuzzy match (0.0-1.0)

    Returns:
        TitleMatchResult; ``matched`` is False only when there are no candidates.
    """
    normalized_input = normalize_title(title)
    if not candidates:
        return TitleMatchResult(
            matched=False,
            index=None,
            confidence=0.0,
            match_method="none",
            normalized_title=normalized_input,
            original_title=title,
        )

    normalized = [normalize_title(c.get('title') or '') for c in candidates]

    for i, candidate_title in enumerate(normalized):
        if candidate_title and candidate_title == normalized_input:
            return TitleMatchResult(True, i, 1.0, "title_exact", normalized_input, title)

    if normalized_input:
        for i, candidate_title in enumerate(normalized):
            if candidate_title and (normalized_input in candidate_title or candidate_title in normalized_input):
                return TitleMatchResult(True, i, 0.95, "title_contains", normalized_input, title)

    scores = [similarity_ratio(normalized_input, t) for t in normalized]
    # max() keeps the earliest index on ties, i.e. Goodreads' ranking
    best_index = max(range(len(scores)), key=scores.__getitem__)
    if scores[best_index] >= threshold:
        return TitleMatchResult(True, best_index, scores[best_index], "title_fuzzy", normalized_input, title)

    return TitleMatchResult(True, 0, scores[0], "first_result", normalized_input, title)
