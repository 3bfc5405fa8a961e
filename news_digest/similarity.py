from __future__ import annotations

import re
from datetime import datetime
from functools import lru_cache

import Levenshtein

from .models import Article


STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "from", "as", "is", "was", "are", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did",
    }
)
COMMON_WORDS = STOP_WORDS | {
    "will", "would", "should", "could", "may", "might", "must", "can", "says", "said",
}

TITLE_SHORT_CIRCUIT = 0.6
CONTAINMENT_SHORT_CIRCUIT = 0.7
QUOTE_SHORT_CIRCUIT = 0.5

PUBLISHER_PREFIXES = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^BBC:\s*",
        r"^CNN\s*-\s*",
        r"^NPR\s*-\s*",
        r"^Al Jazeera\s*[:|]\s*",
        r"^The Guardian\s*-\s*",
        r"^Reuters\s*-\s*",
        r"^AP News\s*-\s*",
        r"^Bloomberg\s*-\s*",
        r"^Financial Times\s*-\s*",
    )
]
LABEL_PREFIX = re.compile(
    r"^(?:LIVE|BREAKING|UPDATE|EXCLUSIVE|VIDEO|WATCH|READ|ANALYSIS|OPINION):\s*", re.IGNORECASE
)
BRACKET_PREFIX = re.compile(r"^\[[^\]]+\]\s*")
TRAILING_DATE = re.compile(r"\s*[-–—]\s*\w+\s+\d{1,2},?\s+\d{4}$")
TRAILING_ISO_DATE = re.compile(r"\s*\(\d{4}-\d{2}-\d{2}\)$")
TRAILING_PUBLISHER = re.compile(r"\s*[-–—|]\s*\w+\s*$")

QUOTE_PATTERN = re.compile(r"[\"']([^\"']{10,})[\"']")
LOCATION_PATTERNS = [
    re.compile(r"\b(?:in|at|near|from)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\b"),
    re.compile(r"\b(?:in|at)\s+the\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\b"),
]
NUMBER_PATTERNS = [
    re.compile(
        r"\b\d+(?:,\d{3})*(?:\.\d+)?\s*(?:dead|killed|injured|people|million|billion|percent|%)",
        re.IGNORECASE,
    ),
    re.compile(r"\$\d+(?:,\d{3})*(?:\.\d+)?(?:\s*(?:million|billion|k))?", re.IGNORECASE),
    re.compile(r"\b\d+-\d+\b"),
    re.compile(r"\b\d+(?:,\d{3})+\b"),
]
KEYWORD_PATTERN = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")


def strip_title_boilerplate(title: str) -> str:
    """Remove publisher tags, labels like "LIVE:", bracketed prefixes and trailing dates."""
    cleaned = title or ""
    for pattern in PUBLISHER_PREFIXES:
        cleaned = pattern.sub("", cleaned)
    cleaned = LABEL_PREFIX.sub("", cleaned)
    cleaned = BRACKET_PREFIX.sub("", cleaned)
    cleaned = TRAILING_DATE.sub("", cleaned)
    cleaned = TRAILING_ISO_DATE.sub("", cleaned)
    cleaned = TRAILING_PUBLISHER.sub("", cleaned)
    return cleaned.strip()


@lru_cache(maxsize=4096)
def normalize_title(title: str) -> str:
    cleaned = re.sub(r"[^\w\s]", " ", strip_title_boilerplate(title).lower())
    return " ".join(word for word in cleaned.split() if word not in STOP_WORDS)


def jaccard(left: set[str] | frozenset[str], right: set[str] | frozenset[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def word_jaccard(a: str, b: str) -> float:
    return jaccard(set(normalize_title(a).split()), set(normalize_title(b).split()))


def _ngrams(text: str, size: int = 3) -> set[str]:
    if len(text) < size:
        return {text}
    return {text[idx : idx + size] for idx in range(len(text) - size + 1)}


def title_similarity(a: str, b: str) -> float:
    norm_a = normalize_title(a)
    norm_b = normalize_title(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0

    words = word_jaccard(a, b)
    trigrams = jaccard(_ngrams(norm_a), _ngrams(norm_b))
    edit = 1 - Levenshtein.distance(norm_a, norm_b) / max(len(norm_a), len(norm_b))
    return min(1.0, words * 0.6 + trigrams * 0.25 + edit * 0.15)


def containment(a: str, b: str) -> float:
    """Share of the shorter title's significant words found in the longer one."""
    words_a = {word for word in normalize_title(a).split() if len(word) > 2}
    words_b = {word for word in normalize_title(b).split() if len(word) > 2}
    if not words_a or not words_b:
        return 0.0
    shorter = min(len(words_a), len(words_b))
    return len(words_a & words_b) / shorter


def extract_quotes(text: str) -> set[str]:
    quotes = set()
    for match in QUOTE_PATTERN.finditer(text):
        quote = match.group(1).lower().strip()
        if len(quote) >= 10:
            quotes.add(quote)
    return quotes


def extract_locations(text: str) -> set[str]:
    locations = set()
    for pattern in LOCATION_PATTERNS:
        for match in pattern.finditer(text):
            location = match.group(1).lower()
            if len(location) >= 3:
                locations.add(location)
    return locations


def extract_numbers(text: str) -> set[str]:
    numbers = set()
    for pattern in NUMBER_PATTERNS:
        numbers.update(match.group(0).lower().strip() for match in pattern.finditer(text))
    return numbers


def extract_keywords(text: str) -> set[str]:
    keywords = set()
    for match in KEYWORD_PATTERN.finditer(text):
        word = match.group(0)
        normalized = word.lower()
        if normalized not in COMMON_WORDS and len(word) >= 3:
            keywords.add(normalized)
    return keywords


def temporal_boost(date_a: datetime, date_b: datetime) -> float:
    hours = abs((date_a - date_b).total_seconds()) / 3600
    if hours < 2:
        return 1.15
    if hours < 6:
        return 1.08
    if hours < 24:
        return 1.0
    return 0.95


def _bounded(score: float) -> float:
    return max(0.0, min(1.0, score))


def similarity_score(
    title_a: str,
    desc_a: str,
    title_b: str,
    desc_b: str,
    date_a: datetime | None = None,
    date_b: datetime | None = None,
) -> float:
    """Composite similarity of two headlines (with descriptions) in [0, 1].

    Cheap conclusive signals short-circuit first: a strong title match, one
    title containing the other, a shared verbatim quote. Failing those the
    score falls through numeric/keyword agreement, a description match, and
    finally a weighted blend scaled by publication-time proximity.
    """
    title_a = title_a or ""
    title_b = title_b or ""
    desc_a = desc_a or ""
    desc_b = desc_b or ""

    title_sim = title_similarity(title_a, title_b)
    if title_sim >= TITLE_SHORT_CIRCUIT:
        return _bounded(title_sim)

    contained = containment(title_a, title_b)
    if contained >= CONTAINMENT_SHORT_CIRCUIT:
        return _bounded(max(title_sim, contained * 0.9))

    text_a = f"{title_a} {desc_a}"
    text_b = f"{title_b} {desc_b}"
    keyword_sim = jaccard(extract_keywords(text_a), extract_keywords(text_b))
    number_sim = jaccard(extract_numbers(text_a), extract_numbers(text_b))
    quote_sim = jaccard(extract_quotes(text_a), extract_quotes(text_b))
    location_sim = jaccard(extract_locations(text_a), extract_locations(text_b))

    if quote_sim >= QUOTE_SHORT_CIRCUIT:
        return _bounded(max(title_sim, quote_sim * 0.95))
    if number_sim >= 0.5 and keyword_sim >= 0.4:
        return _bounded(max(title_sim, (number_sim + keyword_sim) / 2))
    if keyword_sim >= 0.5:
        return _bounded(max(title_sim, keyword_sim * 0.85))

    desc_sim = word_jaccard(desc_a, desc_b) if desc_a and desc_b else 0.0
    if title_sim < 0.3 and desc_sim > 0.5:
        return _bounded(desc_sim * 0.75)

    score = (
        contained * 0.25
        + title_sim * 0.2
        + keyword_sim * 0.2
        + number_sim * 0.15
        + quote_sim * 0.1
        + location_sim * 0.05
        + desc_sim * 0.05
    )
    if date_a is not None and date_b is not None:
        score *= temporal_boost(date_a, date_b)
    return _bounded(score)


def article_similarity(a: Article, b: Article) -> float:
    return similarity_score(a.title, a.description, b.title, b.description, a.pub_date, b.pub_date)
