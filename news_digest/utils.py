from __future__ import annotations

import hashlib
import html
import re
from datetime import datetime, timezone
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from dateutil import parser as date_parser


TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "msclkid",
        "_ga",
        "mc_cid",
        "mc_eid",
    }
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def strip_html(value: str) -> str:
    text = re.sub(r"<[^>]+>", " ", value or "")
    text = html.unescape(text)
    return normalize_whitespace(text)


def stable_id(*parts: str) -> str:
    payload = "|".join(part for part in parts if part)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def normalize_url(url: str) -> str:
    """Canonical form of a link used as the dedup identity.

    Forces https, drops a leading ``www.``, known tracking parameters, the
    fragment and any trailing slash. Anything that does not parse as an
    absolute URL comes back trimmed but otherwise untouched.
    """
    raw = (url or "").strip()
    try:
        parsed = urlparse(raw)
        hostname = parsed.hostname
    except ValueError:
        return raw
    if not parsed.scheme or not parsed.netloc or not hostname:
        return raw

    scheme = "https" if parsed.scheme.lower() == "http" else parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]
    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS
    ]
    cleaned = urlunparse(
        parsed._replace(scheme=scheme, netloc=netloc, query=urlencode(query_pairs), fragment="")
    )
    return cleaned.rstrip("/")


def safe_sentence(text: str, max_chars: int = 220) -> str:
    cleaned = normalize_whitespace(text)
    if len(cleaned) <= max_chars:
        return cleaned
    truncated = cleaned[: max_chars - 1]
    period_idx = truncated.rfind(".")
    if period_idx > 80:
        return truncated[: period_idx + 1]
    return truncated.rstrip() + "..."


def ensure_terminal_punctuation(text: str) -> str:
    cleaned = normalize_whitespace(text)
    if not cleaned or cleaned[-1] in ".!?":
        return cleaned
    if cleaned.endswith("..."):
        return cleaned
    return cleaned + "."


def first_sentences(text: str, count: int = 2) -> str:
    sentences = re.split(r"(?<=[.!?])\s+", normalize_whitespace(text))
    return " ".join(sentence for sentence in sentences[:count] if sentence)


def parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, TypeError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()
