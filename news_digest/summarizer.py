##########################################################################################
#
# Script name: summarizer.py
#
# Description: Section ranking and newsletter overview through the OpenAI API, with a
#              heuristic fallback whenever the model cannot be used.
#
##########################################################################################

import json
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any

from openai import APIConnectionError, APIError, OpenAI, RateLimitError
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import (
    DEFAULT_MODEL,
    DEFAULT_ORACLE_TIMEOUT_SECONDS,
    FALLBACK_MODEL,
    HIGHLIGHT_COUNT,
    MAX_ALREADY_SELECTED_TITLES,
    MAX_INPUT_ARTICLES,
    MAX_RANKED_ITEMS,
    MIN_RANKED_ITEMS,
    ORACLE_RETRY_ATTEMPTS,
    SECTION_BY_KEY,
    SUMMARY_MAX_CHARS,
    SectionKey,
)
from .models import AiMetadata, Article, SectionItem
from .utils import (
    ensure_terminal_punctuation,
    first_sentences,
    normalize_url,
    normalize_whitespace,
    safe_sentence,
    strip_html,
)


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    'You are the editor of a daily news briefing. You rank and summarize news articles '
    'for one newsletter section at a time. Return strict JSON only, no markdown.'
)
OVERVIEW_SYSTEM_PROMPT = 'You write the opening of a daily news briefing. Return strict JSON only, no markdown.'

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ****************************************************************************************
# Exceptions
# ****************************************************************************************


class Error(Exception):
    pass


class OracleResponseError(Error):
    """The model answered but the answer could not be used."""


# ****************************************************************************************
# Data
# ****************************************************************************************


@dataclass
class PlanResult:
    section: list[SectionItem]
    overview: str
    summary: str
    highlights: list[SectionItem]
    ai_metadata: AiMetadata


@dataclass
class OverviewResult:
    overview: str
    summary: str
    highlights: list[SectionItem]
    ai_metadata: AiMetadata


# ****************************************************************************************
# Functions
# ****************************************************************************************


@lru_cache(maxsize=4)
def load_system_prompt(path: str | None = None) -> str:
    prompt_path = path or os.getenv('NEWSLETTER_SYSTEM_PROMPT_FILE')
    if not prompt_path:
        return DEFAULT_SYSTEM_PROMPT
    try:
        content = Path(prompt_path).read_text(encoding='utf-8').strip()
    except OSError as exc:
        log.warning('Failed reading system prompt file %s: %s', prompt_path, exc)
        return DEFAULT_SYSTEM_PROMPT
    return content or DEFAULT_SYSTEM_PROMPT


def fallback_summary(article: Article) -> str:
    description = strip_html(article.description)
    if description:
        return ensure_terminal_punctuation(safe_sentence(first_sentences(description, 2), SUMMARY_MAX_CHARS))
    prefix = f'{article.publisher}: ' if article.publisher else ''
    return ensure_terminal_punctuation(safe_sentence(f'{prefix}{article.title}', 200))


def summarize_article(article: Article, generated: str | None = None) -> str:
    """Feed description when it says something, else the model's line, else a constructed one."""
    description = safe_sentence(strip_html(article.description), SUMMARY_MAX_CHARS)
    if len(description) > 20:
        return ensure_terminal_punctuation(description)
    generated_text = safe_sentence(strip_html(generated or ''), SUMMARY_MAX_CHARS)
    if len(generated_text) > 10:
        return ensure_terminal_punctuation(generated_text)
    return fallback_summary(article)


def build_section_item(article: Article, generated: str | None = None) -> SectionItem:
    return SectionItem(
        title=normalize_whitespace(article.title),
        summary=summarize_article(article, generated),
        link=article.link,
        publisher=article.publisher,
        slug=article.slug,
        pub_date=article.pub_date,
    )


def _heuristic_score(article: Article, section_key: SectionKey) -> int:
    section = SECTION_BY_KEY[section_key]
    hints = {hint.lower() for hint in article.section_hints}
    context = f'{article.topic} {article.title} {article.publisher}'.lower()
    score = 3 if section.hint in hints else 0
    if any(pattern.search(context) for pattern in section.keywords):
        score += 2
    if section_key is SectionKey.WILD_CARD:
        score += 2 if 'wildcard' in hints else 1
    return max(1, score)


def heuristic_rank(articles: Sequence[Article], section_key: SectionKey) -> list[SectionItem]:
    """Rank by hint match, keyword match and recency, one item per link, up to the section limit."""
    limit = SECTION_BY_KEY[section_key].limit
    ranked = sorted(
        articles,
        key=lambda article: (_heuristic_score(article, section_key), article.pub_date or _EPOCH),
        reverse=True,
    )
    seen: set[str] = set()
    selected: list[SectionItem] = []
    for article in ranked:
        if len(selected) >= limit:
            break
        link_key = normalize_url(article.link)
        if link_key in seen:
            continue
        seen.add(link_key)
        selected.append(build_section_item(article))
    return selected


def fallback_highlights(items: Sequence[SectionItem], count: int = HIGHLIGHT_COUNT) -> list[SectionItem]:
    seen: set[str] = set()
    highlights: list[SectionItem] = []
    for item in items:
        link_key = normalize_url(item.link)
        if link_key in seen:
            continue
        seen.add(link_key)
        highlights.append(item)
        if len(highlights) >= count:
            break
    return highlights


def _plural(count: int, word: str, plural: str | None = None) -> str:
    return f'{count} {word}' if count == 1 else f'{count} {plural or word + "s"}'


def _article_rows(records: Sequence[tuple[str, Article]]) -> list[dict[str, Any]]:
    return [
        {
            'id': record_id,
            'title': normalize_whitespace(article.title),
            'publisher': article.publisher,
            'topic': article.topic,
            'hints': list(article.section_hints),
            'summary_input': safe_sentence(strip_html(article.description), 360),
        }
        for record_id, article in records
    ]


def _titles_block(titles: Sequence[str]) -> str:
    if not titles:
        return ''
    listed = '\n'.join(f'{idx}. {title}' for idx, title in enumerate(titles, start=1))
    return (
        'IMPORTANT: avoid stories already covered in other sections. Recently selected titles:\n'
        f'{listed}\n\n'
    )


def ranking_prompt(section_key: SectionKey, rows: list[dict[str, Any]], titles: Sequence[str]) -> str:
    section = SECTION_BY_KEY[section_key]
    return (
        f'Section: {section.label} ({section_key.value})\n'
        f'Focus lens: {section.lens}.\n'
        'Rank the most relevant articles for this section by impact, timeliness, credibility, '
        'uniqueness and reader engagement, best first.\n\n'
        f'{_titles_block(titles)}'
        f'Return up to {min(section.limit, MAX_RANKED_ITEMS)} items. Write a one sentence "summary" '
        '(max 50 words) only when the input summary is inadequate, otherwise use an empty string.\n'
        'Input JSON:\n'
        f'{json.dumps(rows, ensure_ascii=True)}\n\n'
        'Return JSON object with exact shape:\n'
        '{"overview":"...","items":[{"id":"a001","summary":"..."}]}'
    )


def simple_ranking_prompt(section_key: SectionKey, rows: list[dict[str, Any]], titles: Sequence[str]) -> str:
    return (
        f'Pick the top {section_key.value} articles by importance.\n'
        f'{_titles_block(titles)}'
        'Input JSON:\n'
        f'{json.dumps(rows, ensure_ascii=True)}\n\n'
        'Return only: {"items":[{"id":"a001","summary":""}]}'
    )


def overview_prompt(rows: list[dict[str, Any]]) -> str:
    return (
        'These are the stories in today\'s newsletter, grouped by section.\n'
        'Write:\n'
        '1) "overview" = 2-3 sentences introducing the day\'s news.\n'
        '2) "summary" = one sentence capturing the main theme.\n'
        f'3) "highlights" = the ids of the {HIGHLIGHT_COUNT} most important stories, best first.\n'
        'Input JSON:\n'
        f'{json.dumps(rows, ensure_ascii=True)}\n\n'
        'Return JSON object with exact shape:\n'
        '{"overview":"...","summary":"...","highlights":["a001"]}'
    )


def _parse_json(content: str | None) -> dict[str, Any]:
    try:
        payload = json.loads(content or '')
    except json.JSONDecodeError as exc:
        raise OracleResponseError(f'Model returned invalid JSON: {exc}') from exc
    if not isinstance(payload, dict):
        raise OracleResponseError('Model returned a non-object JSON payload')
    return payload


def parse_ranked_items(content: str | None, records: Sequence[tuple[str, Article]]) -> tuple[list[SectionItem], str]:
    """Validate a ranking response against the ids that were sent."""
    payload = _parse_json(content)
    by_id = dict(records)
    rows = payload.get('items')
    if not isinstance(rows, list):
        raise OracleResponseError('Model response has no items list')

    items: list[SectionItem] = []
    used: set[str] = set()
    unknown: list[str] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        row_id = str(row.get('id') or '').strip().lower()
        article = by_id.get(row_id)
        if article is None:
            unknown.append(row_id)
            continue
        if row_id in used:
            continue
        used.add(row_id)
        items.append(build_section_item(article, str(row.get('summary') or '')))
        if len(items) >= MAX_RANKED_ITEMS:
            break

    required = min(MIN_RANKED_ITEMS, len(records))
    if len(items) < required:
        raise OracleResponseError(
            f'Model returned {len(items)} usable items, need {required} (unknown ids: {unknown[:5]})'
        )
    return items, normalize_whitespace(str(payload.get('overview') or ''))


# ****************************************************************************************
# Classes
# ****************************************************************************************


class SummarizationOracle:
    """Ranks section candidates and writes the newsletter overview.

    Never raises for model trouble: a missing key, transport failure, rate
    limit or unusable answer yields a heuristic result flagged with
    ``used_fallback`` and a reason.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: Any = None,
        system_prompt: str | None = None,
        retry_wait: Any = None,
    ) -> None:
        self.model = model or os.getenv('OPENAI_MODEL') or DEFAULT_MODEL
        self.timeout = timeout or float(os.getenv('ORACLE_TIMEOUT_SECONDS') or DEFAULT_ORACLE_TIMEOUT_SECONDS)
        self.system_prompt = system_prompt
        self.client = client
        if self.client is None:
            api_key = api_key or os.getenv('OPENAI_API_KEY')
            if api_key:
                self.client = OpenAI(
                    api_key=api_key,
                    base_url=base_url or os.getenv('OPENAI_BASE_URL') or None,
                    timeout=self.timeout,
                    max_retries=0,
                )
        self._complete = retry(
            retry=retry_if_exception_type(APIConnectionError),
            stop=stop_after_attempt(ORACLE_RETRY_ATTEMPTS),
            wait=retry_wait or wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )(self._request)

    def _request(self, system_prompt: str, user_prompt: str) -> str | None:
        response = self.client.chat.completions.create(
            model=self.model,
            response_format={'type': 'json_object'},
            messages=[
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': user_prompt},
            ],
            timeout=self.timeout,
        )
        return response.choices[0].message.content

    def _fallback_plan(self, articles: Sequence[Article], section_key: SectionKey, reason: str) -> PlanResult:
        log.warning('Using heuristic ranking for %s: %s', section_key.value, reason)
        label = SECTION_BY_KEY[section_key].label
        items = heuristic_rank(articles, section_key)
        if items:
            overview = f'Fallback selection for {label} featuring {_plural(len(items), "article")}.'
            summary = f'Curated {_plural(len(items), label + " article")} without model assistance.'
        else:
            overview = f'No suitable articles available for {label}.'
            summary = f'Unable to assemble a {label} section without model assistance.'
        return PlanResult(
            section=items,
            overview=overview,
            summary=summary,
            highlights=items[:HIGHLIGHT_COUNT],
            ai_metadata=AiMetadata(model=FALLBACK_MODEL, used_fallback=True, fallback_reason=reason),
        )

    def rank_section(
        self,
        articles: Sequence[Article],
        section_key: SectionKey,
        already_selected_titles: Sequence[str] = (),
        system_prompt: str | None = None,
    ) -> PlanResult:
        if not articles:
            return self._fallback_plan(articles, section_key, 'No candidate articles supplied')
        if self.client is None:
            return self._fallback_plan(articles, section_key, 'Missing OPENAI_API_KEY')

        records = [(f'a{idx:03d}', article) for idx, article in enumerate(articles[:MAX_INPUT_ARTICLES], start=1)]
        rows = _article_rows(records)
        titles = list(already_selected_titles)[-MAX_ALREADY_SELECTED_TITLES:]
        system = system_prompt or self.system_prompt or load_system_prompt()
        prompts = [ranking_prompt(section_key, rows, titles), simple_ranking_prompt(section_key, rows, titles)]

        reason = ''
        for attempt, prompt in enumerate(prompts, start=1):
            try:
                content = self._complete(system, prompt)
                items, overview = parse_ranked_items(content, records)
            except RateLimitError as exc:
                return self._fallback_plan(articles, section_key, f'Rate limited by model provider: {exc}')
            except APIError as exc:
                return self._fallback_plan(articles, section_key, f'Model request failed: {exc}')
            except OracleResponseError as exc:
                log.warning('Ranking attempt %d for %s unusable: %s', attempt, section_key.value, exc)
                reason = str(exc)
                continue

            label = SECTION_BY_KEY[section_key].label
            log.info('Model ranked %d %s articles', len(items), section_key.value)
            return PlanResult(
                section=items,
                overview=overview or f'Top {label} stories of the day.',
                summary=f'{_plural(len(items), label + " article")} ranked by {self.model}.',
                highlights=items[:HIGHLIGHT_COUNT],
                ai_metadata=AiMetadata(model=self.model),
            )
        return self._fallback_plan(articles, section_key, f'Model response unusable: {reason}')

    def _fallback_overview(self, items: Sequence[SectionItem], reason: str) -> OverviewResult:
        log.warning('Using fallback overview: %s', reason)
        highlights = fallback_highlights(items)
        if items:
            overview = f'Today\'s briefing brings together {_plural(len(items), "story", "stories")} from across the news.'
        else:
            overview = 'No articles available.'
        return OverviewResult(
            overview=overview,
            summary=f'Curated newsletter with {_plural(len(items), "article")}.',
            highlights=highlights,
            ai_metadata=AiMetadata(model=FALLBACK_MODEL, used_fallback=True, fallback_reason=reason),
        )

    def final_overview(self, items: Sequence[SectionItem]) -> OverviewResult:
        """Overview, one-line summary and highlight picks over the finished sections."""
        if not items:
            return self._fallback_overview(items, 'No articles available')
        if self.client is None:
            return self._fallback_overview(items, 'Missing OPENAI_API_KEY')

        records = [(f'a{idx:03d}', item) for idx, item in enumerate(items[:MAX_INPUT_ARTICLES], start=1)]
        rows = [
            {'id': record_id, 'title': item.title, 'publisher': item.publisher, 'summary': item.summary}
            for record_id, item in records
        ]
        try:
            payload = _parse_json(self._complete(OVERVIEW_SYSTEM_PROMPT, overview_prompt(rows)))
        except RateLimitError as exc:
            return self._fallback_overview(items, f'Rate limited by model provider: {exc}')
        except APIError as exc:
            return self._fallback_overview(items, f'Model request failed: {exc}')
        except OracleResponseError as exc:
            return self._fallback_overview(items, str(exc))

        overview = normalize_whitespace(str(payload.get('overview') or ''))
        if not overview:
            return self._fallback_overview(items, 'Model returned an empty overview')

        by_id = dict(records)
        highlights: list[SectionItem] = []
        for raw_id in payload.get('highlights') or []:
            item = by_id.get(str(raw_id).strip().lower())
            if item is not None and item not in highlights:
                highlights.append(item)
            if len(highlights) >= HIGHLIGHT_COUNT:
                break
        if not highlights:
            highlights = fallback_highlights(items)

        return OverviewResult(
            overview=overview,
            summary=normalize_whitespace(str(payload.get('summary') or '')),
            highlights=highlights,
            ai_metadata=AiMetadata(model=self.model),
        )
