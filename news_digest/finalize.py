##########################################################################################
#
# Script name: finalize.py
#
# Description: Merges per-section records into the finished newsletter plan, removing
#              stories that appear in more than one section.
#
##########################################################################################

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .config import EMAIL_SUBJECT_PREFIX, FINALIZE_FALLBACK_MODEL, HIGHLIGHT_COUNT, SECTION_SEQUENCE, SectionKey
from .models import AiMetadata, JobStatus, NewsletterJob, NewsletterPlan, OverallRecord, SectionItem
from .planner import TopicProcessingError, get_next_topic_to_process
from .store import JobAlreadyFinalizedError, JobStore
from .summarizer import SummarizationOracle
from .utils import normalize_url, utc_now


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

HEADLINE_STOPWORDS = frozenset(
    {
        'the', 'a', 'an', 'and', 'or', 'but', 'with', 'without', 'into', 'onto', 'after',
        'before', 'over', 'under', 'more', 'than', 'less', 'to', 'from', 'for', 'of', 'in',
        'on', 'at', 'by', 'about', 'is', 'are', 'was', 'were', 'be', 'being', 'been', 'has',
        'have', 'had', 'will', 'would', 'can', 'could', 'should', 'may', 'might', 'must',
        'do', 'does', 'did', 'done', 'new', 'latest', 'breaking', 'update', 'report',
        'review', 'video', 'podcast', 'exclusive',
    }
)
FALLBACK_OVERVIEW = "Today's essential reads cover the most important stories from across the news landscape."


# ****************************************************************************************
# Data
# ****************************************************************************************


@dataclass(frozen=True)
class DuplicateRemoval:
    section: SectionKey
    removed_title: str
    kept_title: str
    reason: str


@dataclass
class FinalizeResult:
    job_id: str
    message: str
    plan: NewsletterPlan
    used_fallback: bool
    total_topics: int
    total_articles: int
    total_publishers: int
    removed: list[DuplicateRemoval] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            'job_id': self.job_id,
            'message': self.message,
            'used_fallback': self.used_fallback,
            'total_topics': self.total_topics,
            'total_articles': self.total_articles,
            'total_publishers': self.total_publishers,
            'removed_duplicates': len(self.removed),
        }


@dataclass
class _Kept:
    link: str
    slug: str
    title: str
    tokens: set[str]


# ****************************************************************************************
# Functions
# ****************************************************************************************


def tokenize_headline(value: str) -> list[str]:
    cleaned = re.sub(r"[’'`]", '', (value or '').lower())
    cleaned = re.sub(r'[^a-z0-9\s]', ' ', cleaned)
    return [token for token in cleaned.split() if len(token) > 2 and token not in HEADLINE_STOPWORDS]


def headline_tokens(item: SectionItem) -> set[str]:
    return set(tokenize_headline(item.title)) | set(tokenize_headline(item.summary))


def is_token_duplicate(current: set[str], existing: set[str]) -> bool:
    """Overlap of five tokens, four with two long ones, or three that dominate either set."""
    if not current or not existing:
        return False
    overlap = current & existing
    long_overlap = sum(1 for token in overlap if len(token) >= 5)
    if len(overlap) >= 5:
        return True
    if len(overlap) >= 4 and long_overlap >= 2:
        return True
    if len(overlap) >= 3:
        ratio = len(overlap) / min(len(current), len(existing))
        jaccard = len(overlap) / len(current | existing)
        return ratio >= 0.55 or jaccard >= 0.45
    return False


def deduplicate_plan_sections(
    sections: dict[SectionKey, list[SectionItem]],
) -> tuple[dict[SectionKey, list[SectionItem]], list[DuplicateRemoval]]:
    """Walk sections in processing order, dropping items already seen by link, slug or wording."""
    kept: list[_Kept] = []
    removed: list[DuplicateRemoval] = []
    deduped: dict[SectionKey, list[SectionItem]] = {}

    for section_key in SECTION_SEQUENCE:
        filtered: list[SectionItem] = []
        for item in sections.get(section_key, []):
            link = normalize_url(item.link)
            slug = item.slug.lower()
            tokens = headline_tokens(item)

            duplicate, reason = None, ''
            for entry in kept:
                if entry.link == link:
                    duplicate, reason = entry, 'link'
                    break
            if duplicate is None and slug:
                duplicate = next((entry for entry in kept if entry.slug == slug), None)
                reason = 'slug'
            if duplicate is None and tokens:
                duplicate = next((entry for entry in kept if is_token_duplicate(tokens, entry.tokens)), None)
                reason = 'tokens'

            if duplicate is not None:
                removed.append(
                    DuplicateRemoval(
                        section=section_key,
                        removed_title=item.title,
                        kept_title=duplicate.title,
                        reason=reason,
                    )
                )
                continue
            kept.append(_Kept(link=link, slug=slug, title=item.title, tokens=tokens))
            filtered.append(item)
        if section_key in sections:
            deduped[section_key] = filtered
    return deduped, removed


def email_subject(now: datetime) -> str:
    return f'{EMAIL_SUBJECT_PREFIX} | {now.strftime("%d/%m/%Y")}'


def _without_highlights(
    sections: dict[SectionKey, list[SectionItem]], highlights: list[SectionItem]
) -> dict[SectionKey, list[SectionItem]]:
    links = {normalize_url(item.link) for item in highlights}
    return {key: [item for item in items if normalize_url(item.link) not in links] for key, items in sections.items()}


def _flatten(sections: dict[SectionKey, list[SectionItem]]) -> list[SectionItem]:
    return [item for key in SECTION_SEQUENCE for item in sections.get(key, [])]


def _result(
    job: NewsletterJob,
    message: str,
    plan: NewsletterPlan,
    used_fallback: bool,
    removed: list[DuplicateRemoval],
) -> FinalizeResult:
    return FinalizeResult(
        job_id=job.id,
        message=message,
        plan=plan,
        used_fallback=used_fallback,
        total_topics=len(job.topics),
        total_articles=sum(len(group.items) for group in job.topics),
        total_publishers=len({group.publisher for group in job.topics}),
        removed=removed,
    )


# ****************************************************************************************
# Classes
# ****************************************************************************************


class PlanFinalizer:
    def __init__(self, store: JobStore, oracle: SummarizationOracle, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.oracle = oracle
        self.clock = clock

    def finalize(self, job: NewsletterJob) -> FinalizeResult:
        if job.status is not JobStatus.NEWS_READY:
            return self._completed_result(job)
        pending = get_next_topic_to_process(job)
        if pending is not None:
            raise TopicProcessingError(400, f'Cannot finalize job {job.id}: {pending.value} is still pending')

        try:
            plan, removed = self._build_plan(job)
            used_fallback = False
            message = 'Newsletter plan generated'
        except Exception as exc:  # noqa: BLE001
            log.exception('Finalization failed for job %s, using fallback plan', job.id)
            plan, removed = self._fallback_plan(job, exc), []
            used_fallback = True
            message = 'Newsletter plan generated (fallback)'

        overall = OverallRecord(
            overview=plan.overview,
            summary=plan.summary,
            highlights=plan.highlights,
            ai_metadata=plan.ai_metadata,
            updated_at=plan.generated_at,
        )
        try:
            self.store.save_plan(job.id, plan, overall=overall)
        except JobAlreadyFinalizedError as exc:
            log.info('Job %s moved to %s while finalizing, keeping the stored plan', job.id, exc.status.value)
            return self._completed_result(self.store.get_job(job.id) or job)
        log.info('%s for job %s: %d articles', message, job.id, plan.article_count())
        return _result(job, message, plan, used_fallback, removed)

    def _completed_result(self, job: NewsletterJob) -> FinalizeResult:
        if job.plan is None:
            raise TopicProcessingError(400, f'Job {job.id} is {job.status.value} and has no plan')
        log.info('Job %s already %s, nothing to finalize', job.id, job.status.value)
        return _result(job, 'Job already completed', job.plan, job.plan.ai_metadata.used_fallback, [])

    def _build_plan(self, job: NewsletterJob) -> tuple[NewsletterPlan, list[DuplicateRemoval]]:
        sections = {key: list(record.section) for key, record in job.ai_partial.items()}
        sections, removed = deduplicate_plan_sections(sections)
        if removed:
            log.info('Removed %d duplicate stories across sections', len(removed))
            for removal in removed[:5]:
                log.debug(
                    '  %s: "%s" duplicates "%s" (%s)',
                    removal.section.value,
                    removal.removed_title,
                    removal.kept_title,
                    removal.reason,
                )

        result = self.oracle.final_overview(_flatten(sections))
        now = self.clock()
        plan = NewsletterPlan(
            subject=email_subject(now),
            overview=result.overview,
            summary=result.summary,
            highlights=result.highlights,
            sections=_without_highlights(sections, result.highlights),
            ai_metadata=result.ai_metadata,
            generated_at=now.isoformat(),
        )
        return plan, removed

    def _fallback_plan(self, job: NewsletterJob, exc: Exception) -> NewsletterPlan:
        sections = {key: list(job.ai_partial[key].section) for key in SECTION_SEQUENCE if key in job.ai_partial}
        highlights = _flatten(sections)[:HIGHLIGHT_COUNT]
        now = self.clock()
        return NewsletterPlan(
            subject=email_subject(now),
            overview=FALLBACK_OVERVIEW,
            summary=f'Curated newsletter with {len(sections)} processed topics.',
            highlights=highlights,
            sections=_without_highlights(sections, highlights),
            ai_metadata=AiMetadata(
                model=FINALIZE_FALLBACK_MODEL,
                used_fallback=True,
                fallback_reason=f'Finalization failed: {exc}',
            ),
            generated_at=now.isoformat(),
        )
