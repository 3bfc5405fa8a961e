##########################################################################################
#
# Script name: planner.py
#
# Description: Per-job section planning. Each call processes one newsletter section,
#              records the result on the job exactly once and reports what happened.
#
##########################################################################################

import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .config import (
    DEFAULT_EXTRA_CANDIDATES,
    MAX_ALREADY_SELECTED_TITLES,
    SECTION_LIMITS,
    SECTION_SEQUENCE,
    TOKEN_TO_SECTION,
    SectionKey,
    section_for_hint,
)
from .models import (
    AiMetadata,
    Article,
    JobStatus,
    NewsletterJob,
    OverallRecord,
    SectionItem,
    SectionStatus,
    TopicGroup,
    TopicPartialRecord,
)
from .store import JobNotFoundError, JobStore, TopicAlreadyProcessedError
from .summarizer import SummarizationOracle
from .utils import utc_now_iso


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

ALLOWED_TOPICS_MESSAGE = ', '.join(key.value for key in SECTION_SEQUENCE)
STATUS_PROCESSED = 'processed'
STATUS_ALREADY_PROCESSED = 'already-processed'

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ****************************************************************************************
# Exceptions
# ****************************************************************************************


class Error(Exception):
    pass


class TopicProcessingError(Error):
    """Caller-facing failure carrying an HTTP style status code."""

    def __init__(self, status: int, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.details = details or {}


# ****************************************************************************************
# Data
# ****************************************************************************************


@dataclass
class CandidateSet:
    primary: list[Article]
    candidates: list[Article]
    keys: set[str] = field(default_factory=set)


@dataclass
class ProcessTopicResult:
    status: str
    message: str
    job_id: str
    topic: SectionKey
    articles_used: int
    candidates_fetched: int
    section: list[SectionItem]
    ai_metadata: AiMetadata
    overview: str | None = None
    summary: str | None = None
    highlights: list[SectionItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            'status': self.status,
            'message': self.message,
            'job_id': self.job_id,
            'topic': self.topic.value,
            'articles_used': self.articles_used,
            'candidates_fetched': self.candidates_fetched,
            'overview': self.overview,
            'summary': self.summary,
            'highlights': [item.to_dict() for item in self.highlights],
            'section': [item.to_dict() for item in self.section],
            'ai_metadata': self.ai_metadata.to_dict(),
        }


# ****************************************************************************************
# Functions
# ****************************************************************************************


def sanitize_token(raw: str) -> str:
    return re.sub(r'[^a-z]', '', raw.lower())


def normalize_topic_input(value: Any) -> SectionKey | None:
    if not isinstance(value, str):
        return None
    token = sanitize_token(value)
    if not token:
        return None
    return TOKEN_TO_SECTION.get(token)


def resolve_topic_for_group(group: TopicGroup) -> SectionKey | None:
    """Topic field first, then the first recognised hint, then the slug."""
    direct = normalize_topic_input(group.topic)
    if direct is not None:
        return direct
    for hint in group.section_hints:
        mapped = section_for_hint(hint)
        if mapped is not None:
            return mapped
    return normalize_topic_input(group.slug)


def find_topic_group(topic: SectionKey, groups: Sequence[TopicGroup]) -> TopicGroup | None:
    for group in groups:
        if normalize_topic_input(group.topic) is topic:
            return group
    for group in groups:
        if any(section_for_hint(hint) is topic for hint in group.section_hints):
            return group
    for group in groups:
        if normalize_topic_input(group.slug) is topic:
            return group
    return None


def derive_processable_topics(groups: Sequence[TopicGroup]) -> list[SectionKey]:
    seen: set[SectionKey] = set()
    ordered: list[SectionKey] = []
    for group in groups:
        topic = resolve_topic_for_group(group)
        if topic is None or topic in seen:
            continue
        seen.add(topic)
        ordered.append(topic)
    return ordered


def get_next_topic_to_process(job: NewsletterJob) -> SectionKey | None:
    """First resolvable section without a stored record, or None when all are done."""
    for topic in derive_processable_topics(job.topics):
        if topic not in job.ai_partial:
            return topic
    return None


def section_statuses(job: NewsletterJob) -> dict[SectionKey, SectionStatus]:
    return {
        topic: SectionStatus.DONE if topic in job.ai_partial else SectionStatus.PENDING
        for topic in derive_processable_topics(job.topics)
    }


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return math.floor(value)
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def clamp_limit(value: Any, default: int) -> int:
    parsed = _parse_int(value)
    return default if parsed is None else max(1, parsed)


def clamp_extra(value: Any) -> int:
    parsed = _parse_int(value)
    return DEFAULT_EXTRA_CANDIDATES if parsed is None else max(0, parsed)


def collect_used(job: NewsletterJob, exclude: SectionKey | None = None) -> tuple[set[str], list[str]]:
    """Article keys and titles already placed in other sections of this job."""
    used_keys: set[str] = set()
    titles: list[str] = []
    for topic, record in job.ai_partial.items():
        if topic is exclude:
            continue
        for item in record.section:
            used_keys.add(item.key())
            titles.append(item.title)
    return used_keys, titles


def _newest_first(articles: Sequence[Article]) -> list[Article]:
    return sorted(articles, key=lambda article: article.pub_date or _EPOCH, reverse=True)


def build_candidate_set(
    topic: SectionKey,
    group: TopicGroup,
    groups: Sequence[TopicGroup],
    limit: int,
    extra: int,
    used_keys: set[str],
) -> CandidateSet:
    primary = _newest_first(group.items)[: max(1, limit)]
    candidates: list[Article] = []
    keys: set[str] = set()

    def add(article: Article) -> bool:
        key = article.key()
        if key in keys or key in used_keys:
            return False
        keys.add(key)
        candidates.append(article)
        return True

    for article in primary:
        add(article)

    if extra > 0:
        others = _newest_first([item for other in groups if other is not group for item in other.items])
        added = 0
        for article in others:
            if added >= extra:
                break
            if add(article):
                added += 1

    if not candidates:
        raise TopicProcessingError(400, f'No articles available for topic {topic.value}')
    return CandidateSet(primary=primary, candidates=candidates, keys=keys)


# ****************************************************************************************
# Classes
# ****************************************************************************************


class TopicPlanner:
    """Drives one section at a time through ranking and persistence for a job."""

    def __init__(self, store: JobStore, oracle: SummarizationOracle, system_prompt: str | None = None):
        self.store = store
        self.oracle = oracle
        self.system_prompt = system_prompt

    def load_job(self, job_id: Any = None) -> NewsletterJob:
        if job_id is not None and not isinstance(job_id, str):
            raise TopicProcessingError(400, 'Job id must be a string')
        if job_id:
            job = self.store.get_job(job_id)
            if job is None:
                raise TopicProcessingError(404, f'Newsletter job {job_id} not found')
        else:
            job = self.store.get_next_job_needing_planning()
            if job is None:
                raise TopicProcessingError(404, 'No newsletter job is waiting for planning')
        if not job.topics:
            raise TopicProcessingError(400, f'Newsletter job {job.id} has no serialized topics')
        return job

    def _already_processed(self, job: NewsletterJob, existing: TopicPartialRecord) -> ProcessTopicResult:
        overall = job.overall
        return ProcessTopicResult(
            status=STATUS_ALREADY_PROCESSED,
            message='Topic already processed',
            job_id=job.id,
            topic=existing.topic,
            articles_used=existing.articles_used,
            candidates_fetched=existing.candidates_fetched,
            section=existing.section,
            ai_metadata=existing.ai_metadata,
            overview=overall.overview if overall else None,
            summary=overall.summary if overall else None,
            highlights=overall.highlights if overall else [],
        )

    def process_topic(
        self,
        topic: Any,
        job_id: Any = None,
        limit: Any = None,
        extra: Any = None,
        force: bool = False,
    ) -> ProcessTopicResult:
        section_key = normalize_topic_input(topic)
        if section_key is None:
            raise TopicProcessingError(
                400,
                f'Invalid topic. Allowed topics: {ALLOWED_TOPICS_MESSAGE}',
                {'allowed': [key.value for key in SECTION_SEQUENCE]},
            )
        job = self.load_job(job_id)
        return self._process(job, section_key, limit, extra, bool(force))

    def process_next(self, job_id: Any = None, limit: Any = None, extra: Any = None) -> ProcessTopicResult | None:
        """Process the next pending section; None means the job is ready to finalize."""
        job = self.load_job(job_id)
        if job.status is not JobStatus.NEWS_READY:
            log.info('Job %s is %s, nothing to plan', job.id, job.status.value)
            return None
        section_key = get_next_topic_to_process(job)
        if section_key is None:
            log.info('All sections processed for job %s', job.id)
            return None
        return self._process(job, section_key, limit, extra, False)

    def _process(
        self,
        job: NewsletterJob,
        section_key: SectionKey,
        limit: Any,
        extra: Any,
        force: bool,
    ) -> ProcessTopicResult:
        limit = clamp_limit(limit, SECTION_LIMITS[section_key])
        extra = clamp_extra(extra)

        existing = job.ai_partial.get(section_key)
        if existing is not None and not force:
            log.info('Section %s already processed for job %s', section_key.value, job.id)
            return self._already_processed(job, existing)

        group = find_topic_group(section_key, job.topics)
        if group is None:
            raise TopicProcessingError(400, f'Topic {section_key.value} is not available for this job')

        used_keys, titles = collect_used(job, exclude=section_key)
        candidate_set = build_candidate_set(section_key, group, job.topics, limit, extra, used_keys)
        log.info(
            'Ranking %s for job %s: %d candidates (%d primary, limit=%d, extra=%d)',
            section_key.value,
            job.id,
            len(candidate_set.candidates),
            len(candidate_set.primary),
            limit,
            extra,
        )

        plan = self.oracle.rank_section(
            candidate_set.candidates,
            section_key,
            already_selected_titles=titles[-MAX_ALREADY_SELECTED_TITLES:],
            system_prompt=self.system_prompt,
        )
        section = [item for item in plan.section if item.key() in candidate_set.keys][: SECTION_LIMITS[section_key]]
        if not section:
            raise TopicProcessingError(
                500,
                f'Model returned no articles for topic {section_key.value}',
                {'fallback_reason': plan.ai_metadata.fallback_reason},
            )

        record = TopicPartialRecord(
            topic=section_key,
            updated_at=utc_now_iso(),
            section=section,
            articles_used=len(section),
            candidates_fetched=len(candidate_set.candidates),
            ai_metadata=plan.ai_metadata,
            input_limit=limit,
            input_extra=extra,
        )
        try:
            self.store.save_topic_partial(job.id, record, force=force)
        except TopicAlreadyProcessedError as exc:
            log.info('Lost the race for %s on job %s, returning stored record', section_key.value, job.id)
            return self._already_processed(job, exc.existing)
        except JobNotFoundError as exc:
            raise TopicProcessingError(404, str(exc)) from exc

        overall = job.overall
        if overall is None:
            candidate_overall = OverallRecord(
                overview=plan.overview,
                summary=plan.summary,
                highlights=[item for item in plan.highlights if item in section],
                ai_metadata=plan.ai_metadata,
                updated_at=record.updated_at,
            )
            if self.store.save_overall_if_missing(job.id, candidate_overall):
                overall = candidate_overall
            else:
                refreshed = self.store.get_job(job.id)
                overall = refreshed.overall if refreshed else None

        log.info('Processed %s for job %s: %d articles', section_key.value, job.id, record.articles_used)
        return ProcessTopicResult(
            status=STATUS_PROCESSED,
            message='Topic processed',
            job_id=job.id,
            topic=section_key,
            articles_used=record.articles_used,
            candidates_fetched=record.candidates_fetched,
            section=record.section,
            ai_metadata=record.ai_metadata,
            overview=overall.overview if overall else None,
            summary=overall.summary if overall else None,
            highlights=overall.highlights if overall else [],
        )
