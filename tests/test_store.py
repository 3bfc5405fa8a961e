##########################################################################################
#
# Script name: test_store.py
#
# Description: In-memory job store tests.
#
##########################################################################################

from datetime import datetime, timezone

import pytest

from news_digest.config import SectionKey
from news_digest.models import (
    AiMetadata,
    Article,
    JobStatus,
    NewsletterPlan,
    OverallRecord,
    SectionItem,
    TopicGroup,
    TopicPartialRecord,
)
from news_digest.store import InMemoryJobStore, JobAlreadyFinalizedError, JobNotFoundError, TopicAlreadyProcessedError


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
ITEM = SectionItem(title='Chip news', summary='Chips sold out.', link='https://example.com/1', slug='tech-1', pub_date=NOW)


def _record(model: str = 'test-model') -> TopicPartialRecord:
    return TopicPartialRecord(
        topic=SectionKey.TECH,
        updated_at=NOW.isoformat(),
        section=[ITEM],
        articles_used=1,
        candidates_fetched=3,
        ai_metadata=AiMetadata(model=model),
        input_limit=8,
        input_extra=5,
    )


def _overall(overview: str) -> OverallRecord:
    return OverallRecord(
        overview=overview,
        summary='Summary.',
        highlights=[ITEM],
        ai_metadata=AiMetadata(model='test-model'),
        updated_at=NOW.isoformat(),
    )


def _job(store: InMemoryJobStore):
    group = TopicGroup(
        publisher='Example',
        topic='Technology',
        slug='tech',
        items=[Article(title='Chip news', link='https://example.com/1', slug='tech-1', pub_date=NOW)],
        section_hints=('tech',),
    )
    return store.create_job([group], preprocess_stats={'original_count': 1})


def test_created_job_round_trips_topics() -> None:
    store = InMemoryJobStore()
    job = _job(store)
    loaded = store.get_job(job.id)
    assert loaded.status is JobStatus.NEWS_READY
    assert loaded.topics[0].items[0].pub_date == NOW
    assert loaded.topics[0].section_hints == ('tech',)
    assert loaded.preprocess_stats == {'original_count': 1}


def test_snapshots_are_detached_from_the_store() -> None:
    store = InMemoryJobStore()
    job = _job(store)
    snapshot = store.get_job(job.id)
    store.save_topic_partial(job.id, _record())
    assert snapshot.ai_partial == {}
    assert SectionKey.TECH in store.get_job(job.id).ai_partial


def test_second_write_for_a_section_is_refused_unless_forced() -> None:
    store = InMemoryJobStore()
    job = _job(store)
    store.save_topic_partial(job.id, _record('first'))
    with pytest.raises(TopicAlreadyProcessedError) as excinfo:
        store.save_topic_partial(job.id, _record('second'))
    assert excinfo.value.existing.ai_metadata.model == 'first'

    store.save_topic_partial(job.id, _record('second'), force=True)
    assert store.get_job(job.id).ai_partial[SectionKey.TECH].ai_metadata.model == 'second'


def test_overall_is_written_once() -> None:
    store = InMemoryJobStore()
    job = _job(store)
    assert store.save_overall_if_missing(job.id, _overall('first')) is True
    assert store.save_overall_if_missing(job.id, _overall('second')) is False
    loaded = store.get_job(job.id)
    assert loaded.overall.overview == 'first'
    assert SectionKey.TECH not in loaded.ai_partial


def test_save_plan_marks_job_ready_to_send() -> None:
    store = InMemoryJobStore()
    job = _job(store)
    plan = NewsletterPlan(
        subject='The Gist | 19/10/2026',
        overview='Overview.',
        summary='Summary.',
        highlights=[ITEM],
        sections={SectionKey.TECH: []},
        ai_metadata=AiMetadata(model='test-model'),
        generated_at=NOW.isoformat(),
    )
    store.save_plan(job.id, plan, overall=_overall('final'))
    loaded = store.get_job(job.id)
    assert loaded.status is JobStatus.READY_TO_SEND
    assert loaded.plan.subject == 'The Gist | 19/10/2026'
    assert loaded.plan.highlights == [ITEM]
    assert loaded.overall.overview == 'final'
    assert store.get_next_job_needing_planning() is None


def test_save_plan_refuses_job_past_news_ready() -> None:
    store = InMemoryJobStore()
    job = _job(store)
    store.update_status(job.id, JobStatus.SENDING)
    plan = NewsletterPlan(
        subject='The Gist | 20/10/2026',
        overview='Late overview.',
        summary='Late summary.',
        highlights=[ITEM],
        sections={},
        ai_metadata=AiMetadata(model='test-model'),
        generated_at=NOW.isoformat(),
    )
    with pytest.raises(JobAlreadyFinalizedError) as excinfo:
        store.save_plan(job.id, plan, overall=_overall('late'))
    assert excinfo.value.status is JobStatus.SENDING
    loaded = store.get_job(job.id)
    assert loaded.status is JobStatus.SENDING
    assert loaded.plan is None
    assert loaded.overall is None


def test_writes_to_unknown_job_raise() -> None:
    store = InMemoryJobStore()
    with pytest.raises(JobNotFoundError):
        store.save_topic_partial('missing', _record())
    assert store.get_job('missing') is None
