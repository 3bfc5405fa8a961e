##########################################################################################
#
# Script name: store.py
#
# Description: Job store contract and an in-process implementation backed by dicts.
#
##########################################################################################

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any

from .config import OVERALL_KEY
from .models import JobStatus, NewsletterJob, NewsletterPlan, OverallRecord, TopicGroup, TopicPartialRecord
from .utils import utc_now_iso


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)


# ****************************************************************************************
# Exceptions
# ****************************************************************************************


class Error(Exception):
    pass


class JobNotFoundError(Error):
    def __init__(self, job_id: str):
        super().__init__(f'Newsletter job {job_id} not found')
        self.job_id = job_id


class TopicAlreadyProcessedError(Error):
    """Raised from inside a write when the section already has a record."""

    def __init__(self, existing: TopicPartialRecord):
        super().__init__(f'Topic {existing.topic.value} already processed')
        self.existing = existing


class JobAlreadyFinalizedError(Error):
    """Raised from inside a plan write when the job has left news-ready."""

    def __init__(self, job_id: str, status: JobStatus):
        super().__init__(f'Newsletter job {job_id} is already {status.value}')
        self.job_id = job_id
        self.status = status


# ****************************************************************************************
# Classes
# ****************************************************************************************


class JobStore(ABC):
    """Document store holding newsletter jobs.

    Every write re-reads the stored document and applies its change atomically;
    reads return detached snapshots.
    """

    @abstractmethod
    def create_job(
        self,
        topics: list[TopicGroup],
        preprocess_stats: dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> NewsletterJob:
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> NewsletterJob | None:
        ...

    @abstractmethod
    def get_next_job_needing_planning(self) -> NewsletterJob | None:
        ...

    @abstractmethod
    def save_topic_partial(self, job_id: str, record: TopicPartialRecord, force: bool = False) -> None:
        """Write one section record, raising TopicAlreadyProcessedError when it exists and force is off."""

    @abstractmethod
    def save_overall_if_missing(self, job_id: str, overall: OverallRecord) -> bool:
        ...

    @abstractmethod
    def save_plan(self, job_id: str, plan: NewsletterPlan, overall: OverallRecord | None = None) -> None:
        """Persist the finalized plan and move the job to ready-to-send.

        Raises JobAlreadyFinalizedError when the job is no longer news-ready.
        """

    @abstractmethod
    def update_status(self, job_id: str, status: JobStatus) -> None:
        ...


class InMemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _document(self, job_id: str) -> dict[str, Any]:
        document = self._documents.get(job_id)
        if document is None:
            raise JobNotFoundError(job_id)
        return document

    def create_job(
        self,
        topics: list[TopicGroup],
        preprocess_stats: dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> NewsletterJob:
        job_id = job_id or uuid.uuid4().hex
        document = {
            'id': job_id,
            'status': JobStatus.NEWS_READY.value,
            'topics': [group.to_dict() for group in topics],
            'ai_partial': {},
            'preprocess_stats': dict(preprocess_stats or {}),
            'created_at': utc_now_iso(),
        }
        with self._lock:
            self._documents[job_id] = document
            snapshot = copy.deepcopy(document)
        log.info('Created job %s with %d topic groups', job_id, len(topics))
        return NewsletterJob.from_dict(snapshot)

    def get_job(self, job_id: str) -> NewsletterJob | None:
        with self._lock:
            document = self._documents.get(job_id)
            snapshot = copy.deepcopy(document) if document is not None else None
        return NewsletterJob.from_dict(snapshot) if snapshot is not None else None

    def get_next_job_needing_planning(self) -> NewsletterJob | None:
        with self._lock:
            pending = [
                document
                for document in self._documents.values()
                if document['status'] == JobStatus.NEWS_READY.value
            ]
            if not pending:
                return None
            snapshot = copy.deepcopy(min(pending, key=lambda document: document['created_at']))
        return NewsletterJob.from_dict(snapshot)

    def save_topic_partial(self, job_id: str, record: TopicPartialRecord, force: bool = False) -> None:
        with self._lock:
            partials = self._document(job_id)['ai_partial']
            existing = partials.get(record.topic.value)
            if existing is not None and not force:
                raise TopicAlreadyProcessedError(TopicPartialRecord.from_dict(copy.deepcopy(existing)))
            partials[record.topic.value] = record.to_dict()

    def save_overall_if_missing(self, job_id: str, overall: OverallRecord) -> bool:
        with self._lock:
            partials = self._document(job_id)['ai_partial']
            if OVERALL_KEY in partials:
                return False
            partials[OVERALL_KEY] = overall.to_dict()
            return True

    def save_plan(self, job_id: str, plan: NewsletterPlan, overall: OverallRecord | None = None) -> None:
        with self._lock:
            document = self._document(job_id)
            status = JobStatus(document['status'])
            if status is not JobStatus.NEWS_READY:
                raise JobAlreadyFinalizedError(job_id, status)
            document['plan'] = plan.to_dict()
            if overall is not None:
                document['ai_partial'][OVERALL_KEY] = overall.to_dict()
            document['status'] = JobStatus.READY_TO_SEND.value

    def update_status(self, job_id: str, status: JobStatus) -> None:
        with self._lock:
            self._document(job_id)['status'] = status.value
