from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .config import OVERALL_KEY, SectionKey
from .utils import format_datetime, parse_datetime


class JobStatus(str, Enum):
    NEWS_READY = "news-ready"
    READY_TO_SEND = "ready-to-send"
    SENDING = "sending"
    SUCCESS = "success"
    FAILED = "failed"


class SectionStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"


def _section_key(value: Any) -> SectionKey | None:
    try:
        return SectionKey(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class Article:
    title: str
    link: str
    description: str = ""
    publisher: str = ""
    topic: str = ""
    slug: str = ""
    pub_date: datetime | None = None
    section_hints: tuple[str, ...] = ()

    def key(self) -> str:
        """Identity used for "already used" tracking while planning."""
        return self.slug or self.link

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "publisher": self.publisher,
            "topic": self.topic,
            "slug": self.slug,
            "pub_date": format_datetime(self.pub_date),
            "section_hints": list(self.section_hints),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Article:
        return cls(
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            link=str(payload.get("link") or ""),
            publisher=str(payload.get("publisher") or ""),
            topic=str(payload.get("topic") or ""),
            slug=str(payload.get("slug") or ""),
            pub_date=parse_datetime(payload.get("pub_date")),
            section_hints=tuple(str(hint) for hint in payload.get("section_hints") or ()),
        )


@dataclass
class TopicGroup:
    """Articles from one source feed, as serialized on the job."""

    publisher: str
    topic: str
    slug: str
    items: list[Article] = field(default_factory=list)
    section_hints: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "publisher": self.publisher,
            "topic": self.topic,
            "slug": self.slug,
            "section_hints": list(self.section_hints),
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TopicGroup:
        return cls(
            publisher=str(payload.get("publisher") or ""),
            topic=str(payload.get("topic") or ""),
            slug=str(payload.get("slug") or ""),
            section_hints=tuple(str(hint) for hint in payload.get("section_hints") or ()),
            items=[Article.from_dict(item) for item in payload.get("items") or ()],
        )


@dataclass(frozen=True)
class SectionItem:
    title: str
    summary: str
    link: str
    publisher: str = ""
    slug: str = ""
    pub_date: datetime | None = None

    def key(self) -> str:
        return self.slug or self.link

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "summary": self.summary,
            "link": self.link,
            "publisher": self.publisher,
            "slug": self.slug,
            "pub_date": format_datetime(self.pub_date),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> SectionItem:
        return cls(
            title=str(payload.get("title") or ""),
            summary=str(payload.get("summary") or ""),
            link=str(payload.get("link") or ""),
            publisher=str(payload.get("publisher") or ""),
            slug=str(payload.get("slug") or ""),
            pub_date=parse_datetime(payload.get("pub_date")),
        )


@dataclass(frozen=True)
class AiMetadata:
    model: str
    used_fallback: bool = False
    fallback_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model, "used_fallback": self.used_fallback}
        if self.fallback_reason:
            payload["fallback_reason"] = self.fallback_reason
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> AiMetadata:
        payload = payload or {}
        return cls(
            model=str(payload.get("model") or "unknown"),
            used_fallback=bool(payload.get("used_fallback", False)),
            fallback_reason=payload.get("fallback_reason"),
        )


@dataclass
class TopicPartialRecord:
    topic: SectionKey
    updated_at: str
    section: list[SectionItem]
    articles_used: int
    candidates_fetched: int
    ai_metadata: AiMetadata
    input_limit: int
    input_extra: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic.value,
            "updated_at": self.updated_at,
            "section": [item.to_dict() for item in self.section],
            "articles_used": self.articles_used,
            "candidates_fetched": self.candidates_fetched,
            "ai_metadata": self.ai_metadata.to_dict(),
            "input": {"limit": self.input_limit, "extra": self.input_extra},
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TopicPartialRecord:
        inputs = payload.get("input") or {}
        return cls(
            topic=SectionKey(payload["topic"]),
            updated_at=str(payload.get("updated_at") or ""),
            section=[SectionItem.from_dict(item) for item in payload.get("section") or ()],
            articles_used=int(payload.get("articles_used") or 0),
            candidates_fetched=int(payload.get("candidates_fetched") or 0),
            ai_metadata=AiMetadata.from_dict(payload.get("ai_metadata")),
            input_limit=int(inputs.get("limit") or 0),
            input_extra=int(inputs.get("extra") or 0),
        )


@dataclass
class OverallRecord:
    overview: str
    summary: str
    highlights: list[SectionItem]
    ai_metadata: AiMetadata
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "overview": self.overview,
            "summary": self.summary,
            "highlights": [item.to_dict() for item in self.highlights],
            "ai_metadata": self.ai_metadata.to_dict(),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> OverallRecord:
        return cls(
            overview=str(payload.get("overview") or ""),
            summary=str(payload.get("summary") or ""),
            highlights=[SectionItem.from_dict(item) for item in payload.get("highlights") or ()],
            ai_metadata=AiMetadata.from_dict(payload.get("ai_metadata")),
            updated_at=str(payload.get("updated_at") or ""),
        )


@dataclass
class NewsletterPlan:
    subject: str
    overview: str
    summary: str
    highlights: list[SectionItem]
    sections: dict[SectionKey, list[SectionItem]]
    ai_metadata: AiMetadata
    generated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "overview": self.overview,
            "summary": self.summary,
            "highlights": [item.to_dict() for item in self.highlights],
            "sections": {
                key.value: [item.to_dict() for item in items] for key, items in self.sections.items()
            },
            "ai_metadata": self.ai_metadata.to_dict(),
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> NewsletterPlan:
        sections: dict[SectionKey, list[SectionItem]] = {}
        for raw_key, items in (payload.get("sections") or {}).items():
            key = _section_key(raw_key)
            if key is not None:
                sections[key] = [SectionItem.from_dict(item) for item in items or ()]
        return cls(
            subject=str(payload.get("subject") or ""),
            overview=str(payload.get("overview") or ""),
            summary=str(payload.get("summary") or ""),
            highlights=[SectionItem.from_dict(item) for item in payload.get("highlights") or ()],
            sections=sections,
            ai_metadata=AiMetadata.from_dict(payload.get("ai_metadata")),
            generated_at=str(payload.get("generated_at") or ""),
        )

    def article_count(self) -> int:
        return len(self.highlights) + sum(len(items) for items in self.sections.values())


@dataclass
class NewsletterJob:
    """Typed snapshot of a job document read from the store."""

    id: str
    status: JobStatus
    topics: list[TopicGroup]
    ai_partial: dict[SectionKey, TopicPartialRecord] = field(default_factory=dict)
    overall: OverallRecord | None = None
    preprocess_stats: dict[str, Any] = field(default_factory=dict)
    plan: NewsletterPlan | None = None
    created_at: str = ""

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> NewsletterJob:
        ai_partial: dict[SectionKey, TopicPartialRecord] = {}
        overall = None
        for raw_key, record in (payload.get("ai_partial") or {}).items():
            if raw_key == OVERALL_KEY:
                overall = OverallRecord.from_dict(record)
                continue
            key = _section_key(raw_key)
            if key is not None:
                ai_partial[key] = TopicPartialRecord.from_dict(record)
        plan_payload = payload.get("plan")
        return cls(
            id=str(payload["id"]),
            status=JobStatus(payload.get("status") or JobStatus.NEWS_READY.value),
            topics=[TopicGroup.from_dict(group) for group in payload.get("topics") or ()],
            ai_partial=ai_partial,
            overall=overall,
            preprocess_stats=dict(payload.get("preprocess_stats") or {}),
            plan=NewsletterPlan.from_dict(plan_payload) if plan_payload else None,
            created_at=str(payload.get("created_at") or ""),
        )


@dataclass
class Cluster:
    representative: Article
    members: list[Article]
    average_similarity: float = 1.0

    def __len__(self) -> int:
        return len(self.members)
