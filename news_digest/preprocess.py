from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .cache import TTLCache
from .clustering import cluster_articles, get_representatives, merge_similar_clusters
from .config import (
    DEFAULT_MAX_CLUSTER_SIZE,
    DEFAULT_MERGE_THRESHOLD,
    DEFAULT_SIMILARITY_THRESHOLD,
    SECTION_SEQUENCE,
    SectionKey,
    section_for_hint,
)
from .models import Article, Cluster, TopicGroup
from .utils import normalize_url


log = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
DEFAULT_PARTITION = "general"


@dataclass(frozen=True)
class PreprocessOptions:
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    max_cluster_size: int = DEFAULT_MAX_CLUSTER_SIZE
    merge_threshold: float = DEFAULT_MERGE_THRESHOLD
    preferred_publishers: frozenset[str] = frozenset()
    use_graph: bool = True
    topic_aware: bool = True


@dataclass
class PreprocessStats:
    original_count: int
    after_dedupe_count: int
    cluster_count: int
    representative_count: int
    reduction_percent: int
    processing_time_ms: int
    pre_clustered_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_count": self.original_count,
            "after_dedupe_count": self.after_dedupe_count,
            "cluster_count": self.cluster_count,
            "representative_count": self.representative_count,
            "reduction_percent": self.reduction_percent,
            "processing_time_ms": self.processing_time_ms,
            "pre_clustered_count": self.pre_clustered_count,
        }


@dataclass
class PreprocessResult:
    representatives: list[Article]
    stats: PreprocessStats
    pre_clustered_by_section: dict[SectionKey, list[Article]] = field(default_factory=dict)
    clusters: list[Cluster] = field(default_factory=list)


def dedupe_by_url(articles: Iterable[Article]) -> list[Article]:
    """Keep the newest article per normalized link, newest first."""
    ordered = sorted(articles, key=lambda article: article.pub_date or _EPOCH, reverse=True)
    seen: set[str] = set()
    unique: list[Article] = []
    for article in ordered:
        key = normalize_url(article.link)
        if key in seen:
            continue
        seen.add(key)
        unique.append(article)
    return unique


def pre_cluster_by_hints(articles: Iterable[Article]) -> tuple[dict[SectionKey, list[Article]], list[Article]]:
    """Split off articles whose feed names exactly one known section."""
    pre_clustered: dict[SectionKey, list[Article]] = {key: [] for key in SECTION_SEQUENCE}
    needs_clustering: list[Article] = []
    for article in articles:
        sections = {section_for_hint(hint) for hint in article.section_hints} - {None}
        if len(sections) == 1:
            pre_clustered[sections.pop()].append(article)
        else:
            needs_clustering.append(article)
    return {key: items for key, items in pre_clustered.items() if items}, needs_clustering


def partition_by_topic(articles: Iterable[Article]) -> dict[str, list[Article]]:
    partitions: dict[str, list[Article]] = {}
    for article in articles:
        partitions.setdefault(article.topic or DEFAULT_PARTITION, []).append(article)
    return partitions


def cache_key(articles: Iterable[Article]) -> str:
    payload = "\n".join(sorted(article.link for article in articles))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class Preprocessor:
    """URL dedup, hint fast path, per-topic clustering and merge, with an optional result cache."""

    def __init__(self, options: PreprocessOptions | None = None, cache: TTLCache[PreprocessResult] | None = None):
        self.options = options or PreprocessOptions()
        self.cache = cache

    def preprocess(self, articles: Sequence[Article]) -> PreprocessResult:
        key = cache_key(articles)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                log.info("Preprocess cache hit for %d articles", len(articles))
                return cached

        result = self._run(articles)
        if self.cache is not None:
            self.cache.set(key, result)
        return result

    def _cluster(self, articles: list[Article]) -> list[Cluster]:
        options = self.options
        clusters = cluster_articles(
            articles,
            threshold=options.similarity_threshold,
            max_cluster_size=options.max_cluster_size,
            preferred_publishers=options.preferred_publishers,
            use_graph=options.use_graph,
        )
        return merge_similar_clusters(clusters, threshold=options.merge_threshold)

    def _run(self, articles: Sequence[Article]) -> PreprocessResult:
        started = time.perf_counter()
        deduped = dedupe_by_url(articles)
        pre_clustered, needs_clustering = pre_cluster_by_hints(deduped)
        pre_clustered_count = sum(len(items) for items in pre_clustered.values())
        log.info(
            "Pre-clustered %d articles by hints, %d need full clustering",
            pre_clustered_count,
            len(needs_clustering),
        )
        for section_key, items in pre_clustered.items():
            log.debug("  %s: %d articles", section_key, len(items))

        if self.options.topic_aware:
            partitions = partition_by_topic(needs_clustering)
        else:
            partitions = {DEFAULT_PARTITION: needs_clustering} if needs_clustering else {}

        clusters: list[Cluster] = []
        for topic, members in partitions.items():
            log.debug('Clustering %d articles in topic "%s"', len(members), topic)
            clusters.extend(self._cluster(members))

        representatives = get_representatives(clusters)
        for items in pre_clustered.values():
            representatives.extend(items)

        original_count = len(articles)
        reduction = round((original_count - len(representatives)) / original_count * 100) if original_count else 0
        stats = PreprocessStats(
            original_count=original_count,
            after_dedupe_count=len(deduped),
            cluster_count=len(clusters),
            representative_count=len(representatives),
            reduction_percent=reduction,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            pre_clustered_count=pre_clustered_count,
        )
        log.info(
            "Preprocess: %d -> %d (deduped) -> %d (final), %d%% reduction",
            original_count,
            len(deduped),
            len(representatives),
            reduction,
        )
        return PreprocessResult(
            representatives=representatives,
            stats=stats,
            pre_clustered_by_section=pre_clustered,
            clusters=clusters,
        )


def flatten_groups(groups: Iterable[TopicGroup]) -> list[Article]:
    return [article for group in groups for article in group.items]


def filter_groups_to_representatives(groups: Iterable[TopicGroup], representatives: Iterable[Article]) -> list[TopicGroup]:
    """Keep only representative items in each group, dropping groups left empty."""
    keep = {(article.slug, normalize_url(article.link)) for article in representatives}
    filtered = []
    for group in groups:
        items = [item for item in group.items if (item.slug, normalize_url(item.link)) in keep]
        if items:
            filtered.append(
                TopicGroup(
                    publisher=group.publisher,
                    topic=group.topic,
                    slug=group.slug,
                    items=items,
                    section_hints=group.section_hints,
                )
            )
    return filtered
