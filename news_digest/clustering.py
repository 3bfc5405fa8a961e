from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Sequence
from datetime import datetime, timezone

from .config import (
    DEFAULT_MAX_CLUSTER_SIZE,
    DEFAULT_MERGE_THRESHOLD,
    DEFAULT_SIMILARITY_THRESHOLD,
    NEAR_MISS_MARGIN,
)
from .models import Article, Cluster
from .similarity import article_similarity


log = logging.getLogger(__name__)

SimilarityFn = Callable[[Article, Article], float]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _rank(article: Article, preferred_publishers: Collection[str]) -> tuple[bool, datetime]:
    return article.publisher in preferred_publishers, article.pub_date or _EPOCH


def choose_representative(members: Sequence[Article], preferred_publishers: Collection[str] = ()) -> Article:
    """Preferred publisher first, then the newest; earlier members win ties."""
    representative = members[0]
    for member in members[1:]:
        if _rank(member, preferred_publishers) > _rank(representative, preferred_publishers):
            representative = member
    return representative


def _average_similarity(members: Sequence[Article], representative: Article, similarity: SimilarityFn) -> float:
    if not members:
        return 1.0
    total = sum(1.0 if member is representative else similarity(member, representative) for member in members)
    return total / len(members)


def _connected_components(adjacency: list[set[int]]) -> list[list[int]]:
    visited = [False] * len(adjacency)
    components: list[list[int]] = []
    for start in range(len(adjacency)):
        if visited[start]:
            continue
        visited[start] = True
        stack = [start]
        component = []
        while stack:
            node = stack.pop()
            component.append(node)
            for neighbor in adjacency[node]:
                if not visited[neighbor]:
                    visited[neighbor] = True
                    stack.append(neighbor)
        components.append(sorted(component))
    return components


def graph_clustering(
    articles: Sequence[Article],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    preferred_publishers: Collection[str] = (),
    similarity: SimilarityFn = article_similarity,
) -> list[Cluster]:
    """Connected components of the graph whose edges are pairs scoring at or above threshold.

    Every pair is scored, so cost grows with the square of the input. Component
    size is not bounded here; only the greedy path honours max_cluster_size.
    """
    if not articles:
        return []

    adjacency: list[set[int]] = [set() for _ in articles]
    edges = 0
    for i in range(len(articles)):
        for j in range(i + 1, len(articles)):
            score = similarity(articles[i], articles[j])
            if score >= threshold:
                adjacency[i].add(j)
                adjacency[j].add(i)
                edges += 1
            elif score >= threshold - NEAR_MISS_MARGIN:
                log.debug(
                    'Near miss %.3f between "%s" (%s) and "%s" (%s)',
                    score,
                    articles[i].title,
                    articles[i].publisher,
                    articles[j].title,
                    articles[j].publisher,
                )
    log.debug('Similarity graph: %d articles, %d edges, threshold %.2f', len(articles), edges, threshold)

    clusters = []
    for component in _connected_components(adjacency):
        members = [articles[idx] for idx in component]
        representative = choose_representative(members, preferred_publishers)
        cluster = Cluster(
            representative=representative,
            members=members,
            average_similarity=_average_similarity(members, representative, similarity),
        )
        if len(members) > 1:
            log.debug(
                'Cluster of %d around "%s" (%s), average similarity %.3f',
                len(members),
                representative.title,
                representative.publisher,
                cluster.average_similarity,
            )
        clusters.append(cluster)
    log.debug('Found %d clusters among %d articles', len(clusters), len(articles))
    return clusters


def greedy_clustering(
    articles: Sequence[Article],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    max_cluster_size: int = DEFAULT_MAX_CLUSTER_SIZE,
    preferred_publishers: Collection[str] = (),
    similarity: SimilarityFn = article_similarity,
) -> list[Cluster]:
    """Single pass assignment of each article to its best matching open cluster."""
    ordered = sorted(articles, key=lambda article: _rank(article, preferred_publishers), reverse=True)
    clusters: list[Cluster] = []
    for article in ordered:
        best: Cluster | None = None
        best_score = 0.0
        for cluster in clusters:
            if len(cluster.members) >= max_cluster_size:
                continue
            score = similarity(article, cluster.representative)
            if score > best_score and score >= threshold:
                best = cluster
                best_score = score

        if best is None:
            clusters.append(Cluster(representative=article, members=[article]))
            continue

        best.members.append(article)
        if article.publisher in preferred_publishers and best.representative.publisher not in preferred_publishers:
            best.representative = article
        best.average_similarity = _average_similarity(best.members, best.representative, similarity)
    return clusters


def cluster_articles(
    articles: Sequence[Article],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    max_cluster_size: int = DEFAULT_MAX_CLUSTER_SIZE,
    preferred_publishers: Collection[str] = (),
    use_graph: bool = True,
    similarity: SimilarityFn = article_similarity,
) -> list[Cluster]:
    if use_graph:
        return graph_clustering(articles, threshold, preferred_publishers, similarity)
    return greedy_clustering(articles, threshold, max_cluster_size, preferred_publishers, similarity)


def merge_similar_clusters(
    clusters: Sequence[Cluster],
    threshold: float = DEFAULT_MERGE_THRESHOLD,
    similarity: SimilarityFn = article_similarity,
) -> list[Cluster]:
    """Fold later clusters into earlier ones whose representatives look alike.

    The earlier cluster keeps its representative.
    """
    if len(clusters) <= 1:
        return list(clusters)

    merged: list[Cluster] = []
    absorbed: set[int] = set()
    for i, current in enumerate(clusters):
        if i in absorbed:
            continue
        members = list(current.members)
        for j in range(i + 1, len(clusters)):
            if j in absorbed:
                continue
            other = clusters[j]
            if similarity(current.representative, other.representative) >= threshold:
                members.extend(other.members)
                absorbed.add(j)
        average = current.average_similarity
        if len(members) != len(current.members):
            average = _average_similarity(members, current.representative, similarity)
            log.debug('Merged %d articles into cluster "%s"', len(members), current.representative.title)
        merged.append(Cluster(representative=current.representative, members=members, average_similarity=average))
    return merged


def get_representatives(clusters: Sequence[Cluster]) -> list[Article]:
    return [cluster.representative for cluster in clusters]
