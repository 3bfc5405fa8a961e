##########################################################################################
#
# Script name: test_clustering.py
#
# Description: Graph and greedy clustering, representative choice and cluster merge tests.
#
##########################################################################################

from datetime import datetime, timedelta, timezone

from news_digest.clustering import (
    choose_representative,
    cluster_articles,
    graph_clustering,
    greedy_clustering,
    merge_similar_clusters,
)
from news_digest.models import Article, Cluster


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _article(title: str, hours_old: int = 0, publisher: str = 'Example') -> Article:
    return Article(
        title=title,
        link=f'https://example.com/{title.lower().replace(" ", "-")}',
        publisher=publisher,
        pub_date=NOW - timedelta(hours=hours_old),
    )


def _table_similarity(table: dict[frozenset[str], float]):
    def score(left: Article, right: Article) -> float:
        return table.get(frozenset({left.title, right.title}), 0.0)

    return score


def test_every_article_lands_in_exactly_one_cluster() -> None:
    articles = [
        _article('Senate passes budget bill'),
        _article('Senate passes budget bill after late-night vote', hours_old=1),
        _article('Local bakery wins award', hours_old=2),
        _article('Underdogs win championship final 3-2', hours_old=3),
    ]
    clusters = cluster_articles(articles)
    members = [member for cluster in clusters for member in cluster.members]
    assert sorted(member.link for member in members) == sorted(article.link for article in articles)
    assert any(len(cluster) == 2 for cluster in clusters)


def test_graph_clustering_is_transitive() -> None:
    a, b, c = _article('A'), _article('B'), _article('C')
    similarity = _table_similarity({frozenset({'A', 'B'}): 0.9, frozenset({'B', 'C'}): 0.9})
    clusters = graph_clustering([a, b, c], threshold=0.5, similarity=similarity)
    assert len(clusters) == 1
    assert clusters[0].members == [a, b, c]


def test_graph_clustering_does_not_cap_component_size() -> None:
    articles = [_article(f'Story {idx}') for idx in range(5)]
    clusters = cluster_articles(articles, threshold=0.5, max_cluster_size=2, similarity=lambda left, right: 1.0)
    assert len(clusters) == 1
    assert len(clusters[0]) == 5


def test_greedy_clustering_respects_max_cluster_size() -> None:
    articles = [_article(f'Story {idx}', hours_old=idx) for idx in range(3)]
    clusters = greedy_clustering(articles, threshold=0.5, max_cluster_size=2, similarity=lambda left, right: 1.0)
    assert [len(cluster) for cluster in clusters] == [2, 1]


def test_empty_input_yields_no_clusters() -> None:
    assert graph_clustering([]) == []
    assert greedy_clustering([]) == []


def test_representative_prefers_publisher_then_recency() -> None:
    older_preferred = _article('Old', hours_old=5, publisher='Wire')
    newest = _article('New', hours_old=0, publisher='Blog')
    assert choose_representative([newest, older_preferred], {'Wire'}) is older_preferred
    assert choose_representative([older_preferred, newest]) is newest


def test_representative_ties_go_to_earlier_member() -> None:
    first = _article('First')
    second = _article('Second')
    assert choose_representative([first, second]) is first


def test_merge_folds_similar_clusters_into_the_first() -> None:
    a, b, c = _article('A'), _article('B'), _article('C')
    clusters = [Cluster(a, [a]), Cluster(b, [b]), Cluster(c, [c])]
    similarity = _table_similarity({frozenset({'A', 'C'}): 0.8})
    merged = merge_similar_clusters(clusters, threshold=0.5, similarity=similarity)
    assert len(merged) == 2
    assert merged[0].representative is a
    assert merged[0].members == [a, c]
    assert merged[0].average_similarity == (1.0 + 0.8) / 2
    assert merged[1].members == [b]


def test_merge_leaves_single_cluster_alone() -> None:
    a = _article('A')
    clusters = [Cluster(a, [a])]
    assert merge_similar_clusters(clusters) == clusters
