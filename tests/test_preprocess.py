##########################################################################################
#
# Script name: test_preprocess.py
#
# Description: URL dedup, hint fast path, per-topic clustering and result cache tests.
#
##########################################################################################

from datetime import datetime, timedelta, timezone

from news_digest.cache import TTLCache
from news_digest.config import SectionKey
from news_digest.fetchers import build_sample_topic_groups
from news_digest.models import Article
from news_digest.preprocess import (
    PreprocessOptions,
    Preprocessor,
    cache_key,
    dedupe_by_url,
    filter_groups_to_representatives,
    flatten_groups,
    partition_by_topic,
    pre_cluster_by_hints,
)


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _article(title: str, link: str, hints: tuple[str, ...] = (), topic: str = '', minutes_old: int = 0) -> Article:
    return Article(
        title=title,
        link=link,
        topic=topic,
        section_hints=hints,
        pub_date=NOW - timedelta(minutes=minutes_old),
    )


def test_dedupe_by_url_ignores_tracking_params_and_keeps_newest() -> None:
    older = _article('Older copy', 'https://example.com/story', minutes_old=30)
    newer = _article('Newer copy', 'http://www.example.com/story/?utm_source=rss', minutes_old=5)
    unique = dedupe_by_url([older, newer])
    assert unique == [newer]


def test_pre_cluster_by_hints_needs_exactly_one_known_section() -> None:
    single = _article('Chip news', 'https://example.com/1', hints=('tech',))
    double = _article('Budget news', 'https://example.com/2', hints=('politics', 'international'))
    unknown = _article('Odd news', 'https://example.com/3', hints=('weather',))
    wildcard = _article('Long read', 'https://example.com/4', hints=('wildcard',))
    pre_clustered, needs_clustering = pre_cluster_by_hints([single, double, unknown, wildcard])
    assert pre_clustered == {SectionKey.TECH: [single], SectionKey.WILD_CARD: [wildcard]}
    assert needs_clustering == [double, unknown]


def test_partition_by_topic_defaults_to_general() -> None:
    sport = _article('Final', 'https://example.com/1', topic='Sport')
    loose = _article('Loose', 'https://example.com/2')
    assert partition_by_topic([sport, loose]) == {'Sport': [sport], 'general': [loose]}


def test_cache_key_ignores_input_order() -> None:
    first = _article('A', 'https://example.com/a')
    second = _article('B', 'https://example.com/b')
    assert cache_key([first, second]) == cache_key([second, first])


def test_sample_groups_collapse_duplicate_headlines() -> None:
    groups = build_sample_topic_groups(now=NOW)
    articles = flatten_groups(groups)
    result = Preprocessor().preprocess(articles)

    stats = result.stats
    assert stats.original_count == 11
    assert stats.after_dedupe_count == 11
    assert stats.pre_clustered_count == 7
    assert stats.representative_count == 10
    assert stats.reduction_percent == 9

    titles = [article.title for article in result.representatives]
    assert 'Senate passes budget bill' in titles
    assert 'Senate passes budget bill after late-night vote' not in titles
    assert set(result.pre_clustered_by_section) == {
        SectionKey.COMMENTARIES,
        SectionKey.INTERNATIONAL,
        SectionKey.TECH,
        SectionKey.SPORT,
    }


def test_filter_groups_keeps_only_representatives() -> None:
    groups = build_sample_topic_groups(now=NOW)
    result = Preprocessor().preprocess(flatten_groups(groups))
    filtered = filter_groups_to_representatives(groups, result.representatives)
    politics = next(group for group in filtered if group.topic == 'Politics')
    assert [item.title for item in politics.items] == ['Senate passes budget bill']
    assert sum(len(group.items) for group in filtered) == len(result.representatives)


def test_preprocess_result_is_cached_until_ttl() -> None:
    clock = FakeClock()
    preprocessor = Preprocessor(PreprocessOptions(), cache=TTLCache(ttl=1800, clock=clock))
    articles = flatten_groups(build_sample_topic_groups(now=NOW))

    first = preprocessor.preprocess(articles)
    assert preprocessor.preprocess(list(reversed(articles))) is first

    clock.now += 1801
    refreshed = preprocessor.preprocess(articles)
    assert refreshed is not first
    assert refreshed.stats.representative_count == first.stats.representative_count


def test_topic_unaware_mode_clusters_everything_together() -> None:
    left = _article('Trump wins', 'https://example.com/1', topic='World')
    right = _article('Trump wins election in landslide victory', 'https://example.com/2', topic='Politics')
    aware = Preprocessor(PreprocessOptions()).preprocess([left, right])
    unaware = Preprocessor(PreprocessOptions(topic_aware=False)).preprocess([left, right])
    assert aware.stats.representative_count == 2
    assert unaware.stats.representative_count == 1
