##########################################################################################
#
# Script name: test_fetchers.py
#
# Description: Feed registry loading, RSS parsing and topic group merge tests.
#
##########################################################################################

from datetime import datetime, timezone
from pathlib import Path

import pytest
import requests

from news_digest import fetchers
from news_digest.fetchers import (
    RegistryError,
    build_sample_topic_groups,
    load_feed_registry,
    merge_topic_groups,
    parse_feed,
)
from news_digest.models import Article, TopicGroup


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

RSS = '''<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example World</title>
    <item>
      <title>Ceasefire talks resume in Geneva</title>
      <link>https://example.com/world/ceasefire</link>
      <description>&lt;p&gt;Negotiators met in &lt;b&gt;Geneva&lt;/b&gt; on Monday.&lt;/p&gt;</description>
      <pubDate>Mon, 19 Oct 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Opinion: Talks will fail again</title>
      <link>https://example.com/world/opinion</link>
      <description>A columnist is not convinced.</description>
      <pubDate>Mon, 19 Oct 2026 11:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Old news from last week</title>
      <link>https://example.com/world/old</link>
      <description>Stale.</description>
      <pubDate>Sat, 17 Oct 2026 08:00:00 GMT</pubDate>
    </item>
    <item>
      <title>No link here</title>
      <pubDate>Mon, 19 Oct 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
'''

FEED = {
    'publisher': 'Example World',
    'topic': 'World',
    'slug': 'example-world',
    'url': 'https://example.com/world/rss',
    'section_hints': ['international'],
    'commentary_prefix': '',
    'max_items': 10,
}


def _write_file(path: Path, content: str) -> None:
    path.write_text(content.strip() + '\n', encoding='utf-8')


def test_parse_feed_keeps_recent_entries_newest_first() -> None:
    group = parse_feed(RSS, FEED, now=NOW)
    assert group.slug == 'example-world'
    assert group.section_hints == ('international',)
    assert [item.title for item in group.items] == ['Opinion: Talks will fail again', 'Ceasefire talks resume in Geneva']

    ceasefire = group.items[1]
    assert ceasefire.description == 'Negotiators met in Geneva on Monday.'
    assert ceasefire.pub_date == datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
    assert ceasefire.slug.startswith('example-world-')
    assert len(ceasefire.slug) == len('example-world-') + 8
    assert ceasefire.topic == 'World'


def test_parse_feed_applies_commentary_prefix_and_cap() -> None:
    opinion_only = parse_feed(RSS, dict(FEED, commentary_prefix='Opinion'), now=NOW)
    assert [item.title for item in opinion_only.items] == ['Opinion: Talks will fail again']

    capped = parse_feed(RSS, dict(FEED, max_items=1), now=NOW)
    assert len(capped.items) == 1


def test_load_feed_registry_skips_invalid_and_duplicate_feeds(tmp_path: Path) -> None:
    registry = tmp_path / 'feeds.yaml'
    _write_file(
        registry,
        '''
        feeds:
          - publisher: Example World
            topic: World
            slug: example-world
            url: https://example.com/world/rss
            section_hints: international, politics
          - publisher: Missing Url
            topic: Nothing
            slug: missing-url
          - publisher: Duplicate
            topic: World
            slug: example-world
            url: https://example.com/other/rss
          - just a string
        ''',
    )
    feeds = load_feed_registry(str(registry))
    assert len(feeds) == 1
    assert feeds[0]['section_hints'] == ['international', 'politics']
    assert feeds[0]['max_items'] == 10
    assert feeds[0]['commentary_prefix'] == ''


def test_load_feed_registry_requires_file(tmp_path: Path) -> None:
    with pytest.raises(RegistryError):
        load_feed_registry(str(tmp_path / 'missing.yaml'))


def test_merge_topic_groups_drops_repeated_links() -> None:
    first = TopicGroup(
        publisher='Zeta',
        topic='World',
        slug='zeta-world',
        items=[Article(title='Story', link='https://example.com/story')],
    )
    second = TopicGroup(
        publisher='Alpha',
        topic='Politics',
        slug='alpha-politics',
        items=[
            Article(title='Story again', link='http://www.example.com/story?utm_source=feed'),
            Article(title='Other', link='https://example.com/other'),
        ],
    )
    empty_after_merge = TopicGroup(
        publisher='Beta',
        topic='World',
        slug='beta-world',
        items=[Article(title='Story', link='https://example.com/story/')],
    )
    merged = merge_topic_groups([first, second, empty_after_merge])
    assert [group.slug for group in merged] == ['alpha-politics', 'zeta-world']
    assert [item.title for item in merged[0].items] == ['Other']


def test_fetch_all_feeds_skips_failing_feeds(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_fetch(feed, session=None, now=None):
        if feed['slug'] == 'broken':
            raise requests.ConnectionError('unreachable')
        return parse_feed(RSS, feed, now=NOW)

    monkeypatch.setattr(fetchers, 'fetch_feed', fake_fetch)
    groups = fetchers.fetch_all_feeds([dict(FEED, slug='broken'), FEED])
    assert [group.slug for group in groups] == ['example-world']


def test_sample_groups_cover_six_sections() -> None:
    groups = build_sample_topic_groups(now=NOW)
    assert len(groups) == 6
    assert all(group.items for group in groups)
    assert all(item.pub_date < NOW for group in groups for item in group.items)
