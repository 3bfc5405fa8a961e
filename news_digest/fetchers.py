##########################################################################################
#
# Script name: fetchers.py
#
# Description: Loads the feed registry and turns RSS feeds into per-feed topic groups.
#
##########################################################################################

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import feedparser
import requests
import yaml

from .config import ARTICLES_PER_FEED, FETCH_TIMEOUT_SECONDS, RECENCY_WINDOW_HOURS, USER_AGENT
from .models import Article, TopicGroup
from .utils import normalize_url, parse_datetime, stable_id, strip_html


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)
DEFAULT_FEEDS_FILE = 'config/feeds.yaml'
REQUIRED_FEED_KEYS = ('publisher', 'topic', 'slug', 'url')


# ****************************************************************************************
# Exceptions
# ****************************************************************************************


class Error(Exception):
    pass


class RegistryError(Error):
    pass


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _as_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(',') if part.strip()]
    return [str(part).strip() for part in value if str(part).strip()]


def load_feed_registry(path: str = DEFAULT_FEEDS_FILE) -> list[dict]:
    registry_path = Path(path)
    if not registry_path.exists():
        raise RegistryError(f'Feed registry not found: {path}')
    payload = yaml.safe_load(registry_path.read_text(encoding='utf-8')) or {}
    if not isinstance(payload, dict):
        raise RegistryError(f'Feed registry {path} must be a mapping with a "feeds" list')

    feeds: list[dict] = []
    seen_slugs: set[str] = set()
    for idx, raw in enumerate(payload.get('feeds') or []):
        if not isinstance(raw, dict):
            log.warning('Skipping feed #%d in %s: not a mapping', idx, path)
            continue
        missing = [key for key in REQUIRED_FEED_KEYS if not str(raw.get(key) or '').strip()]
        if missing:
            log.warning('Skipping feed #%d in %s: missing %s', idx, path, ', '.join(missing))
            continue
        slug = str(raw['slug']).strip()
        if slug in seen_slugs:
            log.warning('Skipping duplicate feed slug %s in %s', slug, path)
            continue
        seen_slugs.add(slug)
        feeds.append(
            {
                'publisher': str(raw['publisher']).strip(),
                'topic': str(raw['topic']).strip(),
                'slug': slug,
                'url': str(raw['url']).strip(),
                'section_hints': [hint.lower() for hint in _as_list(raw.get('section_hints'))],
                'commentary_prefix': str(raw.get('commentary_prefix') or '').strip(),
                'max_items': int(raw.get('max_items') or ARTICLES_PER_FEED),
            }
        )
    log.debug('Loaded %d feeds from %s', len(feeds), path)
    return feeds


def parse_published(entry: dict) -> datetime | None:
    for candidate in (entry.get('published'), entry.get('updated'), entry.get('created')):
        parsed = parse_datetime(candidate)
        if parsed is not None:
            return parsed
    return None


def parse_feed(content: bytes | str, feed: dict, now: datetime | None = None) -> TopicGroup:
    """Recent entries of one feed, newest first, capped at the feed's max_items."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=RECENCY_WINDOW_HOURS)
    parsed = feedparser.parse(content)
    if getattr(parsed, 'bozo', False):
        log.warning('RSS parse warning for %s: %s', feed['slug'], getattr(parsed, 'bozo_exception', ''))

    prefix = (feed.get('commentary_prefix') or '').lower()
    hints = tuple(feed.get('section_hints') or ())
    articles: list[Article] = []
    for entry in parsed.entries:
        title = strip_html(entry.get('title', ''))
        link = (entry.get('link') or '').strip()
        if not title or not link:
            continue
        if prefix and not title.lower().startswith(prefix):
            continue
        published = parse_published(entry)
        if published is None or published < cutoff or published > now + timedelta(hours=1):
            continue
        articles.append(
            Article(
                title=title,
                description=strip_html(entry.get('summary') or entry.get('description') or ''),
                link=link,
                publisher=feed['publisher'],
                topic=feed['topic'],
                slug=f'{feed["slug"]}-{stable_id(link)[:8]}',
                pub_date=published,
                section_hints=hints,
            )
        )

    articles.sort(key=lambda article: article.pub_date, reverse=True)
    return TopicGroup(
        publisher=feed['publisher'],
        topic=feed['topic'],
        slug=feed['slug'],
        items=articles[: int(feed.get('max_items') or ARTICLES_PER_FEED)],
        section_hints=hints,
    )


def fetch_feed(feed: dict, session: requests.Session | None = None, now: datetime | None = None) -> TopicGroup:
    http = session or requests
    response = http.get(feed['url'], headers={'User-Agent': USER_AGENT}, timeout=FETCH_TIMEOUT_SECONDS)
    response.raise_for_status()
    return parse_feed(response.content, feed, now=now)


def merge_topic_groups(groups: list[TopicGroup]) -> list[TopicGroup]:
    """Drop links already seen in an earlier group, then order by publisher and topic."""
    seen: set[str] = set()
    merged: list[TopicGroup] = []
    for group in groups:
        items = []
        for item in group.items:
            key = normalize_url(item.link)
            if key in seen:
                continue
            seen.add(key)
            items.append(item)
        if items:
            group.items = items
            merged.append(group)
    return sorted(merged, key=lambda group: (group.publisher.lower(), group.topic.lower()))


def fetch_all_feeds(feeds: list[dict], now: datetime | None = None) -> list[TopicGroup]:
    groups: list[TopicGroup] = []
    with requests.Session() as session:
        for feed in feeds:
            try:
                group = fetch_feed(feed, session=session, now=now)
            except requests.RequestException as exc:
                log.warning('Feed fetch failed for %s: %s', feed['slug'], exc)
                continue
            log.debug('Fetched %d recent items from %s', len(group.items), feed['slug'])
            groups.append(group)
    return merge_topic_groups(groups)


def build_sample_topic_groups(now: datetime | None = None) -> list[TopicGroup]:
    now = now or datetime.now(timezone.utc)
    templates = [
        ('Example Times', 'Commentary & Opinion', 'example-opinion', ['commentaries'], [
            ('Opinion: The case for a four-day week', 'A columnist argues shorter weeks raise output.'),
            ('Why the budget fight misses the point', 'An editorial on what the spending debate ignores.'),
        ]),
        ('Example World', 'World', 'example-world', ['international'], [
            ('Ceasefire talks resume in Geneva', 'Negotiators met in Geneva on Tuesday to restart talks.'),
            ('Flooding displaces 12,000 people in Northern Italy', 'Heavy rain forced 12,000 people from their homes.'),
        ]),
        ('Example Post', 'Politics', 'example-politics', ['politics', 'international'], [
            ('Senate passes budget bill', 'The Senate approved the spending plan late on Monday.'),
            ('Senate passes budget bill after late-night vote', 'Lawmakers approved the plan after hours of debate.'),
        ]),
        ('Example Ledger', 'Business', 'example-business', ['business', 'tech'], [
            ('Chipmaker shares jump on record earnings', 'Revenue beat forecasts as demand for AI chips grew.'),
            ('Retailer cuts outlook as consumer spending slows', 'The company lowered its annual revenue guidance.'),
        ]),
        ('Example Wire', 'Technology', 'example-tech', ['tech'], [
            ('Startup unveils battery that charges in five minutes', 'The device uses a new solid-state design.'),
            ('Major app store changes rules for developers', 'Developers will be able to link to outside payments.'),
        ]),
        ('Example Sport', 'Sport', 'example-sport', ['sport'], [
            ('Underdogs win championship final 3-2', 'A late goal sealed the title for the visitors.'),
        ]),
    ]
    groups: list[TopicGroup] = []
    offset = 0
    for publisher, topic, slug, hints, stories in templates:
        items = []
        for title, description in stories:
            offset += 1
            link = f'https://example.com/{slug}/{offset}'
            items.append(
                Article(
                    title=title,
                    description=description,
                    link=link,
                    publisher=publisher,
                    topic=topic,
                    slug=f'{slug}-{stable_id(link)[:8]}',
                    pub_date=now - timedelta(minutes=20 * offset),
                    section_hints=tuple(hints),
                )
            )
        groups.append(TopicGroup(publisher=publisher, topic=topic, slug=slug, items=items, section_hints=tuple(hints)))
    return groups
