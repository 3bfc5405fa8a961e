##########################################################################################
#
# Script name: test_main.py
#
# Description: End-to-end newsletter build over sample data without a model key.
#
##########################################################################################

import json
from pathlib import Path

import pytest

from news_digest import main
from news_digest.cache import TTLCache
from news_digest.main import build_newsletter, handle_args


class RecordingCache(TTLCache):
    instances: list['RecordingCache'] = []

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.events: list[str] = []
        RecordingCache.instances.append(self)

    def start_sweeper(self) -> None:
        self.events.append('start')
        super().start_sweeper()

    def stop_sweeper(self) -> None:
        self.events.append('stop')
        super().stop_sweeper()


def test_build_newsletter_from_sample_data(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)
    output = tmp_path / 'out' / 'plan.json'

    finalized = build_newsletter(
        feeds_file='unused.yaml',
        output_path=str(output),
        extra=0,
        use_sample_data=True,
    )

    assert finalized.total_topics == 6
    assert finalized.total_articles == 10
    payload = json.loads(output.read_text(encoding='utf-8'))
    plan = payload['plan']
    assert plan['subject'].startswith('The Gist | ')
    assert set(plan['sections']) == {'commentaries', 'international', 'politics', 'business', 'tech', 'sport'}
    assert len(plan['highlights']) == 4
    assert plan['ai_metadata']['fallback_reason'] == 'Missing OPENAI_API_KEY'
    assert payload['preprocess_stats']['representative_count'] == 10
    assert payload['job']['total_publishers'] == 6


def test_handle_args_defaults_and_flags() -> None:
    args = handle_args(['--sample', '--extra', '2', '--threshold', '0.2', '-q'])
    assert args.sample is True
    assert args.extra == 2
    assert args.threshold == 0.2
    assert args.merge_threshold == 0.5
    assert args.feeds == 'config/feeds.yaml'
    assert args.limit is None


def test_build_newsletter_stops_the_cache_sweeper(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)
    monkeypatch.setattr(RecordingCache, 'instances', [])
    monkeypatch.setattr(main, 'TTLCache', RecordingCache)

    build_newsletter(feeds_file='unused.yaml', output_path=str(tmp_path / 'plan.json'), extra=0, use_sample_data=True)

    assert len(RecordingCache.instances) == 1
    cache = RecordingCache.instances[0]
    assert cache.events == ['start', 'stop']
    assert cache._timer is None


def test_build_newsletter_stops_the_sweeper_when_preprocessing_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken_preprocess(self, articles):
        raise ValueError('bad articles')

    monkeypatch.setattr(RecordingCache, 'instances', [])
    monkeypatch.setattr(main, 'TTLCache', RecordingCache)
    monkeypatch.setattr(main.Preprocessor, 'preprocess', broken_preprocess)

    with pytest.raises(ValueError):
        build_newsletter(feeds_file='unused.yaml', output_path=str(tmp_path / 'plan.json'), use_sample_data=True)

    assert RecordingCache.instances[0].events == ['start', 'stop']
    assert not (tmp_path / 'plan.json').exists()
