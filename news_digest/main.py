##########################################################################################
#
# Script name: main.py
#
# Description: CLI entrypoint that ingests feeds and plans one newsletter end to end.
#
##########################################################################################

import argparse
import json
import logging
import os
import sys
from datetime import date
from pathlib import Path

from .cache import TTLCache
from .config import DEFAULT_MERGE_THRESHOLD, DEFAULT_SIMILARITY_THRESHOLD
from .fetchers import DEFAULT_FEEDS_FILE, build_sample_topic_groups, fetch_all_feeds, load_feed_registry
from .finalize import FinalizeResult, PlanFinalizer
from .planner import TopicPlanner, TopicProcessingError
from .preprocess import PreprocessOptions, Preprocessor, filter_groups_to_representatives, flatten_groups
from .store import InMemoryJobStore
from .summarizer import SummarizationOracle


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(os.path.basename(sys.argv[0]))
log.setLevel(logging.DEBUG)
log.propagate = False
formatter = logging.Formatter(
    '%(asctime)-15s [%(funcName)25s:%(lineno)-5s] %(levelname)-8s %(message)s'
)

# File handler for logging
fh = logging.FileHandler('news_digest.log', mode='w', delay=True)
fh.setLevel(logging.DEBUG)
fh.setFormatter(formatter)
if not any(isinstance(handler, logging.FileHandler) for handler in log.handlers):
    log.addHandler(fh)

root_log = logging.getLogger()
root_log.setLevel(logging.DEBUG)
if not any(isinstance(handler, logging.FileHandler) for handler in root_log.handlers):
    root_log.addHandler(fh)


# ****************************************************************************************
# Functions
# ****************************************************************************************


def build_newsletter(
    feeds_file: str,
    output_path: str,
    limit: int | None = None,
    extra: int | None = None,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    merge_threshold: float = DEFAULT_MERGE_THRESHOLD,
    use_sample_data: bool = False,
) -> FinalizeResult:
    if use_sample_data:
        groups = build_sample_topic_groups()
        log.debug('Using sample data for newsletter generation.')
    else:
        groups = fetch_all_feeds(load_feed_registry(feeds_file))
        log.debug('Fetched %d topic groups from configured feeds.', len(groups))

    articles = flatten_groups(groups)
    if not articles:
        raise RuntimeError('No articles fetched. Aborting to avoid an empty newsletter.')

    cache = TTLCache()
    cache.start_sweeper()
    try:
        preprocessor = Preprocessor(
            PreprocessOptions(similarity_threshold=threshold, merge_threshold=merge_threshold),
            cache=cache,
        )
        result = preprocessor.preprocess(articles)
    finally:
        cache.stop_sweeper()
    groups = filter_groups_to_representatives(groups, result.representatives)
    log.info('Kept %d of %d articles after preprocessing.', result.stats.representative_count, len(articles))

    store = InMemoryJobStore()
    job = store.create_job(groups, preprocess_stats=result.stats.to_dict())
    oracle = SummarizationOracle()
    planner = TopicPlanner(store, oracle)

    while True:
        processed = planner.process_next(job.id, limit=limit, extra=extra)
        if processed is None:
            break
        log.info(
            'Section %s: %s (%d of %d candidates, model=%s)',
            processed.topic.value,
            processed.status,
            processed.articles_used,
            processed.candidates_fetched,
            processed.ai_metadata.model,
        )

    finalized = PlanFinalizer(store, oracle).finalize(store.get_job(job.id))
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    payload = {'job': finalized.to_dict(), 'preprocess_stats': result.stats.to_dict(), 'plan': finalized.plan.to_dict()}
    output.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + '\n', encoding='utf-8')
    return finalized


# ****************************************************************************************
# Handle the arguments
# ****************************************************************************************


def handle_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Ingest news feeds and plan a sectioned newsletter.')
    parser.add_argument('--feeds', default=DEFAULT_FEEDS_FILE, help='Path to the YAML feed registry.')
    parser.add_argument('--output', default='output/plan.json', help='Where the finalized plan JSON is written.')
    parser.add_argument('--limit', type=int, default=None, help='Primary candidates per section.')
    parser.add_argument(
        '--extra',
        type=int,
        default=0,
        help='Cross-topic candidates per section. Extras consume stories later sections could use.',
    )
    parser.add_argument('--threshold', type=float, default=DEFAULT_SIMILARITY_THRESHOLD)
    parser.add_argument('--merge-threshold', type=float, default=DEFAULT_MERGE_THRESHOLD)
    parser.add_argument(
        '--sample',
        action='store_true',
        help='Use local sample data and skip all network requests.',
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output to stdout.')
    parser.add_argument('-q', '--quiet', action='store_true', help='Minimal stdout.')
    args = parser.parse_args(argv)

    # Configure stdout logging based on arguments
    ch = logging.StreamHandler(sys.stdout)
    if args.verbose:
        ch.setLevel(logging.DEBUG)
    elif args.quiet:
        ch.setLevel(logging.ERROR)
    else:
        ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)
    log.addHandler(ch)
    root_log.addHandler(ch)

    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    log.info('+  %s', os.path.basename(sys.argv[0]))
    log.info('+  Python Version: %s', sys.version.split()[0])
    log.info('+  Today is: %s', date.today())
    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    return args


# ****************************************************************************************
# Main
# ****************************************************************************************


def main() -> None:
    args = handle_args()
    try:
        finalized = build_newsletter(
            feeds_file=args.feeds,
            output_path=args.output,
            limit=args.limit,
            extra=args.extra,
            threshold=args.threshold,
            merge_threshold=args.merge_threshold,
            use_sample_data=args.sample,
        )
    except TopicProcessingError as exc:
        log.error('Planning stopped (%d): %s', exc.status, exc.message)
        sys.exit(1)
    log.info('%s: %s written to %s', finalized.message, finalized.plan.subject, args.output)


if __name__ == '__main__':
    main()
