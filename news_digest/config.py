##########################################################################################
#
# Script name: config.py
#
# Description: Section vocabulary and pipeline defaults for the newsletter planner.
#
##########################################################################################

import re
from dataclasses import dataclass
from enum import Enum


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************


class SectionKey(str, Enum):
    COMMENTARIES = 'commentaries'
    INTERNATIONAL = 'international'
    POLITICS = 'politics'
    BUSINESS = 'business'
    TECH = 'tech'
    SPORT = 'sport'
    CULTURE = 'culture'
    ENTERTAINMENT = 'entertainment'
    SCIENCE = 'science'
    LIFESTYLE = 'lifestyle'
    WILD_CARD = 'wildCard'

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Section:
    order: int
    key: SectionKey
    label: str
    limit: int
    hint: str
    keywords: tuple[re.Pattern, ...]
    lens: str


def _patterns(*expressions: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(expression, re.IGNORECASE) for expression in expressions)


# Processing order for planning and cross-section dedup.
SECTIONS = [
    Section(
        order=0,
        key=SectionKey.COMMENTARIES,
        label='Commentaries',
        limit=15,
        hint='commentaries',
        keywords=_patterns(
            r'\bopinion\b', r'\banalysis\b', r'\bcommentary\b', r'\bcolumn\b',
            r'\beditorial\b', r'\bperspective\b',
        ),
        lens='argument and viewpoint, attributed to the author',
    ),
    Section(
        order=1,
        key=SectionKey.INTERNATIONAL,
        label='International',
        limit=8,
        hint='international',
        keywords=_patterns(
            r'\bworld\b', r'\bglobal\b', r'\basia\b', r'\bmiddle east\b', r'\beurope\b',
            r'\bafrica\b', r'\blatin america\b', r'\binternational\b',
        ),
        lens='geopolitical consequence and who is affected',
    ),
    Section(
        order=2,
        key=SectionKey.POLITICS,
        label='Politics',
        limit=8,
        hint='politics',
        keywords=_patterns(
            r'\bpolitic', r'\bgovernment\b', r'\bpolicy\b', r'\belection\b', r'\bcongress\b',
            r'\bparliament\b', r'\bwhite house\b', r'\bsenate\b',
        ),
        lens='decisions, votes, and their policy impact',
    ),
    Section(
        order=3,
        key=SectionKey.BUSINESS,
        label='Business',
        limit=8,
        hint='business',
        keywords=_patterns(
            r'\bbusiness\b', r'\bmarket', r'\beconom', r'\bfinance\b', r'\bindustry\b',
            r'\bstock', r'\bshares?\b', r'\brevenue\b', r'\bearnings\b', r'\binvestor',
        ),
        lens='market and economic impact',
    ),
    Section(
        order=4,
        key=SectionKey.TECH,
        label='Tech',
        limit=8,
        hint='tech',
        keywords=_patterns(
            r'\btech', r'\btechnology\b', r'\bsoftware\b', r'\bai\b', r'\bartificial intelligence\b',
            r'\bmachine learning\b', r'\bstartup', r'\bapp\b', r'\bdevice', r'\bcyber', r'\bcrypto',
        ),
        lens='what the technology does and who it changes things for',
    ),
    Section(
        order=5,
        key=SectionKey.SCIENCE,
        label='Science',
        limit=6,
        hint='science',
        keywords=_patterns(
            r'\bscience\b', r'\bscientist', r'\bresearch', r'\bdiscover', r'\bstudy\b',
            r'\bexperiment', r'\binnovation\b', r'\bbreakthrough\b',
        ),
        lens='the finding and why it is new',
    ),
    Section(
        order=6,
        key=SectionKey.SPORT,
        label='Sport',
        limit=6,
        hint='sport',
        keywords=_patterns(
            r'\bsport', r'\bfootball\b', r'\bbasketball\b', r'\bsoccer\b', r'\btennis\b',
            r'\bcricket\b', r'\bathlete', r'\bchampionship', r'\btournament',
        ),
        lens='result and what it means for the competition',
    ),
    Section(
        order=7,
        key=SectionKey.CULTURE,
        label='Culture',
        limit=6,
        hint='culture',
        keywords=_patterns(
            r'\bculture\b', r'\barts?\b', r'\bmusic\b', r'\bfilm\b', r'\bmovie',
            r'\bentertainment\b', r'\bcelebrity\b', r'\bbook', r'\bliterature\b',
        ),
        lens='the work and its reception',
    ),
    Section(
        order=8,
        key=SectionKey.ENTERTAINMENT,
        label='Entertainment',
        limit=8,
        hint='entertainment',
        keywords=_patterns(
            r'\bentertainment\b', r'\bcelebrit', r'\bhollywood\b', r'\bmovie', r'\bfilm\b',
            r'\btv\b', r'\btelevision\b', r'\bmusic\b', r'\baward', r'\bstreaming\b',
        ),
        lens='who is involved and why audiences care',
    ),
    Section(
        order=9,
        key=SectionKey.LIFESTYLE,
        label='Lifestyle',
        limit=6,
        hint='lifestyle',
        keywords=_patterns(
            r'\blifestyle\b', r'\bhealth', r'\bwellness\b', r'\bfitness\b', r'\btravel',
            r'\bfood\b', r'\bfashion\b', r'\bhome\b', r'\bfamil',
        ),
        lens='practical takeaway for readers',
    ),
    Section(
        order=10,
        key=SectionKey.WILD_CARD,
        label='Wild Card',
        limit=3,
        hint='wildcard',
        keywords=_patterns(
            r'\bscience\b', r'\bfeature\b', r'\btrend', r'\blifestyle\b', r'\bhealth\b',
        ),
        lens='the surprising angle',
    ),
]

SECTION_SEQUENCE = [section.key for section in SECTIONS]
SECTION_BY_KEY = {section.key: section for section in SECTIONS}
SECTION_LIMITS = {section.key: section.limit for section in SECTIONS}

# Feed hint string to section key.
HINT_TO_SECTION = {section.hint: section.key for section in SECTIONS}
KNOWN_HINTS = frozenset(HINT_TO_SECTION)

# Sanitized free-text token to section key.
TOKEN_TO_SECTION = {re.sub(r'[^a-z]', '', section.key.value.lower()): section.key for section in SECTIONS}
TOKEN_TO_SECTION.update(
    {
        'technology': SectionKey.TECH,
        'sports': SectionKey.SPORT,
        'wildcard': SectionKey.WILD_CARD,
        'wildcardfeature': SectionKey.WILD_CARD,
    }
)

OVERALL_KEY = 'overall'

# Clustering and preprocessing
DEFAULT_SIMILARITY_THRESHOLD = 0.15
DEFAULT_MAX_CLUSTER_SIZE = 20
DEFAULT_MERGE_THRESHOLD = 0.5
NEAR_MISS_MARGIN = 0.1
CACHE_TTL_SECONDS = 30 * 60
CACHE_SWEEP_SECONDS = 5 * 60

# Planning
DEFAULT_EXTRA_CANDIDATES = 5
MAX_ALREADY_SELECTED_TITLES = 12
MAX_INPUT_ARTICLES = 80
MAX_RANKED_ITEMS = 15
MIN_RANKED_ITEMS = 3
HIGHLIGHT_COUNT = 4
SUMMARY_MAX_CHARS = 280

# Ingestion
RECENCY_WINDOW_HOURS = 24
ARTICLES_PER_FEED = 10
FETCH_TIMEOUT_SECONDS = 15
USER_AGENT = 'news-digest-bot/1.0'

# Oracle
DEFAULT_MODEL = 'gpt-5-mini'
DEFAULT_ORACLE_TIMEOUT_SECONDS = 20.0
ORACLE_RETRY_ATTEMPTS = 2
FALLBACK_MODEL = 'heuristic'
FINALIZE_FALLBACK_MODEL = 'fallback'
EMAIL_SUBJECT_PREFIX = 'The Gist'


# ****************************************************************************************
# Functions
# ****************************************************************************************


def section_for_hint(hint: str) -> SectionKey | None:
    return HINT_TO_SECTION.get((hint or '').strip().lower())
