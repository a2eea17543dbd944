"""
Tier 3 verification: corroborate a place through a plain HTML web search.

The result page is reduced to the text of its result snippets with
BeautifulSoup, the echoed query is removed, and what remains is scanned for
brewery/winery keyword families. Confidence is capped at 0.9 so a
web-search verdict never outranks a close directory match.
"""
from __future__ import annotations

import itertools
import logging
import re
import threading
from typing import List, Optional

import requests
from bs4 import BeautifulSoup

from domain.models import VenueType, VerificationResult
from services.failure_tracker import FailureTracker
from services.rate_limiter import TokenBucket
from services.verification_cache import VerificationCache
from settings import settings

logger = logging.getLogger(__name__)
_session = requests.Session()

SOURCE = "web_search"
MAX_CONFIDENCE = 0.9
KEYWORDS_PER_POINT = 5
BLOCKING_THRESHOLD = 3
QUERY_SUFFIX = "brewery winery"
NON_RESULT_TAGS = ["head", "title", "script", "style", "noscript", "form", "input", "textarea", "select"]
RESULT_SELECTOR = ".result, .results li, .b_algo"

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
]

BREWERY_KEYWORDS = [
    "brewery",
    "brewing",
    "brewpub",
    "tap room",
    "taproom",
    "craft beer",
    "microbrewery",
]

WINERY_KEYWORDS = [
    "winery",
    "vineyard",
    "tasting room",
    "wine tasting",
    "vintner",
    "wine cellar",
    "wine estate",
]


def _unverified() -> VerificationResult:
    return VerificationResult(tier=3, verified=False, confidence=0.0, source=SOURCE)


def detect_keywords(text: str) -> VerificationResult:
    """
    Score search-result text against the two keyword families.

    Equal non-zero scores resolve to winery.
    """
    lowered = text.lower()
    brewery_found = [kw for kw in BREWERY_KEYWORDS if kw in lowered]
    winery_found = [kw for kw in WINERY_KEYWORDS if kw in lowered]
    if not brewery_found and not winery_found:
        return _unverified()

    if len(brewery_found) > len(winery_found):
        venue_type, found = VenueType.BREWERY, brewery_found
    else:
        venue_type, found = VenueType.WINERY, winery_found
    return VerificationResult(
        tier=3,
        verified=True,
        confidence=min(len(found) / KEYWORDS_PER_POINT, MAX_CONFIDENCE),
        source=SOURCE,
        venue_type=venue_type,
        keywords_found=found[:3],
    )


def extract_text(html: str) -> str:
    """Visible text of the result snippets, or of the whole body when none are marked up."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(NON_RESULT_TAGS):
        tag.decompose()
    results = soup.select(RESULT_SELECTOR)
    if results:
        return " ".join(node.get_text(" ", strip=True) for node in results)
    return soup.get_text(" ", strip=True)


def strip_echoes(text: str, *phrases: str) -> str:
    """Remove case-insensitive occurrences of each phrase, longest first."""
    for phrase in sorted(filter(None, phrases), key=len, reverse=True):
        text = re.sub(re.escape(phrase), " ", text, flags=re.IGNORECASE)
    return text


def default_web_search_limiter() -> TokenBucket:
    interval = settings.WEB_SEARCH_MIN_INTERVAL
    return TokenBucket(capacity=1, refill_amount=1, refill_interval=interval, min_interval=interval)


class WebSearchVerifier:
    def __init__(
        self,
        cache: VerificationCache,
        limiter: Optional[TokenBucket] = None,
        failures: Optional[FailureTracker] = None,
        search_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        user_agents: Optional[List[str]] = None,
    ):
        self.cache = cache
        self.limiter = limiter or default_web_search_limiter()
        self.failures = failures or FailureTracker("web_search", BLOCKING_THRESHOLD)
        self.search_url = search_url or settings.WEB_SEARCH_URL
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.session = session or _session
        self._user_agents = itertools.cycle(user_agents or USER_AGENTS)
        self._ua_lock = threading.Lock()

    def _next_user_agent(self) -> str:
        with self._ua_lock:
            return next(self._user_agents)

    def _search(self, query: str) -> Optional[str]:
        """Return visible text of the result page, or None on any failure."""
        self.limiter.acquire()
        headers = {
            "User-Agent": self._next_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }
        try:
            resp = self.session.get(
                self.search_url,
                params={"q": query},
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            self.failures.record_failure(str(exc))
            return None
        self.failures.record_success()
        return strip_echoes(extract_text(resp.text or ""), query)

    def verify_venue(self, name: str, address: Optional[str] = None) -> VerificationResult:
        """
        Search for the place by name (and address) plus venue keywords.

        Only verified results are cached, keyed by normalized name for 60 days.
        """
        if not name:
            return _unverified()
        cached = self.cache.get_tier3(name)
        if cached is not None:
            logger.debug("Tier 3 cache hit")
            return cached

        query = f"{name} {address} {QUERY_SUFFIX}" if address else f"{name} {QUERY_SUFFIX}"
        text = self._search(query)
        if text is None:
            return _unverified()
        text = strip_echoes(text, QUERY_SUFFIX)

        result = detect_keywords(text)
        if result.verified:
            self.cache.set_tier3(name, result)
            logger.info(
                "Tier 3 verified place as %s (keywords: %s)",
                result.venue_type.value,
                ", ".join(result.keywords_found),
            )
        return result

    def search_by_address(self, address: str) -> VerificationResult:
        """
        Search the address alone, without venue keywords in the query, so that
        unrelated nearby venues do not bias the result. Positive and negative
        outcomes are cached for 7 days.
        """
        if not address:
            return _unverified()
        cached = self.cache.get_address(address)
        if cached is not None:
            logger.debug("Address search cache hit")
            return cached

        text = self._search(address)
        if text is None:
            return _unverified()

        result = detect_keywords(text)
        self.cache.set_address(address, result)
        if result.verified:
            logger.info("Address search found a %s (%.2f confidence)", result.venue_type.value, result.confidence)
        return result
