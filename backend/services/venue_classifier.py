"""
Tier 1 venue classification: instant keyword heuristics on name + address.
"""
from __future__ import annotations

import re
from typing import List, Optional

from domain.models import ClassificationResult, VenueType

HIGH_CONFIDENCE_THRESHOLD = 0.7

EXCLUDE_KEYWORDS = [
    "restaurant",
    "bar",
    "grill",
    "cafe",
    "pub",
    "hotel",
    "liquor",
    "store",
    "shop",
    "market",
    "gas station",
    "grocery",
]

BREWERY_KEYWORDS = [
    "brew",
    "brewery",
    "brewhouse",
    "brewing",
    "brewpub",
    "taproom",
    "beer",
    "ale",
    "ipa",
    "lager",
    "stout",
    "porter",
    "craft beer",
    "microbrewery",
]

WINERY_KEYWORDS = [
    "wine",
    "winery",
    "vineyard",
    "vino",
    "tasting room",
    "cellar",
    "estate",
    "chateau",
]


def _compile(keywords: List[str]) -> List[tuple]:
    return [(kw, re.compile(r"\b" + re.escape(kw) + r"\b")) for kw in keywords]


_EXCLUDE_PATTERNS = _compile(EXCLUDE_KEYWORDS)
_BREWERY_PATTERNS = _compile(BREWERY_KEYWORDS)
_WINERY_PATTERNS = _compile(WINERY_KEYWORDS)


def _prepare_text(name: Optional[str], address: Optional[str]) -> str:
    combined = " ".join(part for part in (name, address) if part)
    return re.sub(r"[^a-z0-9]+", " ", combined.lower()).strip()


def _matches(text: str, patterns: List[tuple]) -> List[str]:
    return [kw for kw, pattern in patterns if pattern.search(text)]


def confidence_for_matches(count: int) -> float:
    if count <= 0:
        return 0.0
    if count == 1:
        return 0.4
    if count == 2:
        return 0.65
    return min(0.8 + (count - 3) * 0.05, 1.0)


def classify(name: Optional[str], address: Optional[str] = None) -> ClassificationResult:
    """
    Classify a place as brewery/winery from its name and address.

    Exclusion keywords win over everything else: "Joe's Brewing Restaurant"
    is not a verdict. Ties between the brewery and winery sets go to brewery.
    """
    text = _prepare_text(name, address)
    if not text:
        return ClassificationResult(is_venue=False, venue_type=None, confidence=0.0)

    excluded = _matches(text, _EXCLUDE_PATTERNS)
    if excluded:
        return ClassificationResult(is_venue=False, venue_type=None, confidence=0.0, keywords=excluded)

    brewery_hits = _matches(text, _BREWERY_PATTERNS)
    winery_hits = _matches(text, _WINERY_PATTERNS)
    if not brewery_hits and not winery_hits:
        return ClassificationResult(is_venue=False, venue_type=None, confidence=0.0)

    if len(brewery_hits) >= len(winery_hits):
        venue_type, hits = VenueType.BREWERY, brewery_hits
    else:
        venue_type, hits = VenueType.WINERY, winery_hits

    return ClassificationResult(
        is_venue=True,
        venue_type=venue_type,
        confidence=confidence_for_matches(len(hits)),
        keywords=hits,
    )


def is_high_confidence(result: ClassificationResult) -> bool:
    return result.is_venue and result.confidence >= HIGH_CONFIDENCE_THRESHOLD
