"""
SQLite-backed TTL cache for external verification results.

One table holds every kind of entry; the key prefix encodes the kind
(tier 2 directory matches, tier 3 web-search results, address lookups,
area-discovery markers and map-data point lookups). Any sqlite failure is
logged and treated as a miss so that the calling tier keeps working.
"""
from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import threading
import time
from typing import Any, Dict, Optional

from domain.models import VerificationResult
from settings import settings

logger = logging.getLogger(__name__)

DAY = 24 * 3600
TIER2_TTL_SECONDS = 30 * DAY
TIER3_TTL_SECONDS = 60 * DAY
ADDRESS_TTL_SECONDS = 7 * DAY
DISCOVERY_TTL_SECONDS = DAY
OVERPASS_FOUND_TTL_SECONDS = DAY
OVERPASS_MISS_TTL_SECONDS = 3600

KEY_PREFIX = "venue"
KINDS = ("tier2", "tier3", "address", "discovery", "overpass")


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, drop punctuation and join words with underscores."""
    if not name:
        return "unnamed"
    cleaned = re.sub(r"[^a-z0-9\s]", "", name.lower().strip())
    cleaned = re.sub(r"\s+", "_", cleaned.strip())
    return cleaned or "unnamed"


def tier2_key(name: Optional[str], lat: float, lng: float) -> str:
    # 4 decimal places is roughly an 11 m grid
    return f"{KEY_PREFIX}:verify:tier2:{normalize_name(name)}:{lat:.4f}:{lng:.4f}"


def tier3_key(name: Optional[str]) -> str:
    return f"{KEY_PREFIX}:verify:tier3:{normalize_name(name)}"


def address_key(address: str) -> str:
    return f"{KEY_PREFIX}:verify:address:{normalize_name(address)}"


def discovery_key(lat: float, lng: float) -> str:
    return f"{KEY_PREFIX}:discovery:{lat:.1f}:{lng:.1f}"


def overpass_key(lat: float, lng: float, radius_m: float) -> str:
    return f"{KEY_PREFIX}:overpass:{lat:.6f}:{lng:.6f}:{int(radius_m)}"


def _kind_from_key(key: str) -> str:
    parts = key.split(":")
    if len(parts) >= 3 and parts[1] == "verify":
        return parts[2]
    if len(parts) >= 2:
        return parts[1]
    return "unknown"


class VerificationCache:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or settings.VERIFICATION_CACHE_PATH
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS verification_cache (
                    key TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    value_json TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    ttl_seconds INTEGER NOT NULL
                )
                """
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_verification_cache_kind ON verification_cache(kind)"
            )
            self._conn.commit()

    # Generic key/value access -------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return the cached JSON value for key, or None when missing/expired."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value_json, created_at, ttl_seconds FROM verification_cache WHERE key=?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Verification cache read failed for %s: %s", _kind_from_key(key), exc)
            return None
        if not row:
            return None
        value_json, created_at, ttl_seconds = row
        if ttl_seconds > 0 and (time.time() - created_at) > ttl_seconds:
            return None
        try:
            return json.loads(value_json)
        except ValueError:
            logger.warning("Verification cache entry is not valid JSON; ignoring")
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            payload = json.dumps(value)
            with self._lock:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO verification_cache (key, kind, value_json, created_at, ttl_seconds)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (key, _kind_from_key(key), payload, time.time(), int(ttl_seconds)),
                )
                self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as exc:
            logger.warning("Verification cache write failed for %s: %s", _kind_from_key(key), exc)

    # Typed helpers ------------------------------------------------------

    def _get_result(self, key: str) -> Optional[VerificationResult]:
        data = self.get(key)
        if not isinstance(data, dict):
            return None
        try:
            return VerificationResult.from_dict(data)
        except (TypeError, ValueError) as exc:
            logger.warning("Discarding malformed cached verification result: %s", exc)
            return None

    def _set_result(self, key: str, result: VerificationResult, ttl_seconds: int) -> None:
        result.cached_at = time.time()
        self.set(key, result.to_dict(), ttl_seconds)

    def get_tier2(self, name: Optional[str], lat: float, lng: float) -> Optional[VerificationResult]:
        return self._get_result(tier2_key(name, lat, lng))

    def set_tier2(self, name: Optional[str], lat: float, lng: float, result: VerificationResult) -> None:
        self._set_result(tier2_key(name, lat, lng), result, TIER2_TTL_SECONDS)

    def get_tier3(self, name: Optional[str]) -> Optional[VerificationResult]:
        return self._get_result(tier3_key(name))

    def set_tier3(self, name: Optional[str], result: VerificationResult) -> None:
        self._set_result(tier3_key(name), result, TIER3_TTL_SECONDS)

    def get_address(self, address: str) -> Optional[VerificationResult]:
        return self._get_result(address_key(address))

    def set_address(self, address: str, result: VerificationResult) -> None:
        self._set_result(address_key(address), result, ADDRESS_TTL_SECONDS)

    def get_discovery(self, lat: float, lng: float) -> Optional[Dict[str, Any]]:
        data = self.get(discovery_key(lat, lng))
        return data if isinstance(data, dict) else None

    def set_discovery(self, lat: float, lng: float, venues_found: int) -> None:
        self.set(
            discovery_key(lat, lng),
            {"searched_at": time.time(), "venues_found": venues_found},
            DISCOVERY_TTL_SECONDS,
        )

    # Operations ---------------------------------------------------------

    def clear_all(self) -> int:
        """Delete every entry; returns the number of rows removed."""
        try:
            with self._lock:
                cur = self._conn.execute("DELETE FROM verification_cache")
                self._conn.commit()
                return cur.rowcount
        except sqlite3.Error as exc:
            logger.error("Verification cache clear failed: %s", exc)
            return 0

    def purge_expired(self) -> int:
        try:
            with self._lock:
                cur = self._conn.execute(
                    "DELETE FROM verification_cache WHERE ttl_seconds > 0 AND created_at + ttl_seconds < ?",
                    (time.time(),),
                )
                self._conn.commit()
                return cur.rowcount
        except sqlite3.Error as exc:
            logger.error("Verification cache purge failed: %s", exc)
            return 0

    def get_stats(self) -> Dict[str, int]:
        """Live entry count per kind plus a total."""
        stats = {kind: 0 for kind in KINDS}
        try:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT kind, COUNT(*) FROM verification_cache
                    WHERE ttl_seconds <= 0 OR created_at + ttl_seconds >= ?
                    GROUP BY kind
                    """,
                    (time.time(),),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("Verification cache stats failed: %s", exc)
            rows = []
        for kind, count in rows:
            stats[kind] = count
        stats["total"] = sum(count for _, count in rows)
        return stats

    def close(self) -> None:
        with self._lock:
            self._conn.close()


_default_cache: Optional[VerificationCache] = None


def get_default_verification_cache() -> VerificationCache:
    global _default_cache
    if _default_cache is None:
        _default_cache = VerificationCache()
    return _default_cache
