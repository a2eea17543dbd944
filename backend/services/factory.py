"""
Explicit wiring of the import pipeline.

Verifiers, their limiters and failure trackers are built once per process
so rate budgets and outage counters are shared by every import.
"""
from __future__ import annotations

from typing import Optional

from services.brewery_directory import BreweryDirectoryClient
from services.import_service import ImportService
from services.job_queue import ImportJobQueue
from services.overpass_client import OverpassClient
from services.venue_discovery import VenueDiscovery
from services.verification_cache import VerificationCache, get_default_verification_cache
from services.web_search_verifier import WebSearchVerifier
from settings import settings

_default_import_service: Optional[ImportService] = None
_default_discovery: Optional[VenueDiscovery] = None
_default_job_queue: Optional[ImportJobQueue] = None
_clients: Optional[tuple] = None


def build_verifiers(cache: VerificationCache):
    """Return (directory, web_search, overpass) clients bound to cache."""
    return (
        BreweryDirectoryClient(cache),
        WebSearchVerifier(cache),
        OverpassClient(cache),
    )


def _get_clients():
    global _clients
    if _clients is None:
        _clients = build_verifiers(get_default_verification_cache())
    return _clients


def build_import_service(cache: Optional[VerificationCache] = None, **overrides) -> ImportService:
    directory, web_search, overpass = build_verifiers(cache) if cache else _get_clients()
    kwargs = dict(
        directory=directory,
        web_search=web_search,
        overpass=overpass,
        external_verification=settings.EXTERNAL_VERIFICATION_ENABLED,
    )
    kwargs.update(overrides)
    return ImportService(**kwargs)


def get_import_service() -> ImportService:
    global _default_import_service
    if _default_import_service is None:
        _default_import_service = build_import_service()
    return _default_import_service


def get_venue_discovery() -> VenueDiscovery:
    global _default_discovery
    if _default_discovery is None:
        directory, _web_search, overpass = _get_clients()
        _default_discovery = VenueDiscovery(
            get_default_verification_cache(),
            directory=directory,
            overpass=overpass,
            enabled=settings.EXTERNAL_VERIFICATION_ENABLED,
        )
    return _default_discovery


def get_job_queue() -> ImportJobQueue:
    global _default_job_queue
    if _default_job_queue is None:
        _default_job_queue = ImportJobQueue()
    return _default_job_queue
