from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from domain.models import ImportErrorCode, MapFeature, VenueType, VerificationResult
from repositories.venues import VenuesRepository
from repositories.visits import VisitsRepository
from services.import_service import ImportService, filter_sensitive_data, redact_name


def _entry(name=None, lat=45.5231, lng=-122.6765, place_id=None, start="2024-06-01T18:00:00Z", end="2024-06-01T19:30:00Z", address=None):
    location = {"latitudeE7": int(round(lat * 1e7)), "longitudeE7": int(round(lng * 1e7))}
    if name:
        location["name"] = name
    if place_id:
        location["placeId"] = place_id
    if address:
        location["address"] = address
    return {"location": location, "duration": {"startTimestamp": start, "endTimestamp": end}}


def _timeline(*entries):
    return {"placeVisits": list(entries)}


def _unverified(tier):
    return VerificationResult(tier=tier, verified=False, confidence=0.0, source="stub")


@pytest.fixture
def service(session_factory):
    return ImportService(session_factory=session_factory, external_verification=False)


def test_single_brewery_place_end_to_end(service):
    summary = service.process_import("user-1", _timeline(_entry("Riverside Brewing Co.")))

    assert summary.success is True
    assert summary.total_places == 1
    assert summary.visits_created == 1
    assert summary.new_venues_created == 1
    assert summary.tier_statistics.tier1_matches == 1
    assert summary.errors == []


def test_unparseable_root_returns_failure_summary(service):
    summary = service.process_import("user-1", ["not", "an", "object"])

    assert summary.success is False
    assert summary.visits_created == 0
    assert len(summary.errors) == 1
    assert summary.errors[0].place_name == "N/A"


def test_unknown_shape_returns_failure_summary(service):
    summary = service.process_import("user-1", {"timelineObjects": []})
    assert summary.success is False
    assert summary.errors


def test_oversized_payload_rejected_before_extraction(session_factory):
    service = ImportService(session_factory=session_factory, external_verification=False, max_payload_bytes=64)
    data = _timeline(*[_entry("Riverside Brewing Co.") for _ in range(5)])

    with patch("services.import_service.extract_place_visits") as extract:
        summary = service.process_import("user-1", data)

    extract.assert_not_called()
    assert summary.success is False
    assert "maximum" in summary.errors[0].error


def test_counts_and_tier_statistics_add_up(service):
    data = _timeline(
        _entry("Craft Beer Brewery Taproom", lat=45.50),
        _entry("Chateau Winery Vineyard Estate", lat=45.40),
        _entry("Joe's Brewing Restaurant", lat=45.30),
        _entry(None, lat=45.20),
        _entry("Riverside Brewing Co.", lat=95.0),  # dropped during extraction
    )

    summary = service.process_import("user-1", data)

    assert summary.total_places == 4
    assert summary.visits_created + summary.visits_skipped == summary.total_places
    assert summary.tier_statistics.total == summary.total_places
    assert summary.tier_statistics.tier1_matches == 2
    assert summary.tier_statistics.unverified == 2
    codes = {e.error_code for e in summary.errors}
    assert codes == {ImportErrorCode.VERIFICATION_FAILED}


def test_reimport_with_place_ids_creates_no_new_venues(service, session_factory):
    data = _timeline(
        _entry("Riverside Brewing Co.", place_id="ChIJ-a"),
        _entry("Hilltop Winery Vineyard Cellar", lat=45.30, place_id="ChIJ-b"),
    )

    first = service.process_import("user-1", data)
    second = service.process_import("user-1", data)

    assert first.new_venues_created == 2
    assert second.new_venues_created == 0
    assert second.existing_venues_matched == 2
    assert second.visits_created == 0
    assert {e.error_code for e in second.errors} == {ImportErrorCode.DUPLICATE_VISIT}
    session = session_factory()
    try:
        assert VenuesRepository().count_venues(session) == 2
    finally:
        session.close()


@pytest.mark.parametrize(
    "first,second,expected_visits",
    [
        ("14:00", "14:05", 1),
        ("14:05", "14:10", 1),
        ("14:20", "14:25", 1),
        ("14:08", "14:28", 2),
        ("14:00", "14:20", 2),
    ],
)
def test_arrivals_within_fifteen_minutes_dedup(service, session_factory, first, second, expected_visits):
    data = _timeline(
        _entry("Riverside Brewing Co.", place_id="ChIJ-a", start=f"2024-06-01T{first}:00Z"),
        _entry("Riverside Brewing Co.", place_id="ChIJ-a", start=f"2024-06-01T{second}:00Z"),
    )

    summary = service.process_import("user-1", data)

    assert summary.visits_created == expected_visits
    session = session_factory()
    try:
        assert VisitsRepository().count_for_user(session, "user-1") == expected_visits
    finally:
        session.close()


def test_directory_match_names_unnamed_place(session_factory):
    directory = MagicMock()
    directory.search_nearby.return_value = VerificationResult(
        tier=2,
        verified=True,
        confidence=0.95,
        source="brewery_directory",
        venue_type=VenueType.BREWERY,
        match={"id": "dir-1", "name": "Riverside Brewing Co.", "distance_km": 0.05, "city": "Portland"},
    )
    service = ImportService(directory=directory, session_factory=session_factory, external_verification=True)

    summary = service.process_import("user-1", _timeline(_entry(None)))

    assert summary.tier_statistics.tier2_matches == 1
    assert summary.visits_created == 1
    session = session_factory()
    try:
        venue = VenuesRepository().find_by_external_id(session, "dir-1")
    finally:
        session.close()
    assert venue.name == "Riverside Brewing Co."
    assert venue.verification_tier == 2


def test_map_data_is_the_last_escalation(session_factory):
    directory = MagicMock()
    directory.search_nearby.return_value = _unverified(2)
    web_search = MagicMock()
    web_search.search_by_address.return_value = _unverified(3)
    overpass = MagicMock()
    overpass.search_by_coordinates.return_value = MapFeature(
        osm_id="node/42", name="Vine Hill Cellars", latitude=45.5232, longitude=-122.6765, venue_type=VenueType.WINERY
    )
    service = ImportService(
        directory=directory,
        web_search=web_search,
        overpass=overpass,
        session_factory=session_factory,
        external_verification=True,
    )

    summary = service.process_import("user-1", _timeline(_entry(None, address="1 Hill Rd")))

    web_search.search_by_address.assert_called_once_with("1 Hill Rd")
    web_search.verify_venue.assert_not_called()
    assert summary.tier_statistics.tier3_matches == 1
    assert summary.visits_created == 1


def test_low_confidence_keyword_match_used_when_external_tiers_fail(session_factory):
    directory = MagicMock()
    directory.search_nearby.return_value = _unverified(2)
    web_search = MagicMock()
    web_search.verify_venue.return_value = _unverified(3)
    overpass = MagicMock()
    overpass.search_by_coordinates.return_value = None
    service = ImportService(
        directory=directory,
        web_search=web_search,
        overpass=overpass,
        session_factory=session_factory,
        external_verification=True,
    )

    summary = service.process_import("user-1", _timeline(_entry("Riverside Brewing Co.")))

    web_search.verify_venue.assert_called_once()
    assert summary.tier_statistics.tier1_matches == 1
    assert summary.visits_created == 1


def test_venue_creation_error_is_recorded_and_run_continues(service):
    data = _timeline(
        _entry("Riverside Brewing Co.", lat=45.50),
        _entry("Hilltop Winery Vineyard Cellar", lat=45.30),
    )
    original = service.matcher.find_or_create_venue
    calls = []

    def flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("venue store rejected row")
        return original(*args, **kwargs)

    with patch.object(service.matcher, "find_or_create_venue", side_effect=flaky):
        summary = service.process_import("user-1", data)

    assert summary.success is True
    assert summary.visits_created == 1
    assert summary.errors[0].error_code == ImportErrorCode.VENUE_CREATION_FAILED
    assert summary.tier_statistics.total == 2


def test_store_outage_aborts_with_single_error(service):
    outage = OperationalError("INSERT", {}, Exception("database is locked"))
    data = _timeline(_entry("Riverside Brewing Co.", lat=45.50), _entry("Riverside Brewing Co.", lat=45.30))

    with patch.object(service.matcher, "find_or_create_venue", side_effect=outage):
        summary = service.process_import("user-1", data)

    assert summary.success is False
    assert len(summary.errors) == 1
    assert summary.visits_created == 0


def test_progress_callback_every_25_places(service):
    entries = [
        _entry("Riverside Brewing Co.", start=f"2024-06-{day:02d}T18:00:00Z", end=f"2024-06-{day:02d}T19:00:00Z")
        for day in range(1, 27)
    ]
    progress = MagicMock()

    summary = service.process_import("user-1", _timeline(*entries), progress_callback=progress)

    assert summary.visits_created == 26
    progress.assert_called_once_with(25, 26)


def test_history_recorded_and_listed(service):
    service.process_import("user-1", _timeline(_entry("Riverside Brewing Co.")), file_name="export.json")
    service.process_import("user-2", _timeline(_entry("Riverside Brewing Co.")))

    records, total = service.get_history("user-1", limit=500)

    assert total == 1
    assert records[0].file_name == "export.json"
    assert records[0].source == "google_timeline"
    assert records[0].metadata["tier_statistics"]["tier1_matches"] == 1


def test_history_failure_does_not_fail_import(service):
    with patch.object(service.history, "create_record", side_effect=RuntimeError("history table missing")):
        summary = service.process_import("user-1", _timeline(_entry("Riverside Brewing Co.")))

    assert summary.success is True
    assert summary.visits_created == 1


def test_async_threshold(session_factory):
    service = ImportService(session_factory=session_factory, async_threshold=100)
    assert service.should_process_async(100) is False
    assert service.should_process_async(101) is True


def test_log_redaction_helpers():
    assert redact_name("Riverside Brewing Co.") == "Riv***"
    assert redact_name(None) == "<unnamed>"
    filtered = filter_sensitive_data(
        {"place_name": "Riverside", "latitude": 45.5, "longitude": -122.6, "address": "1 Main", "stage": "match"}
    )
    assert filtered == {"place_name": "Riv***", "stage": "match"}
