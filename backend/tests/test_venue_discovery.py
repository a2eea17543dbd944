from unittest.mock import MagicMock

import pytest

from domain.models import DirectoryBrewery, MapFeature, Venue, VenueSource, VenueType
from repositories.venues import VenuesRepository
from services.venue_discovery import VenueDiscovery


@pytest.fixture
def directory():
    mock = MagicMock()
    mock.discover_nearby.return_value = [
        DirectoryBrewery(id="dir-1", name="Alpha Brewing", latitude=45.50, longitude=-122.60, city="Portland"),
        DirectoryBrewery(id="dir-2", name="Beta Brewing", latitude=45.52, longitude=-122.62),
    ]
    return mock


@pytest.fixture
def overpass():
    mock = MagicMock()
    mock.discover_nearby.return_value = [
        # same place as the directory's Alpha Brewing
        MapFeature(osm_id="node/1", name="Alpha Brewing Co", latitude=45.5001, longitude=-122.60, venue_type=VenueType.BREWERY),
        MapFeature(osm_id="way/2", name="Vine Hill Cellars", latitude=45.30, longitude=-123.00, venue_type=VenueType.WINERY),
    ]
    return mock


@pytest.fixture
def discovery(cache, directory, overpass, session_factory):
    return VenueDiscovery(cache, directory=directory, overpass=overpass, session_factory=session_factory)


def test_discover_area_creates_venues_once(discovery, session_factory):
    report = discovery.discover_area(45.5, -122.6)

    assert report.to_dict() == {"searched": 4, "created": 3, "skipped": 1, "cached": False, "existing": 0}
    session = session_factory()
    try:
        repo = VenuesRepository()
        alpha = repo.find_by_external_id(session, "dir-1")
        winery = repo.find_by_external_id(session, "way/2")
        assert repo.count_venues(session) == 3
    finally:
        session.close()
    assert alpha.source == VenueSource.BREWERY_DIRECTORY
    assert alpha.verification_tier == 2
    assert winery.source == VenueSource.OSM
    assert winery.venue_type == VenueType.WINERY
    assert winery.verification_tier == 3


def test_repeat_search_in_same_cell_uses_marker(discovery, directory, overpass):
    directory.discover_nearby.return_value = []
    overpass.discover_nearby.return_value = []

    discovery.discover_area(45.5, -122.6)
    second = discovery.discover_area(45.52, -122.63)

    assert second.cached is True
    assert directory.discover_nearby.call_count == 1
    assert overpass.discover_nearby.call_count == 1


def test_stored_venues_nearby_skip_upstream_lookups(discovery, directory, overpass):
    discovery.discover_area(45.5, -122.6)
    directory.reset_mock()
    overpass.reset_mock()

    nearby = discovery.discover_area(45.51, -122.61)

    # Alpha and Beta are stored within the radius, the winery is not
    assert nearby.existing == 2
    assert nearby.searched == 0
    assert nearby.cached is False
    directory.discover_nearby.assert_not_called()
    overpass.discover_nearby.assert_not_called()


def test_known_external_ids_are_skipped(cache, directory, session_factory):
    session = session_factory()
    try:
        VenuesRepository().create_venue(
            session,
            Venue(
                id=Venue.generate_id(),
                name="Alpha Brewing",
                latitude=45.50,
                longitude=-122.60,
                venue_type=VenueType.BREWERY,
                source=VenueSource.IMPORT,
                external_id="dir-1",
            ),
        )
    finally:
        session.close()

    # no venues within the radius of the searched point
    report = VenueDiscovery(cache, directory=directory, session_factory=session_factory).discover_area(46.5, -122.6)

    assert report.created == 1
    assert report.skipped == 1


def test_disabled_discovery_makes_no_lookups(cache, directory, overpass, session_factory):
    discovery = VenueDiscovery(
        cache, directory=directory, overpass=overpass, session_factory=session_factory, enabled=False
    )

    report = discovery.discover_area(45.5, -122.6)

    assert report.searched == 0
    directory.discover_nearby.assert_not_called()
    overpass.discover_nearby.assert_not_called()
    assert cache.get_discovery(45.5, -122.6) is None
