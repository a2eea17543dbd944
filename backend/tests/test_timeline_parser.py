import json
from datetime import datetime

import pytest

from services.errors import InvalidTimelineJSONError, PayloadTooLargeError, TimelineFormatError
from services.timeline_parser import (
    check_payload_size,
    count_raw_entries,
    detect_format,
    extract_place_visits,
    load_timeline_json,
    parse_lat_lng_string,
)


def _place_visit(lat_e7, lng_e7, name="Riverside Brewing Co.", start="2024-06-01T18:00:00Z", end="2024-06-01T19:30:00Z"):
    return {
        "location": {
            "placeId": "ChIJ-riverside",
            "name": name,
            "address": " 123 River Rd, Portland, OR ",
            "latitudeE7": lat_e7,
            "longitudeE7": lng_e7,
        },
        "duration": {"startTimestamp": start, "endTimestamp": end},
    }


def test_place_visits_format_converts_e7_coordinates():
    data = {"placeVisits": [_place_visit(455231000, -1226765000)]}

    visits = extract_place_visits(data)

    assert len(visits) == 1
    visit = visits[0]
    assert visit.latitude == pytest.approx(45.5231)
    assert visit.longitude == pytest.approx(-122.6765)
    assert visit.place_id == "ChIJ-riverside"
    assert visit.address == "123 River Rd, Portland, OR"
    assert visit.arrival_time == datetime(2024, 6, 1, 18, 0)
    assert visit.departure_time == datetime(2024, 6, 1, 19, 30)


def test_out_of_range_coordinates_are_dropped_not_raised():
    data = {
        "placeVisits": [
            _place_visit(455231000, -1226765000),
            _place_visit(955231000, -1226765000),  # latitude 95.5
            _place_visit(455231000, -1926765000),  # longitude -192.6
        ]
    }

    visits = extract_place_visits(data)

    assert len(visits) == 1
    assert len(visits) < count_raw_entries(data)


def test_entries_missing_timestamps_are_dropped():
    missing_end = _place_visit(455231000, -1226765000)
    missing_end["duration"].pop("endTimestamp")
    data = {"placeVisits": [missing_end, _place_visit(455231000, -1226765000)]}

    assert len(extract_place_visits(data)) == 1


def test_semantic_segments_with_degree_strings_and_activity_segments():
    data = {
        "semanticSegments": [
            {
                "startTime": "2024-06-01T10:00:00.000-07:00",
                "endTime": "2024-06-01T10:30:00.000-07:00",
                "activity": {"topCandidate": {"type": "IN_PASSENGER_VEHICLE"}},
            },
            {
                "startTime": "2024-06-01T11:00:00.000-07:00",
                "endTime": "2024-06-01T12:15:00.000-07:00",
                "visit": {
                    "probability": 0.9,
                    "topCandidate": {
                        "placeId": "ChIJ-winery",
                        "placeLocation": {"latLng": "45.2794°, -123.0409°", "name": "  Hilltop Winery "},
                    },
                },
            },
            {
                "startTime": "2024-06-02T11:00:00Z",
                "endTime": "2024-06-02T12:00:00Z",
                "visit": {
                    "topCandidate": {"placeId": "geo-only", "placeLocation": {"latLng": "geo:45.5,-122.6"}},
                },
            },
        ]
    }

    visits = extract_place_visits(data)

    assert [v.place_id for v in visits] == ["ChIJ-winery", "geo-only"]
    winery = visits[0]
    assert winery.name == "Hilltop Winery"
    assert winery.latitude == pytest.approx(45.2794)
    assert winery.longitude == pytest.approx(-123.0409)
    # timezone offsets are normalized to naive UTC
    assert winery.arrival_time == datetime(2024, 6, 1, 18, 0)
    assert visits[1].name is None


def test_unknown_shape_raises_format_error():
    with pytest.raises(TimelineFormatError):
        extract_place_visits({"timelineObjects": []})
    with pytest.raises(TimelineFormatError):
        extract_place_visits(["not", "an", "object"])
    assert detect_format({"timelineObjects": []}) is None


def test_parse_lat_lng_string_variants():
    assert parse_lat_lng_string("47.6062, -122.3321") == (47.6062, -122.3321)
    assert parse_lat_lng_string("geo:47.6062,-122.3321") == (47.6062, -122.3321)
    assert parse_lat_lng_string("47.6062°, -122.3321°") == (47.6062, -122.3321)
    assert parse_lat_lng_string("nonsense") is None
    assert parse_lat_lng_string("") is None


def test_load_timeline_json_rejects_invalid_json():
    with pytest.raises(InvalidTimelineJSONError):
        load_timeline_json("{not json")
    assert load_timeline_json(json.dumps({"placeVisits": []})) == {"placeVisits": []}


def test_check_payload_size_rejects_oversized_payload():
    raw = json.dumps({"placeVisits": [_place_visit(455231000, -1226765000)] * 10})
    with pytest.raises(PayloadTooLargeError):
        check_payload_size(raw, max_bytes=100)
    assert check_payload_size(raw, max_bytes=len(raw) + 1) == len(raw)
