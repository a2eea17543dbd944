from datetime import datetime, timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from domain.models import VisitSource
from repositories.visits import VisitsRepository
from services.visit_creation import VisitCreator, round_to_interval


def test_round_to_interval_snaps_to_nearest_quarter_hour():
    assert round_to_interval(datetime(2024, 6, 1, 14, 7)) == datetime(2024, 6, 1, 14, 0)
    assert round_to_interval(datetime(2024, 6, 1, 14, 8)) == datetime(2024, 6, 1, 14, 15)
    assert round_to_interval(datetime(2024, 6, 1, 23, 53)) == datetime(2024, 6, 2, 0, 0)
    assert round_to_interval(datetime(2024, 6, 1, 14, 30)) == datetime(2024, 6, 1, 14, 30)


def test_seen_in_run_compares_raw_arrivals_across_bucket_edges():
    creator = VisitCreator()
    accepted = {"venue-1": [datetime(2024, 6, 1, 14, 5)]}

    assert creator.seen_in_run(accepted, "venue-1", datetime(2024, 6, 1, 14, 10)) is True
    assert creator.seen_in_run(accepted, "venue-1", datetime(2024, 6, 1, 13, 51)) is True
    assert creator.seen_in_run(accepted, "venue-1", datetime(2024, 6, 1, 14, 20)) is False
    assert creator.seen_in_run(accepted, "venue-2", datetime(2024, 6, 1, 14, 5)) is False


def test_created_visit_is_rounded_inactive_import(session):
    creator = VisitCreator()

    visit = creator.create_imported_visit(
        session, "user-1", "venue-1", datetime(2024, 6, 1, 14, 7, 20), datetime(2024, 6, 1, 16, 52)
    )

    assert visit.arrival_time == datetime(2024, 6, 1, 14, 0)
    assert visit.departure_time == datetime(2024, 6, 1, 16, 45)
    assert visit.is_active is False
    assert visit.source == VisitSource.IMPORT
    assert visit.imported_at is not None
    assert VisitsRepository().count_for_user(session, "user-1") == 1


def test_duplicate_detection_uses_the_arrival_bucket(session):
    creator = VisitCreator()
    arrival = datetime(2024, 6, 1, 14, 0)
    creator.create_imported_visit(session, "user-1", "venue-1", arrival, arrival + timedelta(hours=1))

    assert creator.detect_duplicate(session, "user-1", "venue-1", arrival + timedelta(minutes=5)) is True
    assert creator.detect_duplicate(session, "user-1", "venue-1", arrival + timedelta(minutes=20)) is False
    assert creator.detect_duplicate(session, "user-2", "venue-1", arrival) is False
    assert creator.detect_duplicate(session, "user-1", "venue-2", arrival) is False


def test_store_error_during_duplicate_check_means_not_duplicate(session):
    creator = VisitCreator()
    error = OperationalError("SELECT", {}, Exception("database is locked"))

    with patch.object(creator.visits, "exists_in_window", side_effect=error):
        assert creator.detect_duplicate(session, "user-1", "venue-1", datetime(2024, 6, 1, 14, 0)) is False
