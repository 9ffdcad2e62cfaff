"""
Activity competition scoring: metrics, scoring methods, windowing, ranking.
"""
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from models import ActivityEntry, CalculationResult
from services.competition_scoring import ActivityMetrics, calculate_metrics, calculate_score
from services.standings import recalculate_competition_standings


def _entry(value, day):
    return SimpleNamespace(value=value, date=date(2026, 3, day))


class TestMetrics:
    def test_empty(self):
        assert calculate_metrics([]) == ActivityMetrics()

    def test_values(self):
        metrics = calculate_metrics([_entry(100, 1), _entry(300, 1), _entry(200, 2)])

        assert metrics.first_value == 100
        assert metrics.last_value == 200
        assert metrics.best_value == 300
        assert metrics.total_value == 600
        assert metrics.average_value == 200
        assert metrics.count == 3
        assert metrics.days_active == 2


class TestScore:
    metrics = ActivityMetrics(first_value=50, last_value=75, best_value=90, average_value=70, total_value=210, count=3)

    @pytest.mark.parametrize(
        "method,expected",
        [
            ("change_percentage", 50.0),
            ("total_value", 210),
            ("cumulative", 210),
            ("best_value", 90),
            ("average_value", 70),
            ("mystery", 0.0),
        ],
    )
    def test_methods(self, method, expected):
        assert calculate_score(self.metrics, method) == expected

    def test_change_percentage_from_zero(self):
        assert calculate_score(ActivityMetrics(first_value=0, last_value=10), "change_percentage") == 0.0


def _log(db_session, user, value, day, activity_type="steps", **kwargs):
    db_session.add(ActivityEntry(user_id=user.id, activity_type=activity_type, value=value, date=date(2026, 3, day), **kwargs))
    db_session.commit()


def _results(db_session, competition):
    db_session.expire_all()
    return {
        r.subject_id: r
        for r in db_session.query(CalculationResult).filter(CalculationResult.competition_id == competition.id)
    }


def _steps_competition(make_competition, owner, **kwargs):
    return make_competition(
        owner,
        competition_type=None,
        activity_type="steps",
        status="started",
        start_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
        end_date=datetime(2026, 3, 15, tzinfo=timezone.utc),
        **kwargs,
    )


def test_total_value_ranks_descending(db_session, make_user, make_competition, add_participant):
    a, b, c = make_user(), make_user(), make_user()
    competition = _steps_competition(make_competition, a)
    pa = add_participant(competition, a)
    pb = add_participant(competition, b)
    pc = add_participant(competition, c)
    _log(db_session, a, 8000, 2)
    _log(db_session, a, 9000, 3)
    _log(db_session, b, 20000, 2)

    result = recalculate_competition_standings(db_session, competition.id)
    db_session.commit()

    assert result["updated_count"] == 3
    rows = _results(db_session, competition)
    assert rows[pb.id].rank == 1
    assert rows[pb.id].calculated_score == 20000
    assert rows[pa.id].rank == 2
    assert rows[pa.id].activity_entries_count == 2
    assert rows[pa.id].days_active == 2
    assert rows[pc.id].rank == 3
    assert rows[pc.id].calculated_score == 0
    assert rows[pb.id].percentile == 100.0
    assert rows[pc.id].calculation_version == "v2"


def test_ascending_direction(db_session, make_user, make_competition, add_participant):
    a, b = make_user(), make_user()
    competition = _steps_competition(make_competition, a, ranking_direction="asc", scoring_method="best_value")
    pa = add_participant(competition, a)
    pb = add_participant(competition, b)
    _log(db_session, a, 500, 2)
    _log(db_session, b, 300, 2)

    recalculate_competition_standings(db_session, competition.id)
    db_session.commit()

    rows = _results(db_session, competition)
    assert rows[pb.id].rank == 1
    assert rows[pa.id].rank == 2


def test_entries_outside_window_and_deleted_are_ignored(db_session, make_user, make_competition, add_participant):
    owner = make_user()
    competition = _steps_competition(make_competition, owner)
    participant = add_participant(competition, owner)
    _log(db_session, owner, 1000, 2)
    _log(db_session, owner, 5000, 20)
    _log(db_session, owner, 7000, 3, deleted_at=datetime(2026, 3, 4, tzinfo=timezone.utc))
    _log(db_session, owner, 9000, 4, activity_type="distance")

    recalculate_competition_standings(db_session, competition.id)
    db_session.commit()

    assert _results(db_session, competition)[participant.id].calculated_score == 1000


def test_seeded_baseline_is_kept(db_session, make_user, make_competition, add_participant):
    from services.calculation_results import upsert_calculation_result

    owner = make_user()
    competition = _steps_competition(make_competition, owner)
    participant = add_participant(competition, owner)
    upsert_calculation_result(
        db_session,
        competition_id=competition.id,
        subject_id=participant.id,
        calculation_data={"starting_value": 0.0},
        calculation_version="initial",
    )
    db_session.commit()
    _log(db_session, owner, 4000, 2)

    recalculate_competition_standings(db_session, competition.id)
    db_session.commit()

    row = _results(db_session, competition)[participant.id]
    assert row.calculation_data["starting_value"] == 0.0
    assert row.calculation_data["value_change"] == 4000
    assert db_session.query(CalculationResult).filter(CalculationResult.competition_id == competition.id).count() == 1
