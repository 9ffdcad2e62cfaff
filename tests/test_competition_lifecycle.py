"""
Scheduled lifecycle jobs: start, finalize, ending-soon.

Both transitions claim the competition with a conditional status update, so
running a job twice must not seed or notify twice.
"""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from models import CalculationResult, Competition, CompetitionParticipant, Notification
from services.competition_lifecycle import (
    finalize_expired_competitions,
    send_ending_soon_notifications,
    start_pending_competitions,
)

NOW = datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)


def _reload(db_session, model, id_):
    return db_session.query(model).populate_existing().filter(model.id == id_).one()


def _notifications(db_session, type_):
    return db_session.query(Notification).filter(Notification.type == type_).all()


class TestStartPendingCompetitions:
    def test_starts_pending_competition_and_seeds_baselines(
        self, db_session, make_user, make_competition, add_participant, log_weight_entry
    ):
        a, b = make_user(), make_user()
        competition = make_competition(a, duration_days=14)
        pa = add_participant(competition, a, 210, 205)
        pb = add_participant(competition, b)
        log_weight_entry(a, 204.5, day=date(2026, 3, 9))

        result = start_pending_competitions(db_session, now=NOW)

        assert result["success"] is True
        assert result["started"] == 1
        assert result["failed"] == 0

        competition = _reload(db_session, Competition, competition.id)
        assert competition.status == "started"
        assert competition.start_date.replace(tzinfo=timezone.utc) == datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert competition.end_date.replace(tzinfo=timezone.utc) == datetime(2026, 3, 24, tzinfo=timezone.utc)

        pa = _reload(db_session, CompetitionParticipant, pa.id)
        assert pa.starting_weight == 204.5
        assert pa.current_weight == 204.5
        assert pa.weight_change == 0.0

        seeded = (
            db_session.query(CalculationResult)
            .filter(CalculationResult.competition_id == competition.id)
            .all()
        )
        assert {r.subject_id for r in seeded} == {pa.id, pb.id}
        for row in seeded:
            assert row.calculation_version == "initial"
            assert row.calculated_score == 0
            assert row.rank is None
            assert row.calculation_data["baseline"] is True

        by_subject = {r.subject_id: r for r in seeded}
        assert by_subject[pa.id].calculation_data["starting_value"] == 204.5
        assert by_subject[pb.id].calculation_data["starting_value"] is None

        started = _notifications(db_session, "competition_start")
        assert len(started) == 2
        assert started[0].title == "🏁 Competition Started!"
        assert started[0].message == "Summer Shred has begun! Good luck!"
        assert started[0].action_url == f"/competition/{competition.id}"
        assert started[0].data["duration_days"] == 14

    def test_activity_competition_baseline_is_zero(self, db_session, make_user, make_competition, add_participant):
        owner = make_user()
        competition = make_competition(owner, activity_type="steps", competition_type=None)
        participant = add_participant(competition, owner)

        start_pending_competitions(db_session, now=NOW)

        participant = _reload(db_session, CompetitionParticipant, participant.id)
        assert participant.starting_value == 0.0
        row = db_session.query(CalculationResult).filter(CalculationResult.subject_id == participant.id).one()
        assert row.calculation_method == "total_value"
        assert row.calculation_data["starting_value"] == 0.0

    def test_running_twice_seeds_once(self, db_session, make_user, make_competition, add_participant):
        a, b = make_user(), make_user()
        competition = make_competition(a)
        add_participant(competition, a, 200, 200)
        add_participant(competition, b, 180, 180)

        first = start_pending_competitions(db_session, now=NOW)
        second = start_pending_competitions(db_session, now=NOW + timedelta(minutes=1))

        assert first["started"] == 1
        assert second["started"] == 0
        assert db_session.query(CalculationResult).filter(CalculationResult.competition_id == competition.id).count() == 2
        assert len(_notifications(db_session, "competition_start")) == 2

    def test_start_drops_cached_leaderboard(self, db_session, make_user, make_competition, add_participant):
        owner = make_user()
        competition = make_competition(owner)
        participant = add_participant(competition, owner, 200, 195, rank=1)

        with patch("services.competition_lifecycle.invalidate_leaderboard") as invalidate:
            start_pending_competitions(db_session, now=NOW)

        invalidate.assert_called_once_with(competition.id)
        assert _reload(db_session, CompetitionParticipant, participant.id).rank is None

    def test_only_pending_competitions_start(self, db_session, make_user, make_competition):
        owner = make_user()
        make_competition(owner, status="started")
        make_competition(owner, status="completed")
        make_competition(owner, status="cancelled")

        result = start_pending_competitions(db_session, now=NOW)

        assert result["started"] == 0
        assert result["competitions"] == []

    def test_failure_is_isolated_per_competition(self, db_session, make_user, make_competition, add_participant):
        owner = make_user()
        broken = make_competition(owner, name="Broken")
        healthy = make_competition(owner, name="Healthy")
        add_participant(broken, owner, 200, 200)
        add_participant(healthy, owner, 200, 200)

        from services import competition_lifecycle
        original = competition_lifecycle.create_notification

        def flaky(db, **kwargs):
            if kwargs["data"]["competition_name"] == "Broken":
                raise RuntimeError("boom")
            return original(db, **kwargs)

        with patch.object(competition_lifecycle, "create_notification", side_effect=flaky):
            result = start_pending_competitions(db_session, now=NOW)

        assert result["started"] == 1
        assert result["failed"] == 1
        assert result["errors"][0]["competition_id"] == str(broken.id)
        assert _reload(db_session, Competition, broken.id).status == "pending"
        assert _reload(db_session, Competition, healthy.id).status == "started"


class TestFinalizeExpiredCompetitions:
    def _expired(self, make_competition, owner, **kwargs):
        return make_competition(
            owner,
            status="started",
            start_date=NOW - timedelta(days=30),
            end_date=NOW - timedelta(hours=1),
            **kwargs,
        )

    def test_completes_and_notifies_each_participant(self, db_session, make_user, make_competition, add_participant):
        a, b, c = make_user(), make_user(), make_user()
        competition = self._expired(make_competition, a)
        add_participant(competition, a, 150, 140)
        add_participant(competition, b, 200, 180)
        add_participant(competition, c)

        result = finalize_expired_competitions(db_session, now=NOW)

        assert result["success"] is True
        assert result["message"] == "Finalized 1 competition(s)"
        assert result["finalized"] == 1
        assert result["notifications"] == {"sent": 3, "failed": 0}
        assert result["competitions"][0]["winner_user_id"] == str(b.id)

        competition = _reload(db_session, Competition, competition.id)
        assert competition.status == "completed"
        assert competition.completed_at is not None

        by_user = {n.user_id: n for n in _notifications(db_session, "competition_completed")}
        assert by_user[b.id].title == "🏆 Congratulations! You Won!"
        assert by_user[b.id].message == "You finished in 1st place in Summer Shred! Great job!"
        assert by_user[b.id].data["is_winner"] is True
        assert by_user[a.id].message == "Summer Shred has ended. You finished in position #2."
        assert by_user[a.id].data["rank"] == 2
        assert by_user[c.id].message == "Summer Shred has ended. Check your final results!"

    def test_running_twice_notifies_once(self, db_session, make_user, make_competition, add_participant):
        a, b = make_user(), make_user()
        competition = self._expired(make_competition, a)
        add_participant(competition, a, 150, 140)
        add_participant(competition, b, 200, 180)

        first = finalize_expired_competitions(db_session, now=NOW)
        second = finalize_expired_competitions(db_session, now=NOW + timedelta(minutes=5))

        assert first["finalized"] == 1
        assert second["finalized"] == 0
        assert second["message"] == "Finalized 0 competition(s)"
        assert len(_notifications(db_session, "competition_completed")) == 2

    def test_not_yet_ended_is_left_alone(self, db_session, make_user, make_competition, add_participant):
        owner = make_user()
        competition = make_competition(
            owner, status="started", start_date=NOW - timedelta(days=1), end_date=NOW + timedelta(days=1)
        )
        add_participant(competition, owner, 200, 190)

        result = finalize_expired_competitions(db_session, now=NOW)

        assert result["finalized"] == 0
        assert _reload(db_session, Competition, competition.id).status == "started"

    def test_failed_finalize_is_retried_next_run(self, db_session, make_user, make_competition, add_participant):
        owner = make_user()
        competition = self._expired(make_competition, owner)
        add_participant(competition, owner, 200, 190)

        from services import competition_lifecycle
        with patch.object(competition_lifecycle, "create_notification", side_effect=RuntimeError("db down")):
            failed = finalize_expired_competitions(db_session, now=NOW)

        assert failed["finalized"] == 0
        assert failed["errors"][0]["competition_id"] == str(competition.id)
        assert _reload(db_session, Competition, competition.id).status == "started"

        retried = finalize_expired_competitions(db_session, now=NOW)
        assert retried["finalized"] == 1
        assert len(_notifications(db_session, "competition_completed")) == 1


class TestEndingSoon:
    def test_notifies_competitions_in_window(self, db_session, make_user, make_competition, add_participant):
        a, b = make_user(), make_user()
        soon = make_competition(a, name="Spring Cut", status="started", end_date=NOW + timedelta(days=3, hours=2))
        later = make_competition(a, name="Later", status="started", end_date=NOW + timedelta(days=10))
        add_participant(soon, a, 200, 190, rank=1)
        add_participant(soon, b, 200, 195)
        add_participant(later, a, 200, 190)

        result = send_ending_soon_notifications(db_session, now=NOW)

        assert result["competitions"] == 1
        assert result["notified"] == 2
        assert result["pushed"] == 0
        notes = {n.user_id: n for n in _notifications(db_session, "competition_ending")}
        assert notes[a.id].title == "⚠️ Spring Cut ends in 3 days!"
        assert notes[a.id].message == "Final push! Make every day count. You're currently ranked #1."
        assert notes[b.id].message == "Final push! Make every day count. You're currently ranked unranked."
        assert notes[a.id].push_sent_at is None

    def test_pushes_through_novu_when_configured(self, db_session, make_user, make_competition, add_participant, monkeypatch):
        from core.config import settings

        monkeypatch.setattr(settings, "NOVU_API_KEY", "novu-test-key")
        owner = make_user()
        competition = make_competition(owner, status="started", end_date=NOW + timedelta(days=3, hours=1))
        add_participant(competition, owner, 200, 190, rank=1)

        response = MagicMock(ok=True, status_code=201)
        with patch("services.push_providers.requests.post", return_value=response) as post:
            result = send_ending_soon_notifications(db_session, now=NOW)

        assert result["pushed"] == 1
        body = post.call_args.kwargs["json"]
        assert body["name"] == "competition-ending-soon"
        assert body["to"] == {"subscriberId": str(owner.id)}
        assert body["payload"]["daysRemaining"] == 3
        assert post.call_args.kwargs["headers"]["Authorization"] == "ApiKey novu-test-key"
        assert _notifications(db_session, "competition_ending")[0].push_sent_at is not None
