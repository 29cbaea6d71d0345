"""
Tests for the periodic jobs: reminders, suspension notices and the
monthly recalculation.
"""
from datetime import date, datetime, timedelta
from unittest import mock

from models import CHALLENGE_ACCEPTED, Championship, EmailError, Match, Notification, db
from ranking_service import RankingServiceError
from scheduled_tasks import (
    MONTHLY_SEQUENCE,
    notify_expired_suspensions,
    run_monthly_recalculation,
    send_challenge_reminders,
)

NOW = datetime(2026, 10, 18, 12, 0)


def _scheduled(league, played_at, reminder_sent=False, is_scheduled=True, status=None):
    match = Match(
        championship_id=league.championship_id,
        winner_id=league.ids["alice"],
        loser_id=league.ids["bob"],
        is_scheduled=is_scheduled,
        challenge_status=status,
        played_at=played_at,
        reminder_sent=reminder_sent,
    )
    db.session.add(match)
    db.session.commit()
    return match.id


class TestChallengeReminders:
    def test_reminds_both_players_once(self, league):
        match_id = _scheduled(league, NOW + timedelta(hours=20))

        assert send_challenge_reminders(NOW) == 1
        assert send_challenge_reminders(NOW) == 0

        db.session.expire_all()
        assert db.session.get(Match, match_id).reminder_sent is True
        recipients = sorted(e.recipient_email for e in EmailError.query.all())
        assert recipients == ["alice@example.com", "bob@example.com"]
        assert {e.sender_name for e in EmailError.query.all()} == {"Alice Martin", "Bob Durand"}

    def test_outside_window_ignored(self, league):
        _scheduled(league, NOW + timedelta(hours=30))
        _scheduled(league, NOW - timedelta(hours=1))
        _scheduled(league, NOW + timedelta(hours=2), reminder_sent=True)

        assert send_challenge_reminders(NOW) == 0
        assert EmailError.query.count() == 0

    def test_unscheduled_rows_ignored(self, league):
        # accepted challenge without a date yet, and an already played match
        _scheduled(league, NOW + timedelta(hours=3), is_scheduled=False, status=CHALLENGE_ACCEPTED)
        _scheduled(league, NOW + timedelta(hours=4), is_scheduled=False)

        assert send_challenge_reminders(NOW) == 0
        assert Notification.query.count() == 0

    def test_reminder_stored_in_app(self, league):
        _scheduled(league, NOW + timedelta(hours=6))
        send_challenge_reminders(NOW)
        assert {n.type for n in Notification.query.all()} == {"reminder"}
        assert Notification.query.count() == 2

    def test_reminder_body_has_match_time(self, league):
        _scheduled(league, NOW + timedelta(hours=6))
        with mock.patch("utils.send_email_notification", return_value=True) as send:
            send_challenge_reminders(NOW)

        subjects = [c[0][1] for c in send.call_args_list]
        assert "Reminder: match with Bob Durand tomorrow" in subjects
        assert all("Sunday 18 October 2026 at 18:00" in c[0][2] for c in send.call_args_list)


class TestExpiredSuspensions:
    def test_notifies_each_player(self, app, ranking):
        ranking.responses["check_expired_suspensions"] = [
            {"player_name": "Bob", "player_email": "bob@example.com"},
            {"player_name": "Carol", "player_email": "carol@example.com"},
        ]
        with mock.patch("scheduled_tasks.send_email_notification", return_value=True) as send:
            assert notify_expired_suspensions() == 2

        assert [c[0][0] for c in send.call_args_list] == ["bob@example.com", "carol@example.com"]
        assert send.call_args_list[0][0][2].startswith("Hi Bob,")

    def test_service_failure(self, app, ranking):
        ranking.errors["check_expired_suspensions"] = RankingServiceError("down", "check_expired_suspensions")
        assert notify_expired_suspensions() == 0

    def test_procedure_failure(self, app, ranking):
        ranking.responses["check_expired_suspensions"] = {"success": False, "message": "boom"}
        assert notify_expired_suspensions() == 0


class TestMonthlyRecalculation:
    def test_only_on_first_day(self, league, ranking):
        assert run_monthly_recalculation(date(2026, 10, 18)) == {}
        assert ranking.calls == []

    def test_runs_sequence_per_championship(self, league, ranking):
        summary = run_monthly_recalculation(date(2026, 11, 1))

        assert summary == {league.championship_id: {action: True for action in MONTHLY_SEQUENCE}}
        assert [name for name, _ in ranking.calls] == [
            "calculate_inactivity_demotion",
            "calculate_pro_master_points",
            "process_category_swaps",
            "reset_monthly_matches",
        ]
        assert ranking.calls[0][1]["target_month"] == "2026-11-01"
        assert ranking.calls[0][1]["min_matches_required"] == 2

    def test_failing_championship_does_not_stop_others(self, league, ranking):
        now = datetime.now()
        db.session.add(Championship(name="Winter League", created_at=now, updated_at=now))
        db.session.commit()
        first_id = league.championship_id

        def swaps(params):
            if params["target_championship_id"] == first_id:
                raise RankingServiceError("deadlock", "process_category_swaps")
            return {"success": True, "message": "Swaps done"}

        ranking.responses["process_category_swaps"] = swaps
        summary = run_monthly_recalculation(date(2026, 11, 1))

        assert summary[first_id] == {"inactivity-demotion": True, "pro-master-points": True}
        other = [cid for cid in summary if cid != first_id][0]
        assert summary[other]["reset-monthly"] is True

    def test_reported_failure_continues_sequence(self, league, ranking):
        ranking.responses["calculate_pro_master_points"] = {"success": False, "message": "no matches"}
        summary = run_monthly_recalculation(date(2026, 11, 1))
        assert summary[league.championship_id]["pro-master-points"] is False
        assert summary[league.championship_id]["reset-monthly"] is True
