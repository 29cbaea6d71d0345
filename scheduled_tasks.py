"""
Scheduled Tasks for the Tennis League
Handles automated jobs for:
- Challenge reminders (24 hours before a scheduled match)
- Notices to players whose suspension has expired
- Monthly ranking recalculation (first day of the month)

Run this script periodically (e.g., via cron or run_scheduled_tasks.py)
"""

import logging
from datetime import date, datetime, timedelta

from models import db, Championship, Match, Player, User
from ranking_service import RankingServiceError
from utils import dispatch_notification, send_email_notification
from app import app, get_ranking_service, run_monthly_action

logger = logging.getLogger(__name__)

# Order matters: demotion and points read this month's match counters,
# so the counter reset comes last.
MONTHLY_SEQUENCE = ("inactivity-demotion", "pro-master-points", "category-swaps", "reset-monthly")


def send_challenge_reminders(now=None):
    """
    Email both players of every challenge scheduled within the next 24 hours.
    Each match is reminded once.
    """
    with app.app_context():
        now = now or datetime.now()
        upcoming = Match.query.filter(
            Match.awaiting_result_clause(),
            Match.reminder_sent.isnot(True),
            Match.played_at.isnot(None),
            Match.played_at > now,
            Match.played_at <= now + timedelta(hours=24),
        ).all()

        reminders_sent = 0
        for match in upcoming:
            players = {
                p.user_id: p for p in Player.query.filter(
                    Player.championship_id == match.championship_id,
                    Player.user_id.in_([match.winner_id, match.loser_id]),
                ).all()
            }
            for user_id in (match.winner_id, match.loser_id):
                opponent = players.get(match.opponent_of(user_id))
                dispatch_notification(
                    db.session.get(User, user_id),
                    opponent.display_name if opponent else "your opponent",
                    "reminder",
                    match_id=match.id,
                    match_time=match.played_at,
                )
            match.reminder_sent = True
            reminders_sent += 1

        db.session.commit()
        logger.info(f"[TASKS] Challenge reminders sent: {reminders_sent}")
        return reminders_sent


def notify_expired_suspensions():
    """Tell players their suspension is over and they can play again."""
    with app.app_context():
        try:
            expired = get_ranking_service().check_expired_suspensions().unwrap() or []
        except RankingServiceError as e:
            logger.error(f"[TASKS] Could not check expired suspensions: {e.message}")
            return 0

        notified = 0
        for row in expired:
            body = f"""Hi {row.get('player_name') or 'there'},

Your suspension has ended and you are available for challenges again.

- Tennis League
"""
            if send_email_notification(row.get("player_email"), "Your suspension has ended", body):
                notified += 1

        logger.info(f"[TASKS] Expired suspension notices sent: {notified}/{len(expired)}")
        return notified


def run_monthly_recalculation(today=None):
    """
    On the first day of the month, run the monthly ranking procedures for
    every championship. A failing championship is logged and skipped.
    Returns {championship_id: {action: success}}.
    """
    today = today or date.today()
    if today.day != 1:
        return {}

    with app.app_context():
        service = get_ranking_service()
        summary = {}
        for championship in Championship.query.all():
            outcome = {}
            try:
                for action in MONTHLY_SEQUENCE:
                    result = run_monthly_action(action, championship, service, today.isoformat())
                    outcome[action] = result.success
                    if not result.success:
                        logger.warning(
                            f"[TASKS] {action} for championship {championship.id} failed: {result.message}"
                        )
            except RankingServiceError as e:
                logger.error(f"[TASKS] Monthly recalculation aborted for championship {championship.id}: {e.message}")
            summary[championship.id] = outcome

        logger.info(f"[TASKS] Monthly recalculation finished for {len(summary)} championships")
        return summary
