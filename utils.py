import logging
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import (
    CATEGORIES,
    CHALLENGE_LAUNCHED,
    PENDING_SCORE,
    EmailError,
    Match,
    Notification,
    Player,
    PlayerSuspension,
    RegistrationRequest,
    Trophy,
    User,
    db,
)

logger = logging.getLogger(__name__)

PROFILE_CHECK_TIMEOUT_MS = 3000


def normalize_phone_number(phone_number):
    """
    Keep the digits of a phone number, plus a leading + for international numbers.
    "+39 333 123-4567" -> "+393331234567", "333 123 4567" -> "3331234567".
    """
    if not phone_number:
        return None
    phone_number = phone_number.strip()
    digits = re.sub(r'\D', '', phone_number)
    if not digits:
        return None
    return f"+{digits}" if phone_number.startswith('+') else digits


def format_match_time(value) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return value.strftime("%A %d %B %Y at %H:%M")


# ============================================================================
# TIMEOUTS
# ============================================================================

def with_timeout(operation, duration_ms, fallback):
    """
    Run operation() with a time budget.

    Returns the operation's result, or the fallback once duration_ms has
    passed (fallback() when callable). Errors raised by the operation
    propagate. The worker inherits the current Flask app context.
    """
    app = current_app._get_current_object() if has_app_context() else None

    def run():
        if app is None:
            return operation()
        with app.app_context():
            return operation()

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(run)
    try:
        return future.result(timeout=duration_ms / 1000)
    except FuturesTimeoutError:
        logger.info(f"[TIMEOUT] Operation exceeded {duration_ms}ms, using fallback")
        return fallback() if callable(fallback) else fallback
    finally:
        executor.shutdown(wait=False)


# ============================================================================
# PROFILE CHECK
# ============================================================================

PROFILE_PLAYER = "player"            # Approved player record exists
PROFILE_PENDING = "pending"          # Registration request already on file
PROFILE_CREATED = "created"          # Registration request created now
PROFILE_ASSUMED = "assumed"          # Check timed out; assume the profile exists
PROFILE_REJECTED = "rejected"
PROFILE_NO_CHAMPIONSHIP = "no_championship"
PROFILE_ERROR = "error"


def _check_player_profile(user_id, ranking_service):
    if Player.query.filter_by(user_id=user_id).first():
        return PROFILE_PLAYER

    existing = RegistrationRequest.query.filter_by(user_id=user_id).first()
    if existing:
        return PROFILE_REJECTED if existing.status == "rejected" else PROFILE_PENDING

    champ = ranking_service.get_default_championship_id()
    championship_id = champ.data if champ.success else None
    if not championship_id:
        logger.error(f"[PROFILE] No default championship found for user {user_id}")
        return PROFILE_NO_CHAMPIONSHIP

    user = db.session.get(User, user_id)
    request_row = RegistrationRequest(
        user_id=user_id,
        championship_id=championship_id,
        display_name=user.display_name if user else "Player",
        phone=normalize_phone_number(user.phone) if user else None,
        status="pending",
        requested_at=datetime.now(),
    )
    db.session.add(request_row)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request for this user landed first
        db.session.rollback()
        return PROFILE_PENDING
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[PROFILE] Could not create registration request for user {user_id}: {e}")
        return PROFILE_ERROR
    return PROFILE_CREATED


def ensure_player_profile(auth, ranking_service, timeout_ms=None):
    """
    Make sure a signed-in user either has a Player record or a registration
    request waiting for the admin. If the lookups take longer than the
    budget, assume the profile exists rather than blocking the user.
    """
    if timeout_ms is None:
        timeout_ms = current_app.config.get("PROFILE_CHECK_TIMEOUT_MS", PROFILE_CHECK_TIMEOUT_MS)
    user_id = auth.user_id
    try:
        return with_timeout(
            lambda: _check_player_profile(user_id, ranking_service),
            timeout_ms,
            PROFILE_ASSUMED,
        )
    except Exception as e:
        logger.error(f"[PROFILE] Profile check failed for user {user_id}: {e}")
        return PROFILE_ASSUMED


# ============================================================================
# MATCH STORAGE
# ============================================================================

class MatchStorageError(Exception):
    pass


def create_match(championship_id, winner_id, loser_id, score, is_draw, played_at=None):
    """Insert a played match."""
    now = datetime.now()
    match = Match(
        championship_id=championship_id,
        winner_id=winner_id,
        loser_id=loser_id,
        score=score,
        is_draw=is_draw,
        is_scheduled=False,
        played_at=played_at or now,
        created_at=now,
        updated_at=now,
    )
    try:
        db.session.add(match)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[STORAGE] Could not create match {winner_id} vs {loser_id}: {e}")
        raise MatchStorageError("Could not save the match result") from e
    return match


def update_match(match_id, winner_id, loser_id, score, is_draw, played_at=None):
    """Record the result of an existing (usually scheduled) match."""
    match = db.session.get(Match, match_id)
    if not match:
        raise MatchStorageError(f"Match {match_id} not found")

    match.winner_id = winner_id
    match.loser_id = loser_id
    match.score = score
    match.is_draw = is_draw
    match.is_scheduled = False
    match.challenge_status = None
    match.played_at = played_at or datetime.now()
    match.updated_at = datetime.now()
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[STORAGE] Could not update match {match_id}: {e}")
        raise MatchStorageError("Could not save the match result") from e
    return match


# ============================================================================
# CHALLENGES
# ============================================================================

BLOCK_OPEN_CHALLENGE = "open_challenge"
BLOCK_SCHEDULED = "scheduled"
BLOCK_TO_REGISTER = "to_register"

CHALLENGE_BLOCK_MESSAGES = {
    BLOCK_OPEN_CHALLENGE: "You already have an open challenge. Wait for it to be accepted or delete it first.",
    BLOCK_SCHEDULED: "You already have a scheduled match. Play it before launching a new challenge.",
    BLOCK_TO_REGISTER: "Report the result of your last match before launching a new challenge.",
}


def challenge_block_reason(user_id, championship_id, now=None):
    """
    Why user_id may not launch a challenge right now, or None.
    Checked in order: an open (launched or accepted) challenge, a match
    scheduled in the future, a past scheduled match with no result.
    """
    now = now or datetime.now()
    mine = Match.query.filter(
        Match.championship_id == championship_id,
        (Match.winner_id == user_id) | (Match.loser_id == user_id),
    )
    if mine.filter(Match.open_challenge_clause()).first():
        return BLOCK_OPEN_CHALLENGE
    awaiting = mine.filter(Match.awaiting_result_clause())
    if awaiting.filter(Match.played_at > now).first():
        return BLOCK_SCHEDULED
    if awaiting.filter(Match.played_at <= now).first():
        return BLOCK_TO_REGISTER
    return None


def create_challenge(championship_id, launcher_id, opponent_id):
    """Insert a launched challenge; the launcher sits in winner_id until a result is reported."""
    now = datetime.now()
    challenge = Match(
        championship_id=championship_id,
        winner_id=launcher_id,
        loser_id=opponent_id,
        score=PENDING_SCORE,
        is_scheduled=False,
        challenge_status=CHALLENGE_LAUNCHED,
        challenge_launcher_id=launcher_id,
        played_at=now,
        created_at=now,
        updated_at=now,
    )
    try:
        db.session.add(challenge)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[STORAGE] Could not create challenge {launcher_id} -> {opponent_id}: {e}")
        raise MatchStorageError("Could not launch the challenge") from e
    return challenge


def split_challenges(matches, now=None):
    """Group a player's unfinished rows: open challenges, upcoming matches, matches to register."""
    now = now or datetime.now()
    open_challenges = [m for m in matches if m.is_open_challenge]
    upcoming = sorted((m for m in matches if m.awaits_result and m.played_at and m.played_at > now),
                      key=lambda m: m.played_at)
    to_register = sorted((m for m in matches if m.awaits_result and (not m.played_at or m.played_at <= now)),
                         key=lambda m: m.played_at or now)
    return open_challenges, upcoming, to_register


# ============================================================================
# AVAILABILITY
# ============================================================================

def extend_suspension(user_id, suspension_id, new_end_date):
    """Move the end of the player's own active suspension later."""
    suspension = PlayerSuspension.query.filter_by(id=suspension_id, user_id=user_id, is_active=True).first()
    if not suspension:
        raise ValueError("No active suspension to extend")
    if new_end_date <= suspension.end_date:
        raise ValueError("The new end date must be after the current one")

    suspension.end_date = new_end_date
    suspension.updated_at = datetime.now()
    db.session.commit()
    return suspension


# ============================================================================
# NOTIFICATIONS
# ============================================================================

def send_email_notification(to_email: str, subject: str, body: str) -> bool:
    """
    Send an email notification.

    Args:
        to_email: Recipient email address
        subject: Email subject
        body: Email body (plain text)

    Returns:
        True if email sent successfully, False otherwise
    """
    import smtplib
    from email.mime.text import MIMEText
    from email.mime.multipart import MIMEMultipart

    if not to_email:
        return False

    # Testing mode: redirect all emails to the test inbox
    testing_mode = os.environ.get("TESTING_MODE", "false").lower() == "true"
    original_email = to_email
    if testing_mode:
        to_email = os.environ.get("TEST_EMAIL_ADDRESS", "")
        logger.info(f"[EMAIL TEST MODE] Redirecting email from {original_email} to {to_email}")
        if not to_email:
            return False

    smtp_server = os.environ.get("SMTP_SERVER")
    smtp_port = int(os.environ.get("SMTP_PORT", "587"))
    smtp_username = os.environ.get("SMTP_USERNAME")
    smtp_password = os.environ.get("SMTP_PASSWORD")
    smtp_from = os.environ.get("SMTP_FROM_EMAIL", smtp_username)

    if not all([smtp_server, smtp_username, smtp_password]):
        logger.info(f"[EMAIL] SMTP not configured, skipping email to {to_email}")
        return False

    try:
        msg = MIMEMultipart()
        msg['From'] = smtp_from
        msg['To'] = to_email
        msg['Subject'] = subject

        msg.attach(MIMEText(body, 'plain'))

        with smtplib.SMTP(smtp_server, smtp_port) as server:
            server.starttls()
            server.login(smtp_username, smtp_password)
            server.send_message(msg)

        logger.info(f"[EMAIL] Successfully sent to {to_email}: {subject}")
        return True

    except Exception as e:
        logger.error(f"[EMAIL ERROR] Failed to send to {to_email}: {e}")
        return False


def _challenge_message(kind, sender_name, match_time=None, score=None):
    """(title, short text) shared by the email and the in-app notification."""
    when = format_match_time(match_time)

    if kind == "launched":
        subject = f"New challenge from {sender_name}"
        text = f"{sender_name} has challenged you. Open the app to accept or decline."
    elif kind == "accepted":
        subject = f"{sender_name} accepted your challenge"
        text = f"{sender_name} accepted your challenge. Agree on a date and time to play."
    elif kind == "rejected":
        subject = f"{sender_name} declined your challenge"
        text = f"{sender_name} declined your challenge."
    elif kind == "scheduled":
        subject = f"Match scheduled with {sender_name}"
        text = f"Your match with {sender_name} is set for {when}."
    elif kind == "reminder":
        subject = f"Reminder: match with {sender_name} tomorrow"
        text = f"Don't forget your match with {sender_name} on {when}."
    elif kind == "deleted":
        subject = f"{sender_name} cancelled the challenge"
        text = f"{sender_name} cancelled your challenge. It no longer appears in your list."
    elif kind == "result":
        subject = f"Match result recorded by {sender_name}"
        text = f"{sender_name} recorded the result of your match: {score}.\nCheck the ranking for updated standings!"
    else:
        raise ValueError(f"Unknown notification type: {kind}")
    return subject, text


def compose_challenge_email(kind, recipient_name, sender_name, match_time=None, score=None):
    """Return (subject, body) for a challenge notification."""
    subject, text = _challenge_message(kind, sender_name, match_time, score)
    body = f"""Hi {recipient_name},

{text}

- Tennis League
"""
    return subject, body


NOTIFICATION_TYPES = {
    "launched": "challenge",
    "accepted": "challenge",
    "rejected": "challenge",
    "scheduled": "challenge",
    "deleted": "challenge",
    "result": "result",
    "reminder": "reminder",
}


def create_notification(user_id, kind, sender_name, match_id=None, **details):
    """Store the in-app copy of a challenge notification. Returns None if it could not be saved."""
    title, message = _challenge_message(kind, sender_name, **details)
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=NOTIFICATION_TYPES.get(kind, "info"),
        related_id=match_id,
        related_type="match" if match_id else None,
        is_read=False,
        created_at=datetime.now(),
    )
    try:
        db.session.add(notification)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[NOTIFY] Could not store {kind} notification for user {user_id}: {e}")
        return None
    return notification


def mark_notification_read(notification):
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now()
        db.session.commit()
    return notification


def clear_unread_notifications(user_id):
    """Delete the user's unread notifications. Returns how many were removed."""
    removed = Notification.query.filter_by(user_id=user_id, is_read=False).delete()
    db.session.commit()
    return removed


def log_email_error(to_email, recipient_name, sender_name, kind, error_message, match_id=None):
    try:
        db.session.add(EmailError(
            match_id=match_id,
            recipient_email=to_email,
            recipient_name=recipient_name,
            sender_name=sender_name,
            challenge_type=kind,
            error_message=error_message,
            created_at=datetime.now(),
        ))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[EMAIL ERROR] Could not log failed email to {to_email}: {e}")


def _deliver_notification(to_email, recipient_name, sender_name, kind, match_id, **details):
    try:
        subject, body = compose_challenge_email(kind, recipient_name, sender_name, **details)
        if send_email_notification(to_email, subject, body):
            return True
        error_message = "Email not delivered"
    except Exception as e:
        error_message = str(e)
    logger.warning(f"[EMAIL] {kind} notification to {to_email} failed: {error_message}")
    log_email_error(to_email, recipient_name, sender_name, kind, error_message, match_id)
    return False


def dispatch_notification(recipient: User, sender_name, kind, match_id=None, **details):
    """
    Store an in-app notification, then send a fire-and-forget email.
    Never raises; failures end up in the log and the email_error table.
    """
    if recipient is None:
        return None
    create_notification(recipient.id, kind, sender_name, match_id, **details)
    if not recipient.email:
        return None

    args = (recipient.email, recipient.display_name.split(' ')[0], sender_name, kind, match_id)

    if not current_app.config.get("EMAIL_ASYNC", True):
        return _deliver_notification(*args, **details)

    app = current_app._get_current_object()

    def run():
        with app.app_context():
            _deliver_notification(*args, **details)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


# ============================================================================
# RANKINGS AND TROPHIES
# ============================================================================

def get_live_ranking(championship_id):
    """Players per tier, ordered by live rank position."""
    ranking = {}
    for category in CATEGORIES:
        ranking[category] = Player.query.filter_by(
            championship_id=championship_id,
            live_rank_category=category,
        ).order_by(Player.live_rank_position).all()
    return ranking


def get_pro_master_ranking(championship_id):
    return Player.query.filter(
        Player.championship_id == championship_id,
        Player.pro_master_rank_position.isnot(None),
    ).order_by(Player.pro_master_rank_position).all()


def assign_pro_master_trophies(championship_id):
    """Award positions 1-3 of the Pro Master ladder. Returns the new trophies."""
    top_players = get_pro_master_ranking(championship_id)[:3]
    now = datetime.now()
    trophies = [
        Trophy(
            player_id=player.id,
            championship_id=championship_id,
            trophy_type="pro_master_rank",
            position=index + 1,
            awarded_date=now,
        )
        for index, player in enumerate(top_players)
    ]
    db.session.add_all(trophies)
    db.session.commit()
    return trophies


def assign_live_rank_trophies(championship_id):
    """Award the top 3 of every tier."""
    now = datetime.now()
    trophies = []
    for category, players in get_live_ranking(championship_id).items():
        for index, player in enumerate(players[:3]):
            trophies.append(Trophy(
                player_id=player.id,
                championship_id=championship_id,
                trophy_type="live_rank",
                position=index + 1,
                tournament_title=f"#{index + 1} {category.title()} category",
                awarded_date=now,
            ))
    db.session.add_all(trophies)
    db.session.commit()
    return trophies


def assign_tournament_trophy(championship_id, player_id, position, tournament_title):
    title = (tournament_title or "").strip()
    if not title:
        raise ValueError("Tournament title is required")
    if position not in (1, 2, 3):
        raise ValueError("Position must be 1, 2 or 3")
    player = db.session.get(Player, player_id)
    if not player or player.championship_id != championship_id:
        raise ValueError("Player not found in this championship")

    trophy = Trophy(
        player_id=player_id,
        championship_id=championship_id,
        trophy_type="tournament",
        position=position,
        tournament_title=title,
        awarded_date=datetime.now(),
    )
    db.session.add(trophy)
    db.session.commit()
    return trophy


def monthly_match_counts(championship_id, year):
    """Played matches per month (index 0 = January) for the admin stats table."""
    counts = [0] * 12
    played = Match.query.filter(
        Match.championship_id == championship_id,
        Match.played_clause(),
        Match.played_at.isnot(None),
    ).all()
    for match in played:
        if match.played_at.year == year:
            counts[match.played_at.month - 1] += 1
    return counts
