from flask import Flask, render_template, redirect, url_for, request, flash, session
import os
import secrets
from datetime import datetime
from dotenv import load_dotenv
from werkzeug.security import check_password_hash, generate_password_hash
from models import (
    db,
    CATEGORIES,
    CHALLENGE_ACCEPTED,
    CHALLENGE_LAUNCHED,
    Championship,
    EmailError,
    Match,
    Notification,
    Player,
    RegistrationRequest,
    Trophy,
    User,
)
from auth_session import AuthSession, login_required
from ranking_service import RankingServiceError, build_ranking_service
from scoring import MatchOutcome, ScoreValidationError, parse_set_score, resolve_match_result
from utils import (
    PROFILE_ASSUMED,
    PROFILE_PLAYER,
    CHALLENGE_BLOCK_MESSAGES,
    MatchStorageError,
    assign_live_rank_trophies,
    assign_pro_master_trophies,
    assign_tournament_trophy,
    challenge_block_reason,
    clear_unread_notifications,
    create_challenge,
    create_match,
    dispatch_notification,
    extend_suspension,
    ensure_player_profile,
    get_live_ranking,
    get_pro_master_ranking,
    mark_notification_read,
    monthly_match_counts,
    normalize_phone_number,
    split_challenges,
    update_match,
)

app = Flask(__name__)

# Ensure .env values override any existing process variables
load_dotenv(override=True)

# Production-ready secret key (CRITICAL: Set SECRET_KEY in environment variables)
app.secret_key = os.environ.get("SECRET_KEY", secrets.token_hex(32))

# Database Configuration
# Supports both DATABASE_URL (Render/Heroku) and DATABASE_URI (legacy)
database_url = os.environ.get("DATABASE_URL") or os.environ.get("DATABASE_URI")

# Fallback to SQLite only if no database URL is provided
if not database_url:
    database_url = "sqlite:///tennis_league.db"
    import logging
    logging.warning("No DATABASE_URL found, using SQLite fallback")

# Fix for Render: postgres:// -> postgresql://
if database_url.startswith("postgres://"):
    database_url = database_url.replace("postgres://", "postgresql://", 1)

app.config["SQLALCHEMY_DATABASE_URI"] = database_url
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
if database_url.startswith("postgresql://"):
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_recycle": 300,     # Recycle connections after 5 minutes
        "pool_size": 3,
        "max_overflow": 2,
        "pool_timeout": 30,
        "connect_args": {"connect_timeout": 10},
    }

app.config["ADMIN_PASSWORD"] = os.environ.get("ADMIN_PASSWORD", "")
app.config["RANKING_BACKEND"] = os.environ.get("RANKING_BACKEND", "database")
app.config["RANKING_SERVICE_URL"] = os.environ.get("RANKING_SERVICE_URL", "")
app.config["RANKING_SERVICE_KEY"] = os.environ.get("RANKING_SERVICE_KEY", "")
app.config["PROFILE_CHECK_TIMEOUT_MS"] = int(os.environ.get("PROFILE_CHECK_TIMEOUT_MS", "3000"))
app.config["EMAIL_ASYNC"] = os.environ.get("EMAIL_ASYNC", "true").lower() == "true"
app.config["BASE_URL"] = os.environ.get("BASE_URL", "http://localhost:5000")

db.init_app(app)
app.extensions["ranking_service"] = build_ranking_service(app.config, db)

PENDING_RESULT_KEY = "pending_result"

MONTHLY_ACTIONS = {
    "inactivity-demotion": "Inactivity demotion",
    "reset-monthly": "Monthly match counter reset",
    "pro-master-points": "Pro Master points",
    "category-swaps": "Category swaps",
}


def get_ranking_service():
    return app.extensions["ranking_service"]


def current_player(auth):
    return Player.query.filter_by(user_id=auth.user_id).first()


def player_names(championship_id):
    """user_id -> display name for everyone in the championship"""
    players = Player.query.filter_by(championship_id=championship_id).all()
    return {p.user_id: p.display_name for p in players}


def player_required(f):
    """Like login_required, but also needs an approved Player; passes (auth, player)."""
    from functools import wraps
    @wraps(f)
    @login_required
    def decorated_function(auth, *args, **kwargs):
        player = current_player(auth)
        if not player:
            return redirect(url_for('pending_registration'))
        return f(auth, player, *args, **kwargs)
    return decorated_function


def check_admin_auth():
    """Check if user is authenticated as admin"""
    return session.get('admin_authenticated', False)


def require_admin_auth(f):
    """Decorator to require admin authentication for routes"""
    from functools import wraps
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not check_admin_auth():
            flash("Please log in to access the admin panel", "error")
            return redirect(url_for('admin_login'))
        return f(*args, **kwargs)
    return decorated_function


def flash_procedure(call, describe=None):
    """
    Run a ranking procedure and flash its outcome.
    Returns the ProcedureResult, or None when the service could not be reached.
    """
    try:
        result = call()
    except RankingServiceError as e:
        app.logger.error(f"Ranking procedure failed: {e.message}")
        flash(f"Error: {e.message}", "error")
        return None

    if result.success:
        message = describe(result) if describe else (result.message or "Done")
        flash(message, "success")
    else:
        flash(result.message or "Operation failed", "error")
    return result


def sign_in(user):
    """Start the session for user and run the profile check."""
    auth = AuthSession.init(session)
    auth.refresh(user, session)

    status = ensure_player_profile(auth, get_ranking_service())
    auth.refresh(None, session, has_player=status in (PROFILE_PLAYER, PROFILE_ASSUMED), registration_status=status)
    app.logger.info(f"User {user.id} signed in, profile status: {status}")

    if auth.has_player:
        return redirect(url_for('dashboard'))
    return redirect(url_for('pending_registration'))


@app.route("/health")
def health():
    return {"status": "ok"}, 200


@app.route("/")
def index():
    auth = AuthSession.init(session)
    if auth.is_authenticated:
        return redirect(url_for('dashboard'))
    return render_template("index.html")


@app.route("/register", methods=["GET", "POST"])
def register():
    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "")
        first_name = request.form.get("first_name", "").strip()
        last_name = request.form.get("last_name", "").strip()
        phone = request.form.get("phone", "").strip()

        if not email or "@" not in email:
            flash("Please enter a valid email address", "error")
            return render_template("register.html"), 400
        if len(password) < 6:
            flash("Password must be at least 6 characters", "error")
            return render_template("register.html"), 400
        if User.query.filter_by(email=email).first():
            flash("An account with this email already exists", "error")
            return render_template("register.html"), 400

        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            phone=normalize_phone_number(phone),
            created_at=datetime.now(),
        )
        db.session.add(user)
        db.session.commit()
        app.logger.info(f"New account registered: {email}")
        return sign_in(user)

    return render_template("register.html")


@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "")
        user = User.query.filter_by(email=email).first()
        if not user or not check_password_hash(user.password_hash, password):
            flash("Invalid email or password", "error")
            return render_template("login.html"), 401
        return sign_in(user)

    return render_template("login.html")


@app.route("/logout")
def logout():
    auth = AuthSession.init(session)
    auth.clear(session)
    session.pop(PENDING_RESULT_KEY, None)
    flash("You have been logged out", "success")
    return redirect(url_for('index'))


@app.route("/pending-registration")
@login_required
def pending_registration(auth):
    if current_player(auth):
        return redirect(url_for('dashboard'))
    registration = RegistrationRequest.query.filter_by(user_id=auth.user_id).first()
    return render_template("pending_registration.html", registration=registration, auth=auth)


@app.route("/dashboard")
@player_required
def dashboard(auth, player):
    championship = db.session.get(Championship, player.championship_id)
    user_matches = Match.query.filter(
        Match.championship_id == player.championship_id,
        (Match.winner_id == auth.user_id) | (Match.loser_id == auth.user_id),
    )
    challenges = user_matches.filter(
        Match.open_challenge_clause() | Match.awaiting_result_clause()
    ).order_by(Match.played_at).all()
    recent = user_matches.filter(Match.played_clause()).order_by(Match.played_at.desc()).limit(5).all()
    trophies = Trophy.query.filter_by(player_id=player.id).order_by(Trophy.awarded_date.desc()).all()

    return render_template(
        "dashboard.html",
        auth=auth,
        player=player,
        championship=championship,
        challenges=challenges,
        recent_matches=recent,
        trophies=trophies,
        names=player_names(player.championship_id),
    )


@app.route("/ranking")
@player_required
def ranking(auth, player):
    return render_template(
        "ranking.html",
        auth=auth,
        player=player,
        live_ranking=get_live_ranking(player.championship_id),
        pro_master=get_pro_master_ranking(player.championship_id),
        categories=CATEGORIES,
    )


@app.route("/challenges")
@player_required
def challenges(auth, player):
    unfinished = Match.query.filter(
        Match.championship_id == player.championship_id,
        Match.open_challenge_clause() | Match.awaiting_result_clause(),
        (Match.winner_id == auth.user_id) | (Match.loser_id == auth.user_id),
    ).order_by(Match.created_at.desc()).all()
    open_challenges, upcoming, to_register = split_challenges(unfinished)
    opponents = Player.query.filter(
        Player.championship_id == player.championship_id,
        Player.user_id != auth.user_id,
    ).order_by(Player.display_name).all()
    block_reason = challenge_block_reason(auth.user_id, player.championship_id)

    return render_template(
        "challenges.html",
        auth=auth,
        player=player,
        open_challenges=open_challenges,
        upcoming=upcoming,
        to_register=to_register,
        opponents=opponents,
        launch_blocked=CHALLENGE_BLOCK_MESSAGES.get(block_reason),
        names=player_names(player.championship_id),
        pending_result=session.get(PENDING_RESULT_KEY),
    )


def _challenge_for(auth, challenge_id):
    """An open challenge or a match awaiting its result that involves the current user"""
    challenge = db.session.get(Match, challenge_id)
    if not challenge or not challenge.involves(auth.user_id):
        return None
    if not (challenge.is_open_challenge or challenge.awaits_result):
        return None
    return challenge


@app.route("/challenges/launch", methods=["POST"])
@player_required
def launch_challenge(auth, player):
    challenged_id = request.form.get("challenged_id", type=int)
    opponent = Player.query.filter_by(user_id=challenged_id, championship_id=player.championship_id).first()
    if not opponent or challenged_id == auth.user_id:
        flash("Select a valid opponent", "error")
        return redirect(url_for('challenges'))

    block_reason = challenge_block_reason(auth.user_id, player.championship_id)
    if block_reason:
        flash(CHALLENGE_BLOCK_MESSAGES[block_reason], "error")
        return redirect(url_for('challenges'))

    try:
        challengeable = get_ranking_service().is_player_challengeable(player.championship_id, challenged_id)
    except RankingServiceError as e:
        flash(f"Error: {e.message}", "error")
        return redirect(url_for('challenges'))
    if challengeable.success and challengeable.data is False:
        flash(f"{opponent.display_name} cannot be challenged right now", "error")
        return redirect(url_for('challenges'))

    try:
        challenge = create_challenge(player.championship_id, auth.user_id, challenged_id)
    except MatchStorageError as e:
        flash(str(e), "error")
        return redirect(url_for('challenges'))

    app.logger.info(f"Challenge {challenge.id} launched by {auth.user_id} against {challenged_id}")
    flash(f"Challenge sent to {opponent.display_name}", "success")
    dispatch_notification(db.session.get(User, challenged_id), player.display_name, "launched",
                          match_id=challenge.id)
    return redirect(url_for('challenges'))


@app.route("/challenges/<int:challenge_id>/accept", methods=["POST"])
@player_required
def accept_challenge(auth, player, challenge_id):
    challenge = _challenge_for(auth, challenge_id)
    if not challenge or challenge.challenge_status != CHALLENGE_LAUNCHED \
            or challenge.challenge_launcher_id == auth.user_id:
        flash("Challenge not found", "error")
        return redirect(url_for('challenges'))

    result = flash_procedure(lambda: get_ranking_service().accept_challenge(challenge_id, auth.user_id),
                             lambda r: "Challenge accepted!")
    if result and result.success:
        dispatch_notification(db.session.get(User, challenge.challenge_launcher_id), player.display_name,
                              "accepted", match_id=challenge_id)
    return redirect(url_for('challenges'))


@app.route("/challenges/<int:challenge_id>/reject", methods=["POST"])
@player_required
def reject_challenge(auth, player, challenge_id):
    challenge = _challenge_for(auth, challenge_id)
    if not challenge or challenge.challenge_status != CHALLENGE_LAUNCHED \
            or challenge.challenge_launcher_id == auth.user_id:
        flash("Challenge not found", "error")
        return redirect(url_for('challenges'))

    result = flash_procedure(lambda: get_ranking_service().reject_challenge(challenge_id, auth.user_id),
                             lambda r: "Challenge declined")
    if result and result.success:
        dispatch_notification(db.session.get(User, challenge.challenge_launcher_id), player.display_name,
                              "rejected", match_id=challenge_id)
    return redirect(url_for('challenges'))


@app.route("/challenges/<int:challenge_id>/schedule", methods=["POST"])
@player_required
def schedule_challenge(auth, player, challenge_id):
    challenge = _challenge_for(auth, challenge_id)
    if not challenge or challenge.challenge_status != CHALLENGE_ACCEPTED:
        flash("Challenge not found", "error")
        return redirect(url_for('challenges'))

    try:
        when = datetime.fromisoformat(request.form.get("when", ""))
    except ValueError:
        flash("Enter a valid date and time", "error")
        return redirect(url_for('challenges'))

    result = flash_procedure(
        lambda: get_ranking_service().set_challenge_datetime(challenge_id, auth.user_id, when.isoformat()),
        lambda r: f"Match scheduled for {when.strftime('%d/%m/%Y %H:%M')}",
    )
    if result and result.success:
        dispatch_notification(db.session.get(User, challenge.opponent_of(auth.user_id)), player.display_name,
                              "scheduled", match_id=challenge_id, match_time=when)
    return redirect(url_for('challenges'))


@app.route("/challenges/<int:challenge_id>/delete", methods=["POST"])
@player_required
def delete_challenge(auth, player, challenge_id):
    challenge = _challenge_for(auth, challenge_id)
    # Only the launcher can withdraw a challenge that has not been accepted yet
    if not challenge or (challenge.challenge_status == CHALLENGE_LAUNCHED
                         and challenge.challenge_launcher_id != auth.user_id):
        flash("Challenge not found", "error")
        return redirect(url_for('challenges'))

    opponent = db.session.get(User, challenge.opponent_of(auth.user_id))
    db.session.delete(challenge)
    db.session.commit()
    flash("Challenge deleted", "success")
    dispatch_notification(opponent, player.display_name, "deleted", match_id=challenge_id)
    return redirect(url_for('challenges'))


@app.route("/results/preview", methods=["POST"])
@player_required
def preview_result(auth, player):
    """Score the reported sets and keep the outcome until the player confirms it"""
    data = request.get_json(silent=True) or {}

    try:
        opponent_id = int(data.get("opponent_id"))
        match_id = int(data["match_id"]) if data.get("match_id") else None
    except (TypeError, ValueError):
        return {"success": False, "message": "Select your opponent"}, 400

    opponent = Player.query.filter_by(user_id=opponent_id, championship_id=player.championship_id).first()
    if not opponent or opponent.user_id == auth.user_id:
        return {"success": False, "message": "Select your opponent"}, 400

    if match_id:
        match = db.session.get(Match, match_id)
        if not match or not match.awaits_result:
            return {"success": False, "message": "Match not found"}, 404
        if not (match.involves(auth.user_id) and match.involves(opponent.user_id)):
            return {"success": False, "message": "Unauthorized"}, 403

    try:
        set1 = parse_set_score(data.get("set1_a"), data.get("set1_b"))
        set2 = parse_set_score(data.get("set2_a"), data.get("set2_b"))
        outcome = resolve_match_result(set1, set2, auth.user_id, opponent.user_id)
    except ScoreValidationError as e:
        return {"success": False, "message": e.message}, 400

    session[PENDING_RESULT_KEY] = {
        "championship_id": player.championship_id,
        "opponent_id": opponent.user_id,
        "match_id": match_id,
        "outcome": outcome.to_dict(),
    }

    names = {auth.user_id: player.display_name, opponent.user_id: opponent.display_name}
    return {
        "success": True,
        "result": {
            "is_draw": outcome.is_draw,
            "winner": None if outcome.is_draw else names[outcome.winner_id],
            "score": outcome.score_string,
            "player_total": outcome.total_a,
            "opponent_total": outcome.total_b,
            "player_name": player.display_name,
            "opponent_name": opponent.display_name,
        },
    }


@app.route("/results/confirm", methods=["POST"])
@player_required
def confirm_result(auth, player):
    pending = session.get(PENDING_RESULT_KEY)
    if not pending:
        return {"success": False, "message": "No result to confirm"}, 400

    outcome = MatchOutcome.from_dict(pending["outcome"])
    try:
        if pending.get("match_id"):
            match = update_match(pending["match_id"], outcome.winner_id, outcome.loser_id,
                                 outcome.score_string, outcome.is_draw)
        else:
            match = create_match(pending["championship_id"], outcome.winner_id, outcome.loser_id,
                                 outcome.score_string, outcome.is_draw)
    except MatchStorageError as e:
        app.logger.error(f"Result registration failed for user {auth.user_id}: {e}")
        return {"success": False, "message": str(e)}, 500

    session.pop(PENDING_RESULT_KEY, None)
    dispatch_notification(db.session.get(User, pending["opponent_id"]), player.display_name, "result",
                          match_id=match.id, score=outcome.score_string)

    return {
        "success": True,
        "message": "Draw recorded!" if outcome.is_draw else "Result recorded!",
        "match_id": match.id,
    }


@app.route("/results/cancel", methods=["POST"])
@login_required
def cancel_result(auth):
    session.pop(PENDING_RESULT_KEY, None)
    return {"success": True}


@app.route("/matches")
@player_required
def match_history(auth, player):
    played = Match.query.filter(
        Match.championship_id == player.championship_id,
        Match.played_clause(),
        (Match.winner_id == auth.user_id) | (Match.loser_id == auth.user_id),
    ).order_by(Match.played_at.desc()).all()
    return render_template("matches.html", auth=auth, player=player, matches=played,
                           names=player_names(player.championship_id))


@app.route("/player/<int:player_id>")
@player_required
def player_profile(auth, player, player_id):
    profile = db.session.get(Player, player_id)
    if not profile or profile.championship_id != player.championship_id:
        return render_template("base.html"), 404

    filter_type = request.args.get("filter", "all")
    year = request.args.get("year", type=int)
    month = request.args.get("month", type=int)
    stats = None
    try:
        result = get_ranking_service().get_filtered_player_stats(profile.user_id, filter_type, year, month)
        if result.success and isinstance(result.data, list) and result.data:
            stats = result.data[0]
    except RankingServiceError as e:
        app.logger.warning(f"Stats unavailable for player {player_id}: {e.message}")

    trophies = Trophy.query.filter_by(player_id=profile.id).order_by(Trophy.awarded_date.desc()).all()
    return render_template("player.html", auth=auth, player=player, profile=profile, stats=stats,
                           trophies=trophies, filter_type=filter_type)


@app.route("/availability")
@player_required
def availability(auth, player):
    suspension = None
    try:
        result = get_ranking_service().get_active_suspension(auth.user_id)
        if result.success and isinstance(result.data, list) and result.data:
            suspension = result.data[0]
    except RankingServiceError as e:
        app.logger.warning(f"Suspension lookup failed for user {auth.user_id}: {e.message}")

    return render_template("availability.html", auth=auth, player=player, suspension=suspension,
                           today=datetime.now().date().isoformat())


@app.route("/availability/suspend", methods=["POST"])
@player_required
def suspend_self(auth, player):
    reason = request.form.get("reason", "").strip()
    start_date = request.form.get("start_date", "").strip()
    end_date = request.form.get("end_date", "").strip()
    if not all([reason, start_date, end_date]):
        flash("Reason, start date and end date are required", "error")
        return redirect(url_for('availability'))
    if end_date < start_date:
        flash("End date must be after start date", "error")
        return redirect(url_for('availability'))

    flash_procedure(lambda: get_ranking_service().create_player_suspension(auth.user_id, reason, start_date, end_date),
                    lambda r: "You are now marked as unavailable")
    return redirect(url_for('availability'))


@app.route("/availability/extend", methods=["POST"])
@player_required
def extend_own_suspension(auth, player):
    suspension_id = request.form.get("suspension_id", type=int)
    try:
        new_end = datetime.fromisoformat(request.form.get("end_date", ""))
    except ValueError:
        flash("Enter a valid end date", "error")
        return redirect(url_for('availability'))

    try:
        extend_suspension(auth.user_id, suspension_id, new_end)
    except ValueError as e:
        flash(str(e), "error")
        return redirect(url_for('availability'))

    flash(f"Suspension extended to {new_end.strftime('%d/%m/%Y')}", "success")
    return redirect(url_for('availability'))


@app.route("/availability/reactivate", methods=["POST"])
@player_required
def reactivate_self(auth, player):
    flash_procedure(lambda: get_ranking_service().remove_player_suspension(auth.user_id),
                    lambda r: "Welcome back! You can be challenged again")
    return redirect(url_for('availability'))


@app.route("/notifications")
@login_required
def notifications(auth):
    items = Notification.query.filter_by(user_id=auth.user_id).order_by(Notification.created_at.desc()).all()
    unread = sum(1 for n in items if not n.is_read)
    return render_template("notifications.html", auth=auth, notifications=items, unread_count=unread)


def _notification_for(auth, notification_id):
    notification = db.session.get(Notification, notification_id)
    if not notification or notification.user_id != auth.user_id:
        return None
    return notification


@app.route("/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def read_notification(auth, notification_id):
    notification = _notification_for(auth, notification_id)
    if not notification:
        flash("Notification not found", "error")
        return redirect(url_for('notifications'))
    mark_notification_read(notification)
    return redirect(url_for('notifications'))


@app.route("/notifications/<int:notification_id>/delete", methods=["POST"])
@login_required
def delete_notification(auth, notification_id):
    notification = _notification_for(auth, notification_id)
    if not notification:
        flash("Notification not found", "error")
        return redirect(url_for('notifications'))
    db.session.delete(notification)
    db.session.commit()
    return redirect(url_for('notifications'))


@app.route("/notifications/clear-unread", methods=["POST"])
@login_required
def clear_notifications(auth):
    removed = clear_unread_notifications(auth.user_id)
    flash(f"Removed {removed} unread notifications", "success")
    return redirect(url_for('notifications'))


# ============================================================================
# ADMIN
# ============================================================================

@app.route("/admin/login", methods=["GET", "POST"])
def admin_login():
    if request.method == "POST":
        password = request.form.get("password", "")
        expected = app.config["ADMIN_PASSWORD"]
        if expected and secrets.compare_digest(password, expected):
            session['admin_authenticated'] = True
            flash("Welcome to the admin panel", "success")
            return redirect(url_for('admin_panel'))
        flash("Invalid password", "error")
    return render_template("admin_login.html")


@app.route("/admin/logout")
def admin_logout():
    session.pop('admin_authenticated', None)
    flash("Logged out of the admin panel", "success")
    return redirect(url_for('index'))


def _selected_championship():
    championship_id = request.args.get("championship_id", type=int)
    if championship_id:
        return db.session.get(Championship, championship_id)
    return Championship.query.filter_by(is_default=True).first() or Championship.query.first()


@app.route("/admin")
@require_admin_auth
def admin_panel():
    championships = Championship.query.order_by(Championship.name).all()
    championship = _selected_championship()
    year = request.args.get("year", type=int) or datetime.now().year

    players, matches, counts = [], [], [0] * 12
    if championship:
        players = Player.query.filter_by(championship_id=championship.id).order_by(
            Player.live_rank_category, Player.live_rank_position
        ).all()
        matches = Match.query.filter_by(championship_id=championship.id).order_by(
            Match.created_at.desc()
        ).limit(50).all()
        counts = monthly_match_counts(championship.id, year)

    return render_template(
        "admin.html",
        championships=championships,
        championship=championship,
        registrations=RegistrationRequest.query.filter_by(status="pending").order_by(
            RegistrationRequest.requested_at
        ).all(),
        players=players,
        matches=matches,
        names={p.user_id: p.display_name for p in players},
        email_errors=EmailError.query.order_by(EmailError.created_at.desc()).limit(50).all(),
        monthly_counts=counts,
        year=year,
        categories=CATEGORIES,
        monthly_actions=MONTHLY_ACTIONS,
    )


@app.route("/admin/registrations/<int:request_id>/approve", methods=["POST"])
@require_admin_auth
def approve_registration(request_id):
    category = request.form.get("category", "")
    if category not in CATEGORIES:
        flash("Select Gold, Silver or Bronze", "error")
        return redirect(url_for('admin_panel'))

    flash_procedure(lambda: get_ranking_service().approve_registration_request(request_id, category))
    return redirect(url_for('admin_panel'))


@app.route("/admin/registrations/<int:request_id>/reject", methods=["POST"])
@require_admin_auth
def reject_registration(request_id):
    reason = request.form.get("reason", "").strip() or None
    flash_procedure(lambda: get_ranking_service().reject_registration_request(request_id, reason))
    return redirect(url_for('admin_panel'))


@app.route("/admin/matches/create", methods=["POST"])
@require_admin_auth
def admin_create_match():
    championship_id = request.form.get("championship_id", type=int)
    winner_id = request.form.get("winner_id", type=int)
    loser_id = request.form.get("loser_id", type=int)
    score = request.form.get("score", "").strip()
    played_at = request.form.get("played_at", "").strip() or datetime.now().isoformat()

    if not all([championship_id, winner_id, loser_id, score]):
        flash("Please fill all required fields", "error")
        return redirect(url_for('admin_panel'))
    if winner_id == loser_id:
        flash("Winner and loser must be different players", "error")
        return redirect(url_for('admin_panel'))

    flash_procedure(lambda: get_ranking_service().admin_create_match(
        championship_id, winner_id, loser_id, score, played_at, False
    ))
    return redirect(url_for('admin_panel', championship_id=championship_id))


@app.route("/admin/matches/<int:match_id>/update", methods=["POST"])
@require_admin_auth
def admin_update_match(match_id):
    score = request.form.get("score", "").strip()
    if not score:
        flash("Please provide the new score", "error")
        return redirect(url_for('admin_panel'))

    flash_procedure(lambda: get_ranking_service().admin_update_match_score(match_id, score))
    return redirect(url_for('admin_panel'))


@app.route("/admin/matches/<int:match_id>/delete", methods=["POST"])
@require_admin_auth
def admin_delete_match(match_id):
    flash_procedure(lambda: get_ranking_service().admin_delete_match(match_id))
    return redirect(url_for('admin_panel'))


@app.route("/admin/championships/<int:championship_id>/settings", methods=["POST"])
@require_admin_auth
def save_championship_settings(championship_id):
    championship = db.session.get(Championship, championship_id)
    if not championship:
        flash("Championship not found", "error")
        return redirect(url_for('admin_panel'))

    fields = ("min_matches_required", "min_matches_for_points", "first_place_points")
    values = {}
    for field in fields:
        value = request.form.get(field, type=int)
        if value is None or value < 0:
            flash(f"Invalid value for {field.replace('_', ' ')}", "error")
            return redirect(url_for('admin_panel', championship_id=championship_id))
        values[field] = value

    for field, value in values.items():
        setattr(championship, field, value)
    championship.updated_at = datetime.now()
    db.session.commit()
    flash("Championship parameters saved", "success")
    return redirect(url_for('admin_panel', championship_id=championship_id))


def run_monthly_action(action, championship, service, target_month=None):
    """Dispatch one monthly recalculation step to its procedure."""
    target_month = target_month or datetime.now().date().isoformat()
    if action == "inactivity-demotion":
        return service.calculate_inactivity_demotion(championship.id, target_month, championship.min_matches_required)
    if action == "reset-monthly":
        return service.reset_monthly_matches(championship.id)
    if action == "pro-master-points":
        return service.calculate_pro_master_points(
            championship.id, target_month, championship.min_matches_for_points, championship.first_place_points
        )
    if action == "category-swaps":
        return service.process_category_swaps(championship.id)
    raise ValueError(f"Unknown monthly action: {action}")


def describe_monthly_result(result):
    message = result.message or "Done"
    for key, label in (
        ("demoted_players", "Demoted {} inactive players"),
        ("players_updated", "Reset counter for {} players"),
        ("players_awarded", "Awarded {} players"),
        ("swaps_performed", "Performed {} swaps"),
    ):
        if result.get(key) is not None:
            return f"{message}. {label.format(result.get(key))}."
    return message


@app.route("/admin/championships/<int:championship_id>/monthly/<action>", methods=["POST"])
@require_admin_auth
def monthly_recalculation(championship_id, action):
    championship = db.session.get(Championship, championship_id)
    if not championship or action not in MONTHLY_ACTIONS:
        flash("Unknown championship or action", "error")
        return redirect(url_for('admin_panel'))

    flash_procedure(lambda: run_monthly_action(action, championship, get_ranking_service()),
                    describe_monthly_result)
    return redirect(url_for('admin_panel', championship_id=championship_id))


@app.route("/admin/players/<int:user_id>/suspend", methods=["POST"])
@require_admin_auth
def suspend_player(user_id):
    reason = request.form.get("reason", "").strip()
    start_date = request.form.get("start_date", "").strip()
    end_date = request.form.get("end_date", "").strip()
    if not all([reason, start_date, end_date]):
        flash("Reason, start date and end date are required", "error")
        return redirect(url_for('admin_panel'))
    if end_date < start_date:
        flash("End date must be after start date", "error")
        return redirect(url_for('admin_panel'))

    flash_procedure(lambda: get_ranking_service().create_player_suspension(user_id, reason, start_date, end_date),
                    lambda r: "Player suspended")
    return redirect(url_for('admin_panel'))


@app.route("/admin/players/<int:user_id>/reactivate", methods=["POST"])
@require_admin_auth
def reactivate_player(user_id):
    flash_procedure(lambda: get_ranking_service().remove_player_suspension(user_id),
                    lambda r: "Player reactivated")
    return redirect(url_for('admin_panel'))


@app.route("/admin/email-errors/<int:error_id>/delete", methods=["POST"])
@require_admin_auth
def delete_email_error(error_id):
    error = db.session.get(EmailError, error_id)
    if not error:
        flash("Email error not found", "error")
        return redirect(url_for('admin_panel'))
    db.session.delete(error)
    db.session.commit()
    flash("Email error removed", "success")
    return redirect(url_for('admin_panel'))


@app.route("/admin/email-errors/clear", methods=["POST"])
@require_admin_auth
def clear_email_errors():
    removed = EmailError.query.delete()
    db.session.commit()
    app.logger.info(f"Cleared {removed} email errors")
    flash(f"Cleared {removed} email errors", "success")
    return redirect(url_for('admin_panel'))


@app.route("/admin/championships/<int:championship_id>/trophies/<kind>", methods=["POST"])
@require_admin_auth
def assign_trophies(championship_id, kind):
    try:
        if kind == "pro-master":
            trophies = assign_pro_master_trophies(championship_id)
        elif kind == "live-rank":
            trophies = assign_live_rank_trophies(championship_id)
        elif kind == "tournament":
            trophies = [assign_tournament_trophy(
                championship_id,
                request.form.get("player_id", type=int),
                request.form.get("position", type=int),
                request.form.get("tournament_title", ""),
            )]
        else:
            flash("Unknown trophy type", "error")
            return redirect(url_for('admin_panel', championship_id=championship_id))
    except ValueError as e:
        flash(str(e), "error")
        return redirect(url_for('admin_panel', championship_id=championship_id))

    if trophies:
        flash(f"Assigned {len(trophies)} trophies", "success")
    else:
        flash("No ranked players found", "info")
    return redirect(url_for('admin_panel', championship_id=championship_id))


# Error Handlers for Production
@app.errorhandler(404)
def page_not_found(e):
    """Handle 404 errors"""
    return render_template('base.html'), 404


@app.errorhandler(500)
def internal_server_error(e):
    """Handle 500 errors"""
    db.session.rollback()
    return render_template('base.html'), 500


# Production Configuration
def setup_production():
    """Setup production-specific configurations"""
    import logging

    if not app.debug:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        )
        app.logger.setLevel(logging.INFO)
        app.logger.info('Tennis League Hub startup')


setup_production()


def init_db():
    """Create missing tables (safe for existing databases)"""
    try:
        db.create_all()
        app.logger.info("Database tables verified")
        return True
    except Exception as e:
        app.logger.error(f"Database initialization failed: {e}")
        app.logger.error("Application will continue but database features may not work")
        return False


# Initialize DB on first request (non-blocking for health checks)
_db_initialized = False
_db_available = True


@app.before_request
def ensure_db_initialized():
    """Ensure database is initialized before processing requests"""
    global _db_initialized, _db_available

    # Skip health check - it must work without database
    if request.endpoint == 'health':
        return

    if not _db_initialized:
        _db_available = init_db()
        _db_initialized = True

        if not _db_available:
            app.logger.warning("Database not available - some features will not work")


if __name__ == "__main__":
    # Development mode only
    port = int(os.environ.get("PORT") or 5000)
    debug = os.environ.get("FLASK_ENV") == "development"
    app.run(host="0.0.0.0", port=port, debug=debug)
