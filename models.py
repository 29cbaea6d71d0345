from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

CATEGORIES = ("gold", "silver", "bronze")

# challenge_status values shared with the challenge procedures
CHALLENGE_LAUNCHED = "lanciata"
CHALLENGE_ACCEPTED = "accettata"
OPEN_CHALLENGE_STATUSES = (CHALLENGE_LAUNCHED, CHALLENGE_ACCEPTED)
PENDING_SCORE = "In attesa"


class User(db.Model):
    """Login account. A user becomes a Player once their registration is approved."""
    __tablename__ = 'app_user'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    phone = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, nullable=True)

    @property
    def display_name(self):
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email.split('@')[0]


class Championship(db.Model):
    __tablename__ = 'championship'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    is_public = db.Column(db.Boolean, default=True)
    is_default = db.Column(db.Boolean, default=False)

    # Tier sizes (Gold / Silver / Bronze)
    gold_players_count = db.Column(db.Integer, nullable=True)
    silver_players_count = db.Column(db.Integer, nullable=True)
    bronze_players_count = db.Column(db.Integer, nullable=True)

    # Monthly recalculation parameters
    min_matches_required = db.Column(db.Integer, default=2)  # Below this a player is demoted for inactivity
    min_matches_for_points = db.Column(db.Integer, default=1)  # Needed to earn Pro Master points
    first_place_points = db.Column(db.Integer, default=500)  # Pro Master points for rank #1

    created_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=True)


class Player(db.Model):
    """A user's standing inside one championship"""
    __tablename__ = 'player'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    championship_id = db.Column(db.Integer, nullable=False, index=True)
    display_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))

    # Live ranking: tier plus position inside the championship
    live_rank_category = db.Column(db.String(10))  # 'gold', 'silver' or 'bronze'
    live_rank_position = db.Column(db.Integer, nullable=True)
    previous_live_rank_position = db.Column(db.Integer, nullable=True)
    best_category = db.Column(db.String(10), nullable=True)
    best_live_rank_category_position = db.Column(db.Integer, nullable=True)

    # Pro Master ladder
    pro_master_points = db.Column(db.Integer, default=0)
    pro_master_rank_position = db.Column(db.Integer, nullable=True)
    best_pro_master_rank = db.Column(db.Integer, nullable=True)

    matches_this_month = db.Column(db.Integer, default=0)
    last_match_date = db.Column(db.DateTime, nullable=True)
    availability_status = db.Column(db.String(20), default="available")  # available, unavailable, suspended

    created_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=True)


class RegistrationRequest(db.Model):
    __tablename__ = 'registration_request'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, unique=True, index=True)
    championship_id = db.Column(db.Integer, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))
    status = db.Column(db.String(20), default="pending")  # pending/approved/rejected
    rejected_reason = db.Column(db.Text, nullable=True)
    requested_at = db.Column(db.DateTime, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)


class Match(db.Model):
    """
    A challenge or a played match. One row goes through these states:

    - launched:    is_scheduled=False, challenge_status='lanciata'
    - accepted:    is_scheduled=False, challenge_status='accettata'
    - scheduled:   is_scheduled=True,  challenge_status=None (played_at = agreed time)
    - played:      is_scheduled=False, challenge_status=None

    Until a result is reported winner_id is the launcher and loser_id the
    challenged player.
    """
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    championship_id = db.Column(db.Integer, nullable=False, index=True)

    winner_id = db.Column(db.Integer, nullable=True)  # user id
    loser_id = db.Column(db.Integer, nullable=True)  # user id
    score = db.Column(db.String(50), default="")  # Winner's perspective: "6-4 6-3"
    is_draw = db.Column(db.Boolean, default=False)

    is_scheduled = db.Column(db.Boolean, default=False)
    challenge_launcher_id = db.Column(db.Integer, nullable=True)
    challenge_status = db.Column(db.String(20), nullable=True)  # lanciata, accettata or None
    played_at = db.Column(db.DateTime, nullable=True)
    reminder_sent = db.Column(db.Boolean, default=False)

    winner_points_gained = db.Column(db.Integer, nullable=True)
    loser_points_lost = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=True)

    def involves(self, user_id):
        return user_id in (self.winner_id, self.loser_id)

    def opponent_of(self, user_id):
        return self.loser_id if self.winner_id == user_id else self.winner_id

    @property
    def is_open_challenge(self):
        return not self.is_scheduled and self.challenge_status in OPEN_CHALLENGE_STATUSES

    @property
    def awaits_result(self):
        """Date agreed, result not reported yet"""
        return bool(self.is_scheduled) and self.challenge_status is None

    @property
    def is_played(self):
        return not self.is_scheduled and self.challenge_status is None

    @classmethod
    def played_clause(cls):
        return db.and_(cls.is_scheduled.is_(False), cls.challenge_status.is_(None))

    @classmethod
    def open_challenge_clause(cls):
        return db.and_(cls.is_scheduled.is_(False), cls.challenge_status.in_(OPEN_CHALLENGE_STATUSES))

    @classmethod
    def awaiting_result_clause(cls):
        return db.and_(cls.is_scheduled.is_(True), cls.challenge_status.is_(None))


class Trophy(db.Model):
    __tablename__ = 'trophy'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, nullable=False, index=True)
    championship_id = db.Column(db.Integer, nullable=False)
    trophy_type = db.Column(db.String(30), nullable=False)  # pro_master_rank, live_rank, tournament
    position = db.Column(db.Integer, nullable=False)
    tournament_title = db.Column(db.String(200), nullable=True)
    awarded_date = db.Column(db.DateTime, nullable=True)


class EmailError(db.Model):
    """Failed notification deliveries, listed on the admin panel"""
    __tablename__ = 'email_error'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, nullable=True)
    recipient_email = db.Column(db.String(120))
    recipient_name = db.Column(db.String(100))
    sender_name = db.Column(db.String(100))
    challenge_type = db.Column(db.String(20))
    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=True)


class PlayerSuspension(db.Model):
    """Self-declared or admin-imposed break. Created and lifted by the suspension procedures."""
    __tablename__ = 'player_suspensions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=True)


class Notification(db.Model):
    """In-app notification shown in the player's notification list"""
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False)  # challenge, result, reminder, info
    related_id = db.Column(db.Integer, nullable=True)
    related_type = db.Column(db.String(20), nullable=True)  # match
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=True)
