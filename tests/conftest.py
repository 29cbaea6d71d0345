"""
Shared pytest fixtures for the tennis league tests.

The app reads its configuration at import time, so the database location
and admin password are set in the environment before `app` is imported.
Each test gets freshly created tables and a FakeRankingService in place of
the stored procedures.
"""
import os
import sys
import tempfile
from datetime import datetime

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

_DB_DIR = tempfile.mkdtemp(prefix="tennis-league-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_DB_DIR, "test.db")
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ADMIN_PASSWORD"] = "admin-secret"
os.environ["RANKING_BACKEND"] = "database"
os.environ["EMAIL_ASYNC"] = "false"

from werkzeug.security import generate_password_hash

from models import Championship, Player, User, db
from ranking_service import RankingService

PASSWORD = "secret123"


class FakeRankingService(RankingService):
    """Records every procedure call and answers from a canned table."""

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.errors = {}

    def _call(self, procedure, params):
        self.calls.append((procedure, params))
        if procedure in self.errors:
            raise self.errors[procedure]
        response = self.responses.get(procedure, {"success": True, "message": "OK"})
        return response(params) if callable(response) else response

    def called(self, procedure):
        return [params for name, params in self.calls if name == procedure]


@pytest.fixture
def ranking():
    return FakeRankingService()


@pytest.fixture
def app(ranking, monkeypatch):
    from app import app as flask_app

    for var in ("SMTP_SERVER", "SMTP_USERNAME", "SMTP_PASSWORD", "TESTING_MODE"):
        monkeypatch.delenv(var, raising=False)

    flask_app.config.update(
        TESTING=True,
        EMAIL_ASYNC=False,
        ADMIN_PASSWORD="admin-secret",
        PROFILE_CHECK_TIMEOUT_MS=3000,
    )
    flask_app.extensions["ranking_service"] = ranking

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(email, first_name, last_name):
    user = User(
        email=email,
        password_hash=generate_password_hash(PASSWORD),
        first_name=first_name,
        last_name=last_name,
        created_at=datetime.now(),
    )
    db.session.add(user)
    db.session.commit()
    return user


def make_player(user, championship, category, position, **fields):
    player = Player(
        user_id=user.id,
        championship_id=championship.id,
        display_name=user.display_name,
        live_rank_category=category,
        live_rank_position=position,
        created_at=datetime.now(),
        **fields,
    )
    db.session.add(player)
    db.session.commit()
    return player


class League:
    """Handles to the seeded rows; ids are captured so they survive session expiry."""

    def __init__(self, championship, users, players):
        self.championship = championship
        self.championship_id = championship.id
        self.users = users
        self.players = players
        self.ids = {name: user.id for name, user in users.items()}


@pytest.fixture
def league(app, ranking):
    """One championship with three approved players and one user still waiting."""
    now = datetime.now()
    championship = Championship(name="Club Championship", is_default=True, created_at=now, updated_at=now)
    db.session.add(championship)
    db.session.commit()

    users = {
        "alice": make_user("alice@example.com", "Alice", "Martin"),
        "bob": make_user("bob@example.com", "Bob", "Durand"),
        "carol": make_user("carol@example.com", "Carol", "Petit"),
        "dave": make_user("dave@example.com", "Dave", "Moreau"),
    }
    players = {
        "alice": make_player(users["alice"], championship, "gold", 1, pro_master_points=500, pro_master_rank_position=1),
        "bob": make_player(users["bob"], championship, "gold", 2, pro_master_points=400, pro_master_rank_position=2),
        "carol": make_player(users["carol"], championship, "silver", 1, pro_master_points=300, pro_master_rank_position=3),
    }
    ranking.responses["get_default_championship_id"] = championship.id
    return League(championship, users, players)


def log_in(client, user_id, has_player=True):
    with client.session_transaction() as sess:
        sess["auth"] = {
            "user_id": user_id,
            "email": None,
            "display_name": None,
            "has_player": has_player,
            "registration_status": "player" if has_player else "pending",
            "refreshed_at": None,
        }


@pytest.fixture
def player_client(client, league):
    """Test client signed in as Alice."""
    log_in(client, league.ids["alice"])
    return client


@pytest.fixture
def admin_client(client):
    with client.session_transaction() as sess:
        sess["admin_authenticated"] = True
    return client
