"""
Tests for the signed-in user state object.
"""
from types import SimpleNamespace

from auth_session import SESSION_KEY, AuthSession


def _user():
    return SimpleNamespace(id=42, email="alice@example.com", display_name="Alice Martin")


class TestAuthSession:
    def test_empty_store_is_anonymous(self):
        auth = AuthSession.init({})
        assert auth.is_authenticated is False
        assert auth.has_player is False

    def test_refresh_writes_store(self):
        store = {}
        auth = AuthSession.init(store).refresh(_user(), store, has_player=True, registration_status="player")

        assert auth.is_authenticated
        assert store[SESSION_KEY]["user_id"] == 42
        assert store[SESSION_KEY]["display_name"] == "Alice Martin"
        assert store[SESSION_KEY]["has_player"] is True
        assert store[SESSION_KEY]["refreshed_at"] is not None

    def test_init_round_trips_store(self):
        store = {}
        AuthSession.init(store).refresh(_user(), store, registration_status="pending")
        again = AuthSession.init(store)

        assert again.user_id == 42
        assert again.email == "alice@example.com"
        assert again.registration_status == "pending"
        assert again.has_player is False

    def test_refresh_without_user_keeps_identity(self):
        store = {}
        auth = AuthSession.init(store).refresh(_user(), store)
        auth.refresh(None, store, has_player=True)

        assert store[SESSION_KEY]["user_id"] == 42
        assert store[SESSION_KEY]["has_player"] is True

    def test_clear(self):
        store = {"other": 1}
        auth = AuthSession.init(store).refresh(_user(), store, has_player=True)
        auth.clear(store)

        assert SESSION_KEY not in store
        assert store == {"other": 1}
        assert auth.is_authenticated is False
        assert auth.has_player is False


class TestLoginRequired:
    def test_anonymous_redirected_to_login(self, client):
        response = client.get("/dashboard")
        assert response.status_code == 302
        assert "/login" in response.headers["Location"]

    def test_user_without_player_sent_to_pending_page(self, client, league):
        from conftest import log_in

        log_in(client, league.ids["dave"], has_player=False)
        response = client.get("/dashboard")
        assert response.status_code == 302
        assert "/pending-registration" in response.headers["Location"]
