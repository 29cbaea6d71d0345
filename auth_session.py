"""
Signed-in user state.

AuthSession is rebuilt from the Flask session at the start of each request
(init), updated after sign-in or a profile check (refresh) and wiped on
sign-out (clear). Views receive it as an argument from login_required.
"""

from datetime import datetime
from functools import wraps

SESSION_KEY = "auth"


class AuthSession:
    def __init__(self, user_id=None, email=None, display_name=None,
                 has_player=False, registration_status=None, refreshed_at=None):
        self.user_id = user_id
        self.email = email
        self.display_name = display_name
        self.has_player = has_player
        self.registration_status = registration_status
        self.refreshed_at = refreshed_at

    @property
    def is_authenticated(self):
        return self.user_id is not None

    @classmethod
    def init(cls, store):
        """Load from a session mapping; an empty store gives an anonymous session."""
        data = store.get(SESSION_KEY) or {}
        return cls(
            user_id=data.get("user_id"),
            email=data.get("email"),
            display_name=data.get("display_name"),
            has_player=bool(data.get("has_player")),
            registration_status=data.get("registration_status"),
            refreshed_at=data.get("refreshed_at"),
        )

    def refresh(self, user, store, has_player=None, registration_status=None):
        if user is not None:
            self.user_id = user.id
            self.email = user.email
            self.display_name = user.display_name
        if has_player is not None:
            self.has_player = has_player
        if registration_status is not None:
            self.registration_status = registration_status
        self.refreshed_at = datetime.now().isoformat(timespec="seconds")
        store[SESSION_KEY] = self.to_dict()
        return self

    def clear(self, store):
        store.pop(SESSION_KEY, None)
        self.user_id = None
        self.email = None
        self.display_name = None
        self.has_player = False
        self.registration_status = None
        self.refreshed_at = None

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "email": self.email,
            "display_name": self.display_name,
            "has_player": self.has_player,
            "registration_status": self.registration_status,
            "refreshed_at": self.refreshed_at,
        }

    def __repr__(self):
        return f"AuthSession(user_id={self.user_id}, has_player={self.has_player})"


def login_required(f):
    """Decorator: redirect anonymous users to /login, pass the AuthSession as `auth`."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from flask import flash, redirect, session, url_for

        auth = AuthSession.init(session)
        if not auth.is_authenticated:
            flash("Please log in first", "error")
            return redirect(url_for('login'))
        return f(auth, *args, **kwargs)
    return decorated_function
