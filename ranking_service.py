"""
Client for the league's ranking procedures.

Ranking math (inactivity demotion, Pro Master points, category swaps,
challenge eligibility, registration approval) lives in stored procedures
next to the league database. This module only knows their names and
parameters. Two transports are available:

- DatabaseRankingService: SELECT <procedure>(...) through SQLAlchemy
- HttpRankingService: POST <base_url>/rpc/<procedure> (PostgREST style)
"""

import logging
import os

import requests
from sqlalchemy import text

logger = logging.getLogger(__name__)

# Procedures that return a set of rows instead of a single JSON value
ROW_PROCEDURES = {
    "get_filtered_player_stats",
    "check_expired_suspensions",
    "get_active_suspension",
}


class RankingServiceError(Exception):
    """Raised when a procedure cannot be reached or reports a failure."""

    def __init__(self, message, procedure=None):
        super().__init__(message)
        self.message = message
        self.procedure = procedure


class ProcedureResult:
    def __init__(self, success: bool, message: str = "", data=None, procedure: str | None = None):
        self.success = success
        self.message = message
        self.data = data
        self.procedure = procedure

    @classmethod
    def from_payload(cls, procedure: str, payload) -> "ProcedureResult":
        """Most procedures answer {"success": bool, "message": str, ...}; the rest return bare values."""
        if isinstance(payload, dict) and "success" in payload:
            return cls(bool(payload["success"]), payload.get("message") or "", payload, procedure)
        return cls(True, "", payload, procedure)

    def unwrap(self):
        if not self.success:
            raise RankingServiceError(self.message or f"{self.procedure} failed", self.procedure)
        return self.data

    def get(self, key, default=None):
        if isinstance(self.data, dict):
            return self.data.get(key, default)
        return default

    def __repr__(self):
        return f"ProcedureResult(procedure={self.procedure}, success={self.success}, message={self.message!r})"


class RankingService:
    """Named procedures of the ranking engine. Subclasses provide _call()."""

    def _call(self, procedure: str, params: dict):
        raise NotImplementedError

    def call(self, procedure: str, **params) -> ProcedureResult:
        clean = {k: v for k, v in params.items() if v is not None}
        logger.info(f"[RANKING] {procedure} {sorted(clean)}")
        payload = self._call(procedure, clean)
        result = ProcedureResult.from_payload(procedure, payload)
        if not result.success:
            logger.warning(f"[RANKING] {procedure} reported failure: {result.message}")
        return result

    # Monthly recalculation

    def calculate_inactivity_demotion(self, championship_id, target_month=None, min_matches_required=None):
        return self.call(
            "calculate_inactivity_demotion",
            target_championship_id=championship_id,
            target_month=target_month,
            min_matches_required=min_matches_required,
        )

    def reset_monthly_matches(self, championship_id):
        return self.call("reset_monthly_matches", target_championship_id=championship_id)

    def calculate_pro_master_points(self, championship_id, target_month=None,
                                    min_matches_for_points=None, first_place_points=None):
        return self.call(
            "calculate_pro_master_points",
            target_championship_id=championship_id,
            target_month=target_month,
            min_matches_for_points=min_matches_for_points,
            first_place_points=first_place_points,
        )

    def process_category_swaps(self, championship_id):
        return self.call("process_category_swaps", target_championship_id=championship_id)

    # Registration

    def approve_registration_request(self, request_id, target_category):
        return self.call("approve_registration_request", request_id=request_id, target_category=target_category)

    def reject_registration_request(self, request_id, rejection_reason=None):
        return self.call("reject_registration_request", request_id=request_id, rejection_reason=rejection_reason)

    def get_default_championship_id(self):
        return self.call("get_default_championship_id")

    # Admin match management

    def admin_create_match(self, championship_id, winner_id, loser_id, score, played_at=None, is_scheduled=False):
        return self.call(
            "admin_create_match",
            p_championship_id=championship_id,
            p_winner_id=winner_id,
            p_loser_id=loser_id,
            p_score=score,
            p_played_at=played_at,
            p_is_scheduled=is_scheduled,
        )

    def admin_update_match_score(self, match_id, new_score, new_winner_id=None, new_loser_id=None):
        return self.call(
            "admin_update_match_score",
            match_id_param=match_id,
            new_score=new_score,
            new_winner_id=new_winner_id,
            new_loser_id=new_loser_id,
        )

    def admin_delete_match(self, match_id):
        return self.call("admin_delete_match", match_id_param=match_id)

    # Challenges

    def accept_challenge(self, challenge_id, user_id):
        return self.call("accept_challenge", p_challenge_id=challenge_id, p_user_id=user_id)

    def reject_challenge(self, challenge_id, user_id):
        return self.call("reject_challenge", p_challenge_id=challenge_id, p_user_id=user_id)

    def set_challenge_datetime(self, challenge_id, user_id, when):
        return self.call("set_challenge_datetime", p_challenge_id=challenge_id, p_user_id=user_id, p_datetime=when)

    def is_player_challengeable(self, championship_id, user_id):
        return self.call("is_player_challengeable", p_championship_id=championship_id, p_user_id=user_id)

    # Stats and suspensions

    def get_filtered_player_stats(self, user_id, filter_type="all", year=None, month=None):
        return self.call(
            "get_filtered_player_stats",
            player_uuid=user_id,
            filter_type=filter_type,
            filter_year=year,
            filter_month=month,
        )

    def create_player_suspension(self, user_id, reason, start_date, end_date):
        return self.call(
            "create_player_suspension",
            p_user_id=user_id,
            p_reason=reason,
            p_start_date=start_date,
            p_end_date=end_date,
        )

    def remove_player_suspension(self, user_id):
        return self.call("remove_player_suspension", p_user_id=user_id)

    def get_active_suspension(self, user_id):
        return self.call("get_active_suspension", p_user_id=user_id)

    def check_expired_suspensions(self):
        return self.call("check_expired_suspensions")


class DatabaseRankingService(RankingService):
    """Invokes the stored procedures on the league database."""

    def __init__(self, db):
        self.db = db

    def _call(self, procedure, params):
        args = ", ".join(f"{name} => :{name}" for name in params)
        try:
            if procedure in ROW_PROCEDURES:
                rows = self.db.session.execute(text(f"SELECT * FROM {procedure}({args})"), params)
                payload = [dict(row) for row in rows.mappings()]
            else:
                payload = self.db.session.execute(text(f"SELECT {procedure}({args})"), params).scalar()
            self.db.session.commit()
            return payload
        except Exception as e:
            self.db.session.rollback()
            logger.error(f"[RANKING ERROR] {procedure} failed: {e}")
            raise RankingServiceError(str(e), procedure) from e


class HttpRankingService(RankingService):
    """Calls the procedures through a PostgREST-style /rpc endpoint."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: int = 20):
        self.base_url = (base_url or os.environ.get("RANKING_SERVICE_URL", "")).rstrip("/")
        self.api_key = api_key or os.environ.get("RANKING_SERVICE_KEY", "")
        self.timeout = timeout

    def _headers(self) -> dict:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _call(self, procedure, params):
        url = f"{self.base_url}/rpc/{procedure}"
        try:
            resp = requests.post(url, headers=self._headers(), json=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"[RANKING ERROR] {procedure} unreachable: {e}")
            raise RankingServiceError(f"Ranking service unreachable: {e}", procedure) from e

        try:
            payload = resp.json() if resp.content else None
        except ValueError:
            payload = {"raw": resp.text}

        if resp.status_code >= 400:
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.error(f"[RANKING ERROR] {procedure} status={resp.status_code} body={payload}")
            raise RankingServiceError(message or f"HTTP {resp.status_code}", procedure)
        return payload


def build_ranking_service(config, db):
    backend = (config.get("RANKING_BACKEND") or "database").lower()
    if backend == "http":
        return HttpRankingService(config.get("RANKING_SERVICE_URL"), config.get("RANKING_SERVICE_KEY"))
    if backend == "database":
        return DatabaseRankingService(db)
    raise ValueError(f"Unknown RANKING_BACKEND: {backend}")
