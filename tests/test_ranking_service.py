"""
Tests for the ranking procedure client and its transports.
"""
from unittest import mock

import pytest
import requests

from ranking_service import (
    DatabaseRankingService,
    HttpRankingService,
    ProcedureResult,
    RankingServiceError,
    build_ranking_service,
)


class TestProcedureResult:
    def test_success_payload(self):
        result = ProcedureResult.from_payload("reset_monthly_matches", {
            "success": True, "message": "Reset done", "players_updated": 12,
        })
        assert result.success is True
        assert result.message == "Reset done"
        assert result.get("players_updated") == 12
        assert result.unwrap()["players_updated"] == 12

    def test_failure_payload_unwrap_raises(self):
        result = ProcedureResult.from_payload("accept_challenge", {"success": False, "message": "Already challenged"})
        assert result.success is False
        with pytest.raises(RankingServiceError) as exc:
            result.unwrap()
        assert exc.value.message == "Already challenged"
        assert exc.value.procedure == "accept_challenge"

    def test_failure_without_message(self):
        result = ProcedureResult.from_payload("admin_delete_match", {"success": False})
        with pytest.raises(RankingServiceError, match="admin_delete_match failed"):
            result.unwrap()

    def test_bare_values_count_as_success(self):
        assert ProcedureResult.from_payload("get_default_championship_id", 7).data == 7
        assert ProcedureResult.from_payload("is_player_challengeable", False).data is False
        rows = ProcedureResult.from_payload("check_expired_suspensions", [{"player_email": "x@example.com"}])
        assert rows.success is True
        assert rows.get("player_email") is None


class TestProcedureCalls:
    def test_none_parameters_dropped(self, ranking):
        ranking.calculate_inactivity_demotion(3)
        assert ranking.called("calculate_inactivity_demotion") == [{"target_championship_id": 3}]

    def test_parameter_names(self, ranking):
        ranking.calculate_pro_master_points(3, "2026-10-01", 1, 500)
        ranking.set_challenge_datetime(3, 10, "2026-10-20T18:00:00")
        ranking.get_active_suspension(10)
        ranking.admin_update_match_score(5, "6-4 6-2")

        assert ranking.called("calculate_pro_master_points")[0] == {
            "target_championship_id": 3,
            "target_month": "2026-10-01",
            "min_matches_for_points": 1,
            "first_place_points": 500,
        }
        assert ranking.called("set_challenge_datetime")[0] == {
            "p_challenge_id": 3, "p_user_id": 10, "p_datetime": "2026-10-20T18:00:00",
        }
        assert ranking.called("get_active_suspension") == [{"p_user_id": 10}]
        assert ranking.called("admin_update_match_score")[0] == {"match_id_param": 5, "new_score": "6-4 6-2"}

    def test_false_flag_is_kept(self, ranking):
        ranking.admin_create_match(1, 2, 3, "6-0 6-0", "2026-10-01T10:00:00", False)
        assert ranking.called("admin_create_match")[0]["p_is_scheduled"] is False


class TestHttpRankingService:
    def _response(self, status, payload):
        resp = mock.Mock()
        resp.status_code = status
        resp.content = b"x"
        resp.json.return_value = payload
        resp.text = str(payload)
        return resp

    def test_posts_to_rpc_endpoint(self):
        service = HttpRankingService("https://rank.example.com/rest/v1/", "key-123")
        with mock.patch("ranking_service.requests.post",
                        return_value=self._response(200, {"success": True, "message": "ok"})) as post:
            result = service.reset_monthly_matches(4)

        assert result.success is True
        args, kwargs = post.call_args
        assert args[0] == "https://rank.example.com/rest/v1/rpc/reset_monthly_matches"
        assert kwargs["json"] == {"target_championship_id": 4}
        assert kwargs["headers"]["Authorization"] == "Bearer key-123"
        assert kwargs["timeout"] == 20

    def test_http_error_raises_with_message(self):
        service = HttpRankingService("https://rank.example.com", "key")
        with mock.patch("ranking_service.requests.post",
                        return_value=self._response(400, {"message": "function not found"})):
            with pytest.raises(RankingServiceError, match="function not found"):
                service.admin_delete_match(9)

    def test_connection_error(self):
        service = HttpRankingService("https://rank.example.com", "key")
        with mock.patch("ranking_service.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(RankingServiceError, match="unreachable") as exc:
                service.check_expired_suspensions()
        assert exc.value.procedure == "check_expired_suspensions"


class TestDatabaseRankingService:
    def test_scalar_procedure(self):
        db = mock.Mock()
        db.session.execute.return_value.scalar.return_value = {"success": True, "message": "Swaps done"}
        result = DatabaseRankingService(db).process_category_swaps(2)

        statement, params = db.session.execute.call_args[0]
        assert str(statement) == "SELECT process_category_swaps(target_championship_id => :target_championship_id)"
        assert params == {"target_championship_id": 2}
        assert result.message == "Swaps done"
        db.session.commit.assert_called_once()

    def test_row_procedure(self):
        db = mock.Mock()
        db.session.execute.return_value.mappings.return_value = [{"player_email": "a@example.com"}]
        result = DatabaseRankingService(db).check_expired_suspensions()

        statement, _ = db.session.execute.call_args[0]
        assert str(statement) == "SELECT * FROM check_expired_suspensions()"
        assert result.data == [{"player_email": "a@example.com"}]

    def test_database_error_rolls_back(self):
        db = mock.Mock()
        db.session.execute.side_effect = RuntimeError("no such function")
        with pytest.raises(RankingServiceError, match="no such function"):
            DatabaseRankingService(db).reset_monthly_matches(1)
        db.session.rollback.assert_called_once()


class TestBuildRankingService:
    def test_backends(self):
        db = object()
        assert isinstance(build_ranking_service({}, db), DatabaseRankingService)
        assert isinstance(build_ranking_service({"RANKING_BACKEND": "HTTP", "RANKING_SERVICE_URL": "http://x"}, db),
                          HttpRankingService)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_ranking_service({"RANKING_BACKEND": "grpc"}, None)
