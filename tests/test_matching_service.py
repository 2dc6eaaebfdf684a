"""
Tests for MatchingService
"""

from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest

from app.actors.recalculation import recalculate_pivot, run_batch_recalculation
from app.models import MatchResult
from app.services.matching import NotFoundError, ValidationError
from app.services.matching_service import MatchingService
from app.services.recalculation import SCHEDULED, BatchStateStore


@pytest.fixture
def service(db, session_factory):
    return MatchingService(db, session_factory=session_factory)


class TestRunMatchingNow:

    def test_success_preview(self, db, service, make_child, make_family):
        child = make_child()
        make_family(name="Near")
        make_family(name="Expired", license_status="Expired")

        response = service.run_matching_now("child", child.id)

        assert response["success"] is True
        assert response["message"] == "Found 1 eligible match(es); 1 candidate(s) excluded by eligibility requirements"
        assert [r["candidate_name"] for r in response["results"]] == ["Near"]
        assert [r["candidate_name"] for r in response["excluded"]] == ["Expired"]
        assert response["summary"]["total_matches"] == 1
        assert response["persisted"] is False
        assert db.query(MatchResult).count() == 0

    def test_persist_writes_current_set(self, db, service, make_child, make_family):
        child = make_child()
        make_family()

        response = service.run_matching_now("child", child.id, persist=True)

        assert response["persisted"] is True
        assert db.query(MatchResult).filter(MatchResult.is_current.is_(True)).count() == 1

    def test_persist_reports_discarded_stale_set(self, db, service, make_child, make_family):
        child = make_child()
        make_family()
        service.run_matching_now("child", child.id, persist=True)
        db.query(MatchResult).update(
            {MatchResult.calculated_at: datetime.utcnow() + timedelta(hours=1)}, synchronize_session=False
        )
        db.commit()

        response = service.run_matching_now("child", child.id, persist=True)

        assert response["success"] is True
        assert response["persisted"] is False
        assert response["message"].endswith("not saved, a newer result set is already stored")
        assert db.query(MatchResult).count() == 1

    def test_no_candidates(self, service, make_child):
        child = make_child()

        response = service.run_matching_now("child", child.id)

        assert response["success"] is True
        assert response["message"] == "No eligible candidates found"
        assert response["results"] == []

    def test_unknown_pivot_is_failure_not_exception(self, service):
        response = service.run_matching_now("child", 404)

        assert response["success"] is False
        assert "not found" in response["message"].lower()
        assert response["results"] == []

    def test_ineligible_pivot(self, service, make_child):
        child = make_child(status="Placed")

        response = service.run_matching_now("child", child.id)

        assert response["success"] is False
        assert "Placed" in response["message"]

    def test_bad_pivot_type(self, service):
        response = service.run_matching_now("household", 1)

        assert response["success"] is False
        assert "household" in response["message"]

    def test_unexpected_error_is_reported(self, service, make_child):
        child = make_child()
        with patch("app.services.matching_service.CandidateMatcher") as matcher:
            matcher.return_value.match.side_effect = KeyError("boom")
            response = service.run_matching_now("child", child.id)

        assert response == {
            "success": False,
            "message": "Matching failed: KeyError",
            "results": [],
            "excluded": [],
            "summary": {"total_matches": 0, "average_score": 0.0, "top_score": 0.0, "average_distance": None},
            "persisted": False,
        }

    def test_no_database(self, session_factory):
        response = MatchingService(None, session_factory=session_factory).run_matching_now("child", 1)

        assert response["success"] is False
        assert response["message"] == "Database not configured"


class TestPersistedResults:

    def test_current_results_and_status_update(self, service, make_child, make_family):
        child = make_child()
        make_family()
        service.run_matching_now("child", child.id, persist=True)

        current = service.get_current_results("child", child.id)
        result_id = current["results"][0]["match_result_id"]
        updated = service.update_match_status(result_id, "Recommended", notes="Strong fit")

        assert updated["status"] == "Recommended"
        assert updated["notes"] == "Strong fit"

    def test_update_unknown_result(self, service):
        with pytest.raises(NotFoundError):
            service.update_match_status(999, "On Hold")

    def test_history_grouped_by_result_set(self, service, make_child, make_family):
        child = make_child()
        make_family()
        service.run_matching_now("child", child.id, persist=True)
        service.run_matching_now("child", child.id, persist=True)

        history = service.get_match_history("child", child.id)

        assert len(history["result_sets"]) == 1
        assert len(history["result_sets"][0]["results"]) == 1

    def test_results_reject_unknown_pivot_type(self, service):
        with pytest.raises(ValidationError):
            service.get_current_results("household", 1)


class TestBatchStatus:

    def test_idle_before_first_run(self, service):
        status = service.get_batch_status()

        assert status["status"] == "idle"
        assert status["is_running"] is False
        assert status["failures"] == {}
        assert "pending" not in status

    def test_includes_scheduler_flags(self, db, session_factory):
        recalc = Mock(pending=True, rerun_requested=False)
        BatchStateStore(session_factory).try_start()

        status = MatchingService(db, session_factory, recalc).get_batch_status()

        assert status["status"] == "running"
        assert status["pending"] is True
        assert status["rerun_requested"] is False


class TestTriggerRecalculation:

    def test_full_run_goes_through_scheduler(self, db, session_factory):
        recalc = Mock()
        recalc.request_recalculation.return_value = SCHEDULED

        result = MatchingService(db, session_factory, recalc).trigger_recalculation()

        assert result == {"scope": "full", "status": SCHEDULED}
        recalc.request_recalculation.assert_called_once_with()

    def test_full_run_without_scheduler_goes_to_worker(self, service):
        with patch.object(run_batch_recalculation, "send") as send:
            result = service.trigger_recalculation()

        send.assert_called_once_with()
        assert result == {"scope": "full", "status": "enqueued"}

    def test_pivot_scope_enqueues_actor(self, service):
        with patch.object(recalculate_pivot, "send") as send:
            result = service.trigger_recalculation("child", 12)

        args = send.call_args[0]
        assert args[:2] == ("child", 12)
        assert result["scope"] == "pivot"
        assert result["status"] == "enqueued"

    def test_pivot_type_without_id_rejected(self, service):
        with pytest.raises(ValidationError):
            service.trigger_recalculation("child", None)

    def test_unknown_pivot_type_rejected(self, service):
        with patch.object(recalculate_pivot, "send") as send:
            with pytest.raises(ValidationError):
                service.trigger_recalculation("household", 3)
        send.assert_not_called()
