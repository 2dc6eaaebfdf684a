"""
Tests for MatchResultStore

Tests cover:
- Write-new-then-flip replacement of the current set
- Later calculated_at wins; stale sets are discarded
- Overlapping writers leave exactly one current set
- Retiring the current set of a pivot that left the pool
- Caseworker status carry-over
- Status update validation (no side effects on failure)
- History pruning and summary statistics
"""

from datetime import datetime, timedelta
import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database import Base
from app.models import MatchResult
from app.services.matching import MatchResultStore, NotFoundError, ValidationError, summarize
from app.services.matching.aggregator import ScoredMatch


def scored(candidate_id, score, rank=None, eligible=True, distance=12.0):
    return ScoredMatch(
        pivot_type="child",
        pivot_id=1,
        candidate_id=candidate_id,
        child_id=1,
        family_id=candidate_id,
        preference_id=None,
        candidate_name=f"Family {candidate_id}",
        overall_score=score,
        weighted_score=score,
        distance_miles=distance,
        distance_delta=0,
        detailed_scores={"age": {"score": 100.0}},
        match_reasons=["Age Range: Perfect match - meets all criteria"],
        hard_flags=[],
        soft_flags=[],
        is_eligible=eligible,
        rank=rank,
    )


@pytest.fixture
def store(db):
    return MatchResultStore(db)


class TestUpsert:

    def test_replaces_current_set(self, db, store):
        store.upsert_results("child", 1, [scored(10, 90.0, 1), scored(11, 80.0, 2)])
        db.commit()
        store.upsert_results("child", 1, [scored(12, 95.0, 1)])
        db.commit()

        current = store.get_current_results("child", 1)
        assert [r.candidate_id for r in current] == [12]

        all_rows = db.query(MatchResult).filter(MatchResult.pivot_id == 1).all()
        assert len(all_rows) == 3
        assert sum(1 for r in all_rows if r.is_current) == 1
        assert len({r.result_set_id for r in all_rows}) == 2

    def test_other_pivots_untouched(self, db, store):
        store.upsert_results("child", 1, [scored(10, 90.0, 1)])
        store.upsert_results("child", 2, [scored(10, 70.0, 1)])
        db.commit()
        store.upsert_results("child", 1, [])
        db.commit()

        assert store.get_current_results("child", 1) == []
        assert len(store.get_current_results("child", 2)) == 1

    def test_stale_set_discarded(self, db, store):
        now = datetime.utcnow()
        store.upsert_results("child", 1, [scored(10, 90.0, 1)], calculated_at=now)
        db.commit()

        written = store.upsert_results("child", 1, [scored(11, 99.0, 1)], calculated_at=now - timedelta(minutes=5))
        db.commit()

        assert written == []
        assert [r.candidate_id for r in store.get_current_results("child", 1)] == [10]

    def test_excluded_rows_follow_ranked_rows(self, db, store):
        store.upsert_results("child", 1, [
            scored(10, 60.0, 2),
            scored(11, 99.0, None, eligible=False),
            scored(12, 90.0, 1),
        ])
        db.commit()

        current = store.get_current_results("child", 1)
        assert [r.candidate_id for r in current] == [12, 10, 11]
        assert current[-1].rank is None

    def test_caseworker_status_carried_over(self, db, store):
        rows = store.upsert_results("child", 1, [scored(10, 90.0, 1), scored(11, 80.0, 2)])
        db.commit()
        store.update_result_status(rows[0].id, "Recommended", notes="Call Tuesday")
        db.commit()

        store.upsert_results("child", 1, [scored(10, 85.0, 1), scored(11, 82.0, 2)])
        db.commit()

        by_candidate = {r.candidate_id: r for r in store.get_current_results("child", 1)}
        assert by_candidate[10].status == "Recommended"
        assert by_candidate[10].notes == "Call Tuesday"
        assert by_candidate[11].status == "Pending"

    def test_history_lists_superseded_rows(self, db, store):
        store.upsert_results("child", 1, [scored(10, 90.0, 1)])
        db.commit()
        store.upsert_results("child", 1, [scored(11, 95.0, 1)])
        db.commit()

        history = store.get_history("child", 1)
        assert [r.candidate_id for r in history] == [10]
        assert history[0].is_current is False


class TestStatusUpdate:

    @pytest.fixture
    def result_id(self, db, store):
        rows = store.upsert_results("child", 1, [scored(10, 90.0, 1)])
        db.commit()
        return rows[0].id

    def test_not_suitable_requires_reason(self, db, store, result_id):
        with pytest.raises(ValidationError):
            store.update_result_status(result_id, "Not Suitable", reason_if_not_suitable="   ")

        row = db.get(MatchResult, result_id)
        assert row.status == "Pending"
        assert row.status_updated_at is None

    def test_not_suitable_with_reason(self, store, result_id):
        row = store.update_result_status(result_id, "Not Suitable", reason_if_not_suitable=" Too far ")

        assert row.status == "Not Suitable"
        assert row.not_suitable_reason == "Too far"
        assert row.status_updated_at is not None

    def test_unknown_status_rejected(self, store, result_id):
        with pytest.raises(ValidationError):
            store.update_result_status(result_id, "Approved")

    def test_unknown_result_id(self, store):
        with pytest.raises(NotFoundError):
            store.update_result_status(12345, "On Hold")

    def test_validation_happens_before_lookup(self, store):
        with pytest.raises(ValidationError):
            store.update_result_status(12345, "Not Suitable")


class TestPruneHistory:

    def test_deletes_only_old_superseded_rows(self, db, store):
        old = datetime.utcnow() - timedelta(days=120)
        store.upsert_results("child", 1, [scored(10, 90.0, 1)], calculated_at=old)
        db.commit()
        store.upsert_results("child", 1, [scored(11, 90.0, 1)], calculated_at=old + timedelta(days=1))
        db.commit()
        store.upsert_results("child", 1, [scored(12, 90.0, 1)])
        db.commit()

        deleted = store.prune_history(retention_days=90)
        db.commit()

        assert deleted == 2
        assert [r.candidate_id for r in store.get_current_results("child", 1)] == [12]


class TestSummarize:

    def test_empty(self):
        assert summarize([]) == {
            "total_matches": 0, "average_score": 0.0, "top_score": 0.0, "average_distance": None
        }

    def test_statistics(self):
        summary = summarize([
            {"overall_score": 90.0, "distance_miles": 10.0},
            {"overall_score": 70.0, "distance_miles": None},
            {"overall_score": 80.0, "distance_miles": 20.0},
        ])
        assert summary == {
            "total_matches": 3, "average_score": 80.0, "top_score": 90.0, "average_distance": 15.0
        }


class TestOverlappingWriters:
    """Two sessions replacing the same pivot's set at the same time."""

    @pytest.fixture
    def file_session_factory(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'results.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(engine)
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
        engine.dispose()

    def _write_while_other_open(self, session_factory, first_at, second_at):
        seed = session_factory()
        MatchResultStore(seed).upsert_results("child", 1, [scored(10, 70.0, 1)], calculated_at=first_at - timedelta(minutes=1))
        seed.commit()
        seed.close()

        writer_a = session_factory()
        MatchResultStore(writer_a).upsert_results("child", 1, [scored(11, 80.0, 1)], calculated_at=first_at)

        errors = []

        def write_b():
            writer_b = session_factory()
            try:
                MatchResultStore(writer_b).upsert_results("child", 1, [scored(12, 90.0, 1)], calculated_at=second_at)
                writer_b.commit()
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)
            finally:
                writer_b.close()

        thread = threading.Thread(target=write_b)
        thread.start()
        time.sleep(0.3)  # writer B is now waiting on the pivot lock
        writer_a.commit()
        writer_a.close()
        thread.join(timeout=30)

        assert errors == []
        reader = session_factory()
        try:
            return MatchResultStore(reader).get_current_results("child", 1)
        finally:
            reader.close()

    def test_later_writer_replaces_committed_overlap(self, file_session_factory):
        now = datetime.utcnow()

        current = self._write_while_other_open(file_session_factory, now, now + timedelta(seconds=5))

        assert [r.candidate_id for r in current] == [12]
        assert len({r.result_set_id for r in current}) == 1
        assert sum(1 for r in current if r.rank == 1) == 1

    def test_older_writer_discarded_after_overlap(self, file_session_factory):
        now = datetime.utcnow()

        current = self._write_while_other_open(file_session_factory, now, now - timedelta(seconds=5))

        assert [r.candidate_id for r in current] == [11]


class TestRetireCurrent:

    def test_retire_flips_current_set(self, db, store):
        store.upsert_results("child", 1, [scored(10, 90.0, 1), scored(11, 80.0, 2)])
        db.commit()

        retired = store.retire_current("child", 1)
        db.commit()

        assert retired == 2
        assert store.get_current_results("child", 1) == []
        assert len(store.get_history("child", 1)) == 2

    def test_retire_keeps_sets_written_after_cutoff(self, db, store):
        cutoff = datetime.utcnow()
        store.upsert_results("child", 1, [scored(10, 90.0, 1)], calculated_at=cutoff + timedelta(seconds=1))
        db.commit()

        assert store.retire_current("child", 1, calculated_before=cutoff) == 0
        assert len(store.get_current_results("child", 1)) == 1

    def test_current_pivot_ids(self, db, store):
        store.upsert_results("child", 3, [scored(10, 90.0, 1)])
        store.upsert_results("child", 1, [scored(10, 90.0, 1)])
        store.upsert_results("preference", 7, [scored(10, 90.0, 1)])
        db.commit()

        assert store.current_pivot_ids("child") == [1, 3]
