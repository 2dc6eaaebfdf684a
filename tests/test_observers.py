"""
Tests for record-change observers

Tests cover:
- Relevance rules (pool membership, scoring fields)
- One request per committed transaction, none for rolled-back writes
"""

from unittest.mock import Mock

import pytest

from app.models import Child, Family, Preference
from app.services.recalculation.observers import (
    DELETE,
    INSERT,
    UPDATE,
    RecordChangeObserver,
    is_relevant_change,
)


class TestIsRelevantChange:

    def test_insert_of_eligible_child(self):
        assert is_relevant_change("child", INSERT, status="Needs Placement") is True

    def test_insert_of_placed_child(self):
        assert is_relevant_change("child", INSERT, status="Placed") is False

    def test_family_insert_and_delete_always_relevant(self):
        assert is_relevant_change("family", INSERT) is True
        assert is_relevant_change("family", DELETE) is True

    def test_delete_of_inactive_preference(self):
        assert is_relevant_change("preference", DELETE, status="Inactive") is False

    def test_status_leaving_pool(self):
        changes = {"status": ("Needs Placement", "Placed")}
        assert is_relevant_change("child", UPDATE, status="Placed", changes=changes) is True

    def test_status_entering_pool(self):
        changes = {"status": ("Inactive", "Active")}
        assert is_relevant_change("preference", UPDATE, status="Active", changes=changes) is True

    def test_status_change_within_pool(self):
        changes = {"status": ("Needs Placement", "Active")}
        assert is_relevant_change("child", UPDATE, status="Active", changes=changes) is False

    def test_scoring_field_change(self):
        changes = {"age": (7, 8)}
        assert is_relevant_change("child", UPDATE, status="Needs Placement", changes=changes) is True

    def test_non_scoring_field_change(self):
        changes = {"name": ("Ana", "Ana Maria")}
        assert is_relevant_change("child", UPDATE, status="Needs Placement", changes=changes) is False

    def test_field_change_outside_pool(self):
        changes = {"age": (7, 8)}
        assert is_relevant_change("child", UPDATE, status="Placed", changes=changes) is False

    def test_family_license_change(self):
        changes = {"license_status": ("Active", "Expired")}
        assert is_relevant_change("family", UPDATE, changes=changes) is True

    @pytest.mark.parametrize("field", ["city", "state", "name"])
    def test_family_display_fields(self, field):
        assert is_relevant_change("family", UPDATE, changes={field: ("a", "b")}) is False


@pytest.fixture
def on_change():
    return Mock(return_value="scheduled")


@pytest.fixture
def observed(session_factory, on_change):
    """Observer bound to the test sessionmaker; removed after the test."""
    observer = RecordChangeObserver(on_change, target=session_factory)
    observer.register()
    yield observer
    observer.unregister()


class TestRecordChangeObserver:

    def test_insert_requests_once_per_transaction(self, session_factory, on_change, observed):
        session = session_factory()
        session.add(Child(name="A", age=8))
        session.add(Child(name="B", age=9))
        session.add(Family(name="Rivera", capacity=1))
        session.commit()
        session.close()

        on_change.assert_called_once_with()

    def test_name_only_change_ignored(self, session_factory, on_change, make_child):
        child_id = make_child().id
        observer = RecordChangeObserver(on_change, target=session_factory)
        observer.register()
        try:
            session = session_factory()
            session.get(Child, child_id).name = "Renamed"
            session.commit()
            session.close()
        finally:
            observer.unregister()

        on_change.assert_not_called()

    def test_rollback_requests_nothing(self, session_factory, on_change, observed):
        session = session_factory()
        session.add(Child(name="A", age=8))
        session.flush()
        session.rollback()

        session.add(Child(name="Placed", status="Placed"))
        session.commit()
        session.close()

        on_change.assert_not_called()

    def test_status_within_pool_ignored(self, session_factory, on_change, make_child):
        child_id = make_child(status="Needs Placement").id
        observer = RecordChangeObserver(on_change, target=session_factory)
        observer.register()
        try:
            session = session_factory()
            session.get(Child, child_id).status = "Active"
            session.commit()
            session.close()
        finally:
            observer.unregister()

        on_change.assert_not_called()

    def test_placement_requests_recalculation(self, session_factory, on_change, make_child):
        child_id = make_child().id
        observer = RecordChangeObserver(on_change, target=session_factory)
        observer.register()
        try:
            session = session_factory()
            session.get(Child, child_id).status = "Placed"
            session.commit()
            session.close()
        finally:
            observer.unregister()

        on_change.assert_called_once_with()

    def test_preference_delete(self, session_factory, on_change, make_family, make_preference):
        preference_id = make_preference(make_family()).id
        observer = RecordChangeObserver(on_change, target=session_factory)
        observer.register()
        try:
            session = session_factory()
            session.delete(session.get(Preference, preference_id))
            session.commit()
            session.close()
        finally:
            observer.unregister()

        on_change.assert_called_once_with()

    def test_callback_failure_does_not_undo_commit(self, session_factory, on_change, observed, db):
        on_change.side_effect = RuntimeError("scheduler down")

        session = session_factory()
        session.add(Family(name="Rivera", capacity=1))
        session.commit()
        session.close()

        assert db.query(Family).filter(Family.name == "Rivera").count() == 1

    def test_unregister_stops_requests(self, session_factory, on_change):
        observer = RecordChangeObserver(on_change, target=session_factory)
        observer.register()
        observer.unregister()

        session = session_factory()
        session.add(Family(name="Rivera", capacity=1))
        session.commit()
        session.close()

        on_change.assert_not_called()
