"""
Record-Change Observers

SQLAlchemy session events that turn matching-relevant changes to children,
families and preferences into one recalculation request per transaction.

During flush the changes are inspected and a marker is stored in
session.info; the request is made in after_commit, so rolled-back writes
never schedule anything and the write itself never runs matching inline.
"""

from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session
import structlog

from app.config import settings
from app.models import Child, Family, Preference

logger = structlog.get_logger(__name__)

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"

PENDING_KEY = "matching_recalculation_pending"

ENTITY_NAMES = {
    Child: "child",
    Family: "family",
    Preference: "preference",
}

# Attributes read by the criteria, the distance adjustment or the candidate pools
SCORING_FIELDS = {
    "child": frozenset({
        "age", "gender", "jurisdiction", "preferred_jurisdiction",
        "special_needs_level", "sibling_group_size", "latitude", "longitude",
    }),
    "family": frozenset({
        "license_status", "background_check_status", "training_status", "capacity",
        "special_needs_level_supported", "jurisdiction", "latitude", "longitude",
    }),
    "preference": frozenset({
        "family_id", "age_min", "age_max", "preferred_gender", "gender_flexible", "jurisdiction",
    }),
}


def _eligible_statuses(entity: str) -> Optional[Iterable[str]]:
    """Statuses gating pool membership, None for entities without a gate."""
    if entity == "child":
        return settings.eligible_pivot_statuses
    if entity == "preference":
        return settings.eligible_preference_statuses
    return None


def is_relevant_change(
    entity: str,
    operation: str,
    status: Optional[str] = None,
    changes: Optional[Dict[str, Tuple[Any, Any]]] = None
) -> bool:
    """
    Decide whether a record change can alter any match result.

    Args:
        entity: "child", "family" or "preference"
        operation: "insert", "update" or "delete"
        status: Current status of the record (before delete, after insert/update)
        changes: For updates, attribute -> (old, new)

    Returns:
        True when a recalculation should be requested
    """
    eligible = _eligible_statuses(entity)

    if operation in (INSERT, DELETE):
        return eligible is None or status in eligible

    changes = changes or {}
    if eligible is not None and "status" in changes:
        old, new = changes["status"]
        if (old in eligible) != (new in eligible):
            return True

    # Field edits on a record outside the pools change nothing
    if eligible is not None and status not in eligible:
        return False

    fields = SCORING_FIELDS.get(entity, frozenset())
    return any(key in fields and old != new for key, (old, new) in changes.items())


def collect_changes(obj) -> Dict[str, Tuple[Any, Any]]:
    """attribute -> (old, new) for every modified column attribute of a pending object."""
    state = inspect(obj)
    changes: Dict[str, Tuple[Any, Any]] = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        old = history.deleted[0] if history.deleted else None
        new = history.added[0] if history.added else None
        changes[attr.key] = (old, new)
    return changes


def _entity_name(obj) -> Optional[str]:
    return ENTITY_NAMES.get(type(obj))


def _status_of(obj) -> Optional[str]:
    """Record status, falling back to the column default for rows not yet inserted."""
    status = getattr(obj, "status", None)
    if status is None:
        column = obj.__table__.c.get("status")
        if column is not None and column.default is not None and column.default.is_scalar:
            status = column.default.arg
    return status


def _before_flush(session: Session, flush_context, instances) -> None:
    if session.info.get(PENDING_KEY):
        return

    for obj in session.new:
        entity = _entity_name(obj)
        if entity and is_relevant_change(entity, INSERT, status=_status_of(obj)):
            session.info[PENDING_KEY] = f"{entity}:{INSERT}"
            return

    for obj in session.deleted:
        entity = _entity_name(obj)
        if entity and is_relevant_change(entity, DELETE, status=_status_of(obj)):
            session.info[PENDING_KEY] = f"{entity}:{DELETE}"
            return

    for obj in session.dirty:
        entity = _entity_name(obj)
        if not entity or not session.is_modified(obj):
            continue
        changes = collect_changes(obj)
        if is_relevant_change(entity, UPDATE, status=_status_of(obj), changes=changes):
            session.info[PENDING_KEY] = f"{entity}:{UPDATE}"
            return


class RecordChangeObserver:
    """
    Registers the session listeners and forwards committed changes to on_change.

    Usage:
        observer = RecordChangeObserver(recalc.request_recalculation)
        observer.register()
    """

    def __init__(self, on_change: Callable[[], Any], target=Session):
        self.on_change = on_change
        self.target = target
        self.registered = False

    def register(self) -> None:
        if self.registered:
            return
        event.listen(self.target, "before_flush", _before_flush)
        event.listen(self.target, "after_commit", self._after_commit)
        event.listen(self.target, "after_rollback", self._after_rollback)
        self.registered = True
        logger.info("record_observers_registered")

    def unregister(self) -> None:
        if not self.registered:
            return
        event.remove(self.target, "before_flush", _before_flush)
        event.remove(self.target, "after_commit", self._after_commit)
        event.remove(self.target, "after_rollback", self._after_rollback)
        self.registered = False

    def _after_commit(self, session: Session) -> None:
        trigger = session.info.pop(PENDING_KEY, None)
        if not trigger:
            return
        try:
            result = self.on_change()
            logger.info("recalculation_requested", trigger=trigger, result=result)
        except Exception as e:
            # Write is already committed
            logger.error("recalculation_request_failed", trigger=trigger, error=str(e), exc_info=True)

    def _after_rollback(self, session: Session) -> None:
        session.info.pop(PENDING_KEY, None)
