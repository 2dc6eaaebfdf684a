"""
Matching Record Repository

Read access to children, families and preferences. Everything leaving this
module is a typed profile; ORM rows stay inside.
"""

from typing import Dict, List
from sqlalchemy import or_
from sqlalchemy.orm import Session
import structlog

from app.config import settings
from app.models import Child, Family, Preference
from app.services.matching.exceptions import NotFoundError
from app.services.matching.profiles import (
    PIVOT_CHILD,
    PIVOT_PREFERENCE,
    ChildProfile,
    FamilyProfile,
)

logger = structlog.get_logger(__name__)


class MatchingRepository:
    """
    Loads pivots and candidate pools for the matcher.

    Usage:
        repo = MatchingRepository(db)
        child = repo.get_child(42)
        families = repo.list_candidate_families()
    """

    def __init__(self, db: Session):
        self.db = db

    def get_child(self, child_id: int) -> ChildProfile:
        child = self.db.query(Child).filter(Child.id == child_id).first()
        if child is None:
            raise NotFoundError("Child", child_id)
        return ChildProfile.from_record(child)

    def get_family(self, family_id: int) -> FamilyProfile:
        family = self.db.query(Family).filter(Family.id == family_id).first()
        if family is None:
            raise NotFoundError("Family", family_id)
        return FamilyProfile.from_records(family, self._primary_preferences([family.id]).get(family.id))

    def get_preference(self, preference_id: int) -> FamilyProfile:
        """Load a preference together with its family."""
        preference = self.db.query(Preference).filter(Preference.id == preference_id).first()
        if preference is None:
            raise NotFoundError("Preference", preference_id)
        family = self.db.query(Family).filter(Family.id == preference.family_id).first()
        if family is None:
            raise NotFoundError("Family", preference.family_id)
        return FamilyProfile.from_records(family, preference)

    def list_candidate_families(self) -> List[FamilyProfile]:
        """
        Families worth scoring for a child pivot.

        Cheap pre-filter on license status only: terminal states are skipped,
        everything else is scored so hard-ineligible families stay visible.
        """
        excluded = settings.prefilter_excluded_license_statuses
        query = self.db.query(Family)
        if excluded:
            query = query.filter(or_(Family.license_status.is_(None), Family.license_status.notin_(excluded)))
        families = query.order_by(Family.id).all()

        preferences = self._primary_preferences([f.id for f in families])
        profiles = [FamilyProfile.from_records(f, preferences.get(f.id)) for f in families]

        logger.debug("candidate_families_loaded", count=len(profiles))
        return profiles

    def list_candidate_children(self) -> List[ChildProfile]:
        """Children currently eligible for placement."""
        children = self.db.query(Child).filter(
            Child.status.in_(settings.eligible_pivot_statuses)
        ).order_by(Child.id).all()

        logger.debug("candidate_children_loaded", count=len(children))
        return [ChildProfile.from_record(c) for c in children]

    def list_pivot_ids(self, pivot_type: str) -> List[int]:
        """Ids of all eligible pivots of one type, ascending."""
        if pivot_type == PIVOT_CHILD:
            rows = self.db.query(Child.id).filter(
                Child.status.in_(settings.eligible_pivot_statuses)
            ).order_by(Child.id).all()
        elif pivot_type == PIVOT_PREFERENCE:
            rows = self.db.query(Preference.id).filter(
                Preference.status.in_(settings.eligible_preference_statuses)
            ).order_by(Preference.id).all()
        else:
            raise ValueError(f"Unknown pivot type: {pivot_type}")
        return [row[0] for row in rows]

    def _primary_preferences(self, family_ids: List[int]) -> Dict[int, Preference]:
        """Most recently updated active preference per family."""
        if not family_ids:
            return {}

        preferences = self.db.query(Preference).filter(
            Preference.family_id.in_(family_ids),
            Preference.status.in_(settings.eligible_preference_statuses)
        ).order_by(Preference.family_id, Preference.updated_at.desc(), Preference.id.desc()).all()

        primary: Dict[int, Preference] = {}
        for preference in preferences:
            primary.setdefault(preference.family_id, preference)
        return primary
