"""
Typed Matching Profiles

Boundary structures for the scoring core. ORM rows and loosely-typed
attribute maps (e.g. record-change payloads) are coerced here exactly once;
scoring code only ever sees these frozen dataclasses.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

PIVOT_CHILD = "child"
PIVOT_PREFERENCE = "preference"
PIVOT_TYPES = (PIVOT_CHILD, PIVOT_PREFERENCE)


def _get(record: Any, key: str, default: Any = None) -> Any:
    if record is None:
        return default
    if isinstance(record, Mapping):
        return record.get(key, default)
    return getattr(record, key, default)


def to_int(value: Any) -> Optional[int]:
    """Coerce to int; None for missing or unparsable values."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def to_float(value: Any) -> Optional[float]:
    """Coerce to float; None for missing or unparsable values."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def clean_str(value: Any) -> Optional[str]:
    """Strip strings; empty strings become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ChildProfile:
    id: int
    name: str
    status: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    jurisdiction: Optional[str] = None
    preferred_jurisdiction: Optional[str] = None
    special_needs_level: int = 0
    sibling_group_size: int = 1
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_record(cls, record: Union[Mapping, Any]) -> "ChildProfile":
        return cls(
            id=to_int(_get(record, "id")),
            name=clean_str(_get(record, "name")) or "",
            status=clean_str(_get(record, "status")),
            age=to_int(_get(record, "age")),
            gender=clean_str(_get(record, "gender")),
            jurisdiction=clean_str(_get(record, "jurisdiction")),
            preferred_jurisdiction=clean_str(_get(record, "preferred_jurisdiction")),
            special_needs_level=max(to_int(_get(record, "special_needs_level")) or 0, 0),
            sibling_group_size=max(to_int(_get(record, "sibling_group_size")) or 1, 1),
            latitude=to_float(_get(record, "latitude")),
            longitude=to_float(_get(record, "longitude")),
        )


@dataclass(frozen=True)
class FamilyProfile:
    """
    A family together with the preference it is being matched on.

    Preference fields are None when the family has no active preference,
    which scores as "no preference expressed".
    """
    id: int
    name: str
    license_status: Optional[str] = None
    background_check_status: Optional[str] = None
    training_status: Optional[str] = None
    capacity: int = 0
    special_needs_level_supported: int = 0
    jurisdiction: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    preference_id: Optional[int] = None
    preference_status: Optional[str] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    preferred_gender: Optional[str] = None
    gender_flexible: bool = False
    preference_jurisdiction: Optional[str] = None

    @classmethod
    def from_records(
        cls,
        family: Union[Mapping, Any],
        preference: Optional[Union[Mapping, Any]] = None
    ) -> "FamilyProfile":
        return cls(
            id=to_int(_get(family, "id")),
            name=clean_str(_get(family, "name")) or "",
            license_status=clean_str(_get(family, "license_status")),
            background_check_status=clean_str(_get(family, "background_check_status")),
            training_status=clean_str(_get(family, "training_status")),
            capacity=max(to_int(_get(family, "capacity")) or 0, 0),
            special_needs_level_supported=max(to_int(_get(family, "special_needs_level_supported")) or 0, 0),
            jurisdiction=clean_str(_get(family, "jurisdiction")),
            city=clean_str(_get(family, "city")),
            state=clean_str(_get(family, "state")),
            latitude=to_float(_get(family, "latitude")),
            longitude=to_float(_get(family, "longitude")),
            preference_id=to_int(_get(preference, "id")),
            preference_status=clean_str(_get(preference, "status")),
            age_min=to_int(_get(preference, "age_min")),
            age_max=to_int(_get(preference, "age_max")),
            preferred_gender=clean_str(_get(preference, "preferred_gender")),
            gender_flexible=bool(_get(preference, "gender_flexible", False)),
            preference_jurisdiction=clean_str(_get(preference, "jurisdiction")),
        )

    @property
    def location(self) -> Optional[str]:
        parts = [p for p in (self.city, self.state) if p]
        return ", ".join(parts) or None


@dataclass(frozen=True)
class MatchPair:
    """The child and family sides of one pairing, independent of direction."""
    child: ChildProfile
    family: FamilyProfile
