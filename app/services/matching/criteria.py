"""
Criterion Evaluator

Pure scoring rules comparing one preference/requirement value with one
candidate value. Every rule returns a score in [0, 100] and an explanation;
rules never raise and never touch shared state.

Rule kinds:
- status: candidate value must be in the accepted set (hard eligibility)
- categorical: exact match, optional partial credit when the preference is flexible
- range: inside [min, max] scores 100, outside decays linearly to 0
- capability: candidate capability must be >= the requirement
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
import structlog

from app.config import settings
from app.services.matching.profiles import MatchPair, clean_str, to_float, to_int

logger = structlog.get_logger(__name__)

KIND_STATUS = "status"
KIND_CATEGORICAL = "categorical"
KIND_RANGE = "range"
KIND_CAPABILITY = "capability"

PRIORITY_HIGH = "High"
PRIORITY_MEDIUM = "Medium"
PRIORITY_LOW = "Low"

NO_PREFERENCE = "No Preference"
WEIGHT_TOTAL = 100


@dataclass(frozen=True)
class CriterionScore:
    """Result of evaluating one criterion."""
    score: float
    explanation: str
    flag: Optional[str] = None
    hard_flag: bool = False  # eligibility violation rather than a soft warning


@dataclass(frozen=True)
class ScoringRule:
    """How a criterion key is scored, shared by every match type."""
    kind: str
    label: str
    decay_per_unit: float = 0.0  # range rules: points lost per unit outside the range
    partial_credit: Optional[float] = None  # categorical rules: score for a flexible mismatch
    hard_flag: bool = False  # failures are eligibility violations


SCORING_RULES: Dict[str, ScoringRule] = {
    "license_status": ScoringRule(KIND_STATUS, "License status", hard_flag=True),
    "background_check": ScoringRule(KIND_STATUS, "Background check", hard_flag=True),
    "training_status": ScoringRule(KIND_STATUS, "Training", hard_flag=True),
    "capacity": ScoringRule(KIND_RANGE, "Capacity", decay_per_unit=50.0, hard_flag=True),
    "age": ScoringRule(KIND_RANGE, "Age", decay_per_unit=20.0),
    "gender": ScoringRule(KIND_CATEGORICAL, "Gender", partial_credit=60.0),
    "jurisdiction": ScoringRule(KIND_CATEGORICAL, "Jurisdiction"),
    "special_needs": ScoringRule(KIND_CAPABILITY, "Special needs"),
}


def explain(score: float) -> str:
    """Human readable tier for a criterion score."""
    if score >= 100:
        return "Perfect match - meets all criteria"
    elif score >= 80:
        return "Excellent match - very close to preferences"
    elif score >= 60:
        return "Good match - some differences from preference"
    elif score >= 40:
        return "Partial match - notable differences"
    elif score > 0:
        return "Low match - significant differences"
    return "Does not match preference"


def is_no_preference(value: Any) -> bool:
    """True when a preference value expresses no constraint."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset)):
        return all(is_no_preference(v) for v in value)
    return False


def format_range(bounds: Tuple[Optional[float], Optional[float]]) -> Optional[str]:
    low, high = bounds
    if low is not None and high is not None:
        return f"{low:g}-{high:g}"
    if low is not None:
        return f"{low:g}+"
    if high is not None:
        return f"up to {high:g}"
    return None


def _range_bounds(value: Any) -> Tuple[Optional[float], Optional[float]]:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        low, high = to_float(value[0]), to_float(value[1])
        if low is not None and high is not None and low > high:
            low, high = high, low
        return low, high
    return None, None


def _evaluate_status(rule: ScoringRule, accepted: Any, candidate_value: Any) -> CriterionScore:
    if isinstance(accepted, str):
        accepted = [accepted]
    accepted_norm = {a.strip().lower() for a in accepted if clean_str(a)}
    status = clean_str(candidate_value)

    if status is not None and status.lower() in accepted_norm:
        return CriterionScore(100.0, explain(100.0))
    return CriterionScore(
        0.0,
        explain(0.0),
        flag=f"{rule.label} not approved ({status or 'missing'})",
        hard_flag=True,
    )


def _evaluate_categorical(
    rule: ScoringRule,
    preference_value: Any,
    candidate_value: Any,
    flexible: bool
) -> CriterionScore:
    wanted = preference_value if isinstance(preference_value, (list, tuple, set)) else [preference_value]
    wanted_norm = {str(w).strip().lower() for w in wanted if clean_str(w)}
    actual = clean_str(candidate_value)

    if actual is None:
        return CriterionScore(0.0, explain(0.0), flag=f"Missing data: {rule.label.lower()}")
    if actual.lower() in wanted_norm:
        return CriterionScore(100.0, explain(100.0))
    if flexible and rule.partial_credit is not None:
        return CriterionScore(
            rule.partial_credit,
            f"Willing to consider - {explain(rule.partial_credit).lower()}",
        )
    return CriterionScore(0.0, explain(0.0))


def _evaluate_range(rule: ScoringRule, preference_value: Any, candidate_value: Any) -> CriterionScore:
    low, high = _range_bounds(preference_value)
    if low is None and high is None:
        return CriterionScore(100.0, NO_PREFERENCE)

    value = to_float(candidate_value)
    if value is None:
        return CriterionScore(0.0, explain(0.0), flag=f"Missing data: {rule.label.lower()}",
                              hard_flag=rule.hard_flag)

    gap = 0.0
    if low is not None and value < low:
        gap = low - value
    elif high is not None and value > high:
        gap = value - high

    score = max(0.0, 100.0 - rule.decay_per_unit * gap)
    flag = None
    if gap > 0 and rule.hard_flag:
        flag = f"{rule.label} exceeded (needs {format_range((low, high))}, has {value:g})"
    return CriterionScore(score, explain(score), flag=flag, hard_flag=flag is not None)


def _evaluate_capability(rule: ScoringRule, requirement: Any, capability: Any) -> CriterionScore:
    needed = to_int(requirement)
    if needed is None:
        return CriterionScore(100.0, NO_PREFERENCE)

    available = to_int(capability) or 0
    if available >= needed:
        return CriterionScore(100.0, explain(100.0))
    return CriterionScore(
        0.0,
        explain(0.0),
        flag=f"{rule.label} requirement not met (needs level {needed}, supports {available})",
    )


def evaluate(
    criterion_key: str,
    preference_value: Any,
    candidate_value: Any,
    flexible: bool = False
) -> CriterionScore:
    """
    Score one criterion.

    Args:
        criterion_key: Key into SCORING_RULES
        preference_value: Requirement / preference (None = no preference expressed)
        candidate_value: The candidate's attribute
        flexible: Preference allows partial credit ("willing to consider")

    Returns:
        CriterionScore with score in [0, 100]; never raises
    """
    rule = SCORING_RULES.get(criterion_key)
    if rule is None:
        logger.warning("unknown_criterion", criterion_key=criterion_key)
        return CriterionScore(100.0, NO_PREFERENCE)

    if is_no_preference(preference_value):
        return CriterionScore(100.0, NO_PREFERENCE)

    if rule.kind == KIND_STATUS:
        return _evaluate_status(rule, preference_value, candidate_value)
    if rule.kind == KIND_CATEGORICAL:
        return _evaluate_categorical(rule, preference_value, candidate_value, flexible)
    if rule.kind == KIND_RANGE:
        return _evaluate_range(rule, preference_value, candidate_value)
    return _evaluate_capability(rule, preference_value, candidate_value)


@dataclass(frozen=True)
class Criterion:
    """
    A weighted criterion within one match type.

    preference / candidate pull the compared values out of a MatchPair.
    Criteria with excludes_on_failure are hard eligibility gates: a failing
    candidate is still scored but left out of the ranking.
    """
    key: str
    name: str
    priority: str
    weight: float
    preference: Callable[[MatchPair], Any]
    candidate: Callable[[MatchPair], Any]
    flexible: Optional[Callable[[MatchPair], bool]] = None
    excludes_on_failure: bool = False

    @property
    def rule(self) -> ScoringRule:
        return SCORING_RULES[self.key]

    def evaluate(self, pair: MatchPair) -> Tuple[CriterionScore, Any, Any]:
        preference_value = self.preference(pair)
        candidate_value = self.candidate(pair)
        flexible = bool(self.flexible(pair)) if self.flexible else False
        return evaluate(self.key, preference_value, candidate_value, flexible), preference_value, candidate_value


def _eligibility_criteria(license_w: float, background_w: float, training_w: float, priority: str):
    return [
        Criterion(
            "license_status", "License Status", priority, license_w,
            preference=lambda p: settings.accepted_license_statuses,
            candidate=lambda p: p.family.license_status,
            excludes_on_failure=True,
        ),
        Criterion(
            "background_check", "Background Check", priority, background_w,
            preference=lambda p: settings.accepted_background_check_statuses,
            candidate=lambda p: p.family.background_check_status,
            excludes_on_failure=True,
        ),
        Criterion(
            "training_status", "Training Status", priority, training_w,
            preference=lambda p: settings.accepted_training_statuses,
            candidate=lambda p: p.family.training_status,
            excludes_on_failure=True,
        ),
    ]


# Child pivot -> family candidates
CHILD_TO_FAMILY_CRITERIA: Sequence[Criterion] = tuple(
    _eligibility_criteria(15, 15, 10, PRIORITY_HIGH) + [
        Criterion(
            "capacity", "Capacity", PRIORITY_HIGH, 15,
            preference=lambda p: (p.child.sibling_group_size, None),
            candidate=lambda p: p.family.capacity,
        ),
        Criterion(
            "age", "Age Range", PRIORITY_MEDIUM, 15,
            preference=lambda p: (p.family.age_min, p.family.age_max),
            candidate=lambda p: p.child.age,
        ),
        Criterion(
            "gender", "Gender", PRIORITY_MEDIUM, 10,
            preference=lambda p: p.family.preferred_gender,
            candidate=lambda p: p.child.gender,
            flexible=lambda p: p.family.gender_flexible,
        ),
        Criterion(
            "jurisdiction", "Jurisdiction", PRIORITY_MEDIUM, 10,
            preference=lambda p: p.child.preferred_jurisdiction,
            candidate=lambda p: p.family.jurisdiction,
        ),
        Criterion(
            "special_needs", "Special Needs", PRIORITY_LOW, 10,
            preference=lambda p: p.child.special_needs_level,
            candidate=lambda p: p.family.special_needs_level_supported,
        ),
    ]
)

# Preference pivot -> child candidates
PREFERENCE_TO_CHILD_CRITERIA: Sequence[Criterion] = tuple([
    Criterion(
        "age", "Age Range", PRIORITY_HIGH, 25,
        preference=lambda p: (p.family.age_min, p.family.age_max),
        candidate=lambda p: p.child.age,
    ),
    Criterion(
        "gender", "Gender", PRIORITY_HIGH, 15,
        preference=lambda p: p.family.preferred_gender,
        candidate=lambda p: p.child.gender,
        flexible=lambda p: p.family.gender_flexible,
    ),
    Criterion(
        "special_needs", "Special Needs", PRIORITY_HIGH, 20,
        preference=lambda p: p.child.special_needs_level,
        candidate=lambda p: p.family.special_needs_level_supported,
    ),
    Criterion(
        "capacity", "Capacity", PRIORITY_MEDIUM, 15,
        preference=lambda p: (p.child.sibling_group_size, None),
        candidate=lambda p: p.family.capacity,
    ),
    Criterion(
        "jurisdiction", "Jurisdiction", PRIORITY_MEDIUM, 15,
        preference=lambda p: p.family.preference_jurisdiction,
        candidate=lambda p: p.child.jurisdiction,
    ),
] + _eligibility_criteria(4, 3, 3, PRIORITY_LOW))

CRITERIA_BY_PIVOT_TYPE: Dict[str, Sequence[Criterion]] = {
    "child": CHILD_TO_FAMILY_CRITERIA,
    "preference": PREFERENCE_TO_CHILD_CRITERIA,
}

for _pivot_type, _criteria in CRITERIA_BY_PIVOT_TYPE.items():
    if sum(c.weight for c in _criteria) != WEIGHT_TOTAL:
        raise ValueError(f"Criterion weights for {_pivot_type} must sum to {WEIGHT_TOTAL}")
