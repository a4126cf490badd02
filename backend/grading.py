"""Weighted scoring for presentation grading.

Every view that shows a score (slot detail, host listing, booking history)
goes through these functions so they always agree.

Criteria a sheet does not mention are left out of both the weighted sum and
the weight base, so a sheet grading only two of four criteria is scored as a
percentage of those two weights. Rounding is half-up on exact integer
arithmetic.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

DEFAULT_GRADING_CRITERIA: List[Dict[str, object]] = [
    {"name": "Content", "weight": 30},
    {"name": "Delivery", "weight": 30},
    {"name": "Visual Aids", "weight": 20},
    {"name": "Q&A", "weight": 20},
]

MIN_GRADE = 0
MAX_GRADE = 100
REQUIRED_WEIGHT_TOTAL = 100


def _criterion_field(criterion, field: str):
    if isinstance(criterion, Mapping):
        return criterion.get(field)
    return getattr(criterion, field, None)


def normalize_criteria(criteria: Optional[Iterable]) -> List[Dict[str, object]]:
    items = []
    for criterion in criteria or []:
        items.append({
            "name": str(_criterion_field(criterion, "name") or "").strip(),
            "weight": _criterion_field(criterion, "weight"),
        })
    return items


def resolve_criteria(custom: bool, criteria: Optional[Iterable]) -> List[Dict[str, object]]:
    if custom:
        return normalize_criteria(criteria)
    return [dict(item) for item in DEFAULT_GRADING_CRITERIA]


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def _weighted(grades: Mapping[str, int], criteria: Sequence) -> int:
    numerator = 0
    denominator = 0
    for criterion in criteria:
        name = _criterion_field(criterion, "name")
        if name not in grades:
            continue
        weight = int(_criterion_field(criterion, "weight") or 0)
        numerator += int(grades[name]) * weight
        denominator += weight
    if denominator <= 0:
        return 0
    return round_half_up(numerator, denominator)


def team_score(grades: Optional[Mapping[str, int]], criteria: Sequence) -> int:
    return _weighted(grades or {}, criteria)


def individual_score(
    email: str,
    individual_grades: Optional[Mapping[str, Mapping[str, int]]],
    criteria: Sequence,
) -> int:
    sheet = (individual_grades or {}).get(str(email or "").strip().lower())
    if not sheet:
        return 0
    return _weighted(sheet, criteria)


def member_scores(
    member_emails: Iterable[str],
    individual_grades: Optional[Mapping[str, Mapping[str, int]]],
    criteria: Sequence,
) -> Dict[str, int]:
    return {email: individual_score(email, individual_grades, criteria) for email in member_emails}


def validate_criteria(criteria: Optional[Iterable], custom: bool) -> Dict[str, str]:
    if not custom:
        return {}
    items = normalize_criteria(criteria)
    errors: Dict[str, str] = {}
    if not items:
        errors["grading_criteria"] = "Custom grading needs at least one criterion"
        return errors
    if any(not item["name"] for item in items):
        errors["grading_criteria.names"] = "All grading criteria must have names"
    names = [item["name"] for item in items if item["name"]]
    if len(set(names)) != len(names):
        errors["grading_criteria.duplicates"] = "Grading criteria names must be unique"
    weights = [item["weight"] for item in items]
    if any(not _is_int(weight) or weight < 0 for weight in weights):
        errors["grading_criteria.weights"] = "Criterion weights must be non-negative integers"
    else:
        total = sum(weights)
        if total != REQUIRED_WEIGHT_TOTAL:
            errors["grading_criteria"] = f"Grading criteria weights must sum to 100%. Current total: {total}%"
    return errors


def _sheet_errors(prefix: str, sheet, known: set) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not isinstance(sheet, Mapping):
        errors[prefix] = "Grades must be a mapping of criterion to score"
        return errors
    for name, value in sheet.items():
        key = f"{prefix}.{name}"
        if name not in known:
            errors[key] = f"Unknown criterion '{name}'"
        elif not _is_int(value):
            errors[key] = "Grade must be an integer"
        elif value < MIN_GRADE or value > MAX_GRADE:
            errors[key] = f"Grade must be between {MIN_GRADE} and {MAX_GRADE}"
    return errors


def validate_grade_sheet(
    grades,
    individual_grades,
    criteria: Sequence,
    member_emails: Iterable[str],
) -> Dict[str, str]:
    known = {_criterion_field(criterion, "name") for criterion in criteria}
    errors = _sheet_errors("grades", grades, known)
    if individual_grades is None:
        return errors
    if not isinstance(individual_grades, Mapping):
        errors["individual_grades"] = "Individual grades must be keyed by participant email"
        return errors
    members = {str(email).strip().lower() for email in member_emails}
    seen = set()
    for email, sheet in individual_grades.items():
        normalized = str(email or "").strip().lower()
        prefix = f"individual_grades.{email}"
        if normalized not in members:
            errors[prefix] = "Not a participant of this booking"
            continue
        if normalized in seen:
            errors[prefix] = "Listed more than once"
            continue
        seen.add(normalized)
        errors.update(_sheet_errors(prefix, sheet, known))
    return errors
