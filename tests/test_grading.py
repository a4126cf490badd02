from grading import (
    DEFAULT_GRADING_CRITERIA,
    individual_score,
    member_scores,
    resolve_criteria,
    round_half_up,
    team_score,
    validate_criteria,
    validate_grade_sheet,
)


def test_default_criteria_team_score():
    grades = {"Content": 80, "Delivery": 90, "Visual Aids": 70, "Q&A": 60}
    assert team_score(grades, DEFAULT_GRADING_CRITERIA) == 77


def test_score_ignores_key_order():
    grades = {"Q&A": 60, "Visual Aids": 70, "Delivery": 90, "Content": 80}
    reordered = list(reversed(DEFAULT_GRADING_CRITERIA))
    assert team_score(grades, reordered) == team_score(grades, DEFAULT_GRADING_CRITERIA) == 77


def test_missing_criteria_leave_the_weight_base():
    # (80*30 + 65*20) / 50 = 74
    assert team_score({"Content": 80, "Q&A": 65}, DEFAULT_GRADING_CRITERIA) == 74


def test_rounds_half_up():
    criteria = [{"name": "A", "weight": 50}, {"name": "B", "weight": 50}]
    assert team_score({"A": 70, "B": 71}, criteria) == 71
    assert round_half_up(5, 2) == 3
    assert round_half_up(149, 100) == 1


def test_empty_sheet_scores_zero():
    assert team_score({}, DEFAULT_GRADING_CRITERIA) == 0
    assert team_score(None, DEFAULT_GRADING_CRITERIA) == 0
    assert team_score({"Unknown": 90}, DEFAULT_GRADING_CRITERIA) == 0


def test_individual_scores():
    individual = {"alice@campus.edu": {"Content": 100, "Delivery": 50}}
    assert individual_score("Alice@Campus.edu", individual, DEFAULT_GRADING_CRITERIA) == 75
    assert individual_score("bob@campus.edu", individual, DEFAULT_GRADING_CRITERIA) == 0
    assert member_scores(["alice@campus.edu", "bob@campus.edu"], individual, DEFAULT_GRADING_CRITERIA) == {
        "alice@campus.edu": 75,
        "bob@campus.edu": 0,
    }


def test_resolve_criteria_defaults_when_not_custom():
    assert resolve_criteria(False, [{"name": "Only", "weight": 100}]) == DEFAULT_GRADING_CRITERIA
    assert resolve_criteria(True, [{"name": " Only ", "weight": 100}]) == [{"name": "Only", "weight": 100}]


def test_validate_criteria_reports_sum():
    errors = validate_criteria([{"name": "Content", "weight": 60}, {"name": "Delivery", "weight": 30}], True)
    assert errors == {"grading_criteria": "Grading criteria weights must sum to 100%. Current total: 90%"}


def test_validate_criteria_names_and_weights():
    errors = validate_criteria(
        [{"name": "", "weight": 50}, {"name": "Content", "weight": -10}, {"name": "Content", "weight": 60}],
        True,
    )
    assert "grading_criteria.names" in errors
    assert "grading_criteria.duplicates" in errors
    assert "grading_criteria.weights" in errors


def test_validate_criteria_skipped_without_custom():
    assert validate_criteria(None, False) == {}
    assert "grading_criteria" in validate_criteria([], True)


def test_grade_sheet_collects_every_problem():
    errors = validate_grade_sheet(
        {"Content": 101, "Delivery": 88.5, "Style": 50, "Q&A": True},
        {"alice@campus.edu": {"Content": -1}, "mallory@campus.edu": {"Content": 50}},
        DEFAULT_GRADING_CRITERIA,
        ["alice@campus.edu"],
    )
    assert set(errors) == {
        "grades.Content",
        "grades.Delivery",
        "grades.Style",
        "grades.Q&A",
        "individual_grades.alice@campus.edu.Content",
        "individual_grades.mallory@campus.edu",
    }


def test_grade_sheet_accepts_valid_values():
    assert validate_grade_sheet(
        {"Content": 0, "Delivery": 100},
        {"ALICE@campus.edu": {"Content": 40}},
        DEFAULT_GRADING_CRITERIA,
        ["alice@campus.edu"],
    ) == {}


def test_grade_sheet_rejects_case_variant_duplicates():
    errors = validate_grade_sheet(
        {"Content": 70},
        {"alice@campus.edu": {"Content": 10}, "ALICE@campus.edu": {"Content": 90}},
        DEFAULT_GRADING_CRITERIA,
        ["alice@campus.edu"],
    )
    assert errors == {"individual_grades.ALICE@campus.edu": "Listed more than once"}
