from plan_executor.core.io.load_plan import load_plan
from plan_executor.core.validate.validate_plan import summarize_plan, validate_plan


def test_validate_happy_path():
    plan, errors = validate_plan(load_plan("examples/basic-plan.yaml"))
    assert errors == []
    assert plan is not None
    assert plan.metadata.id == "PLAN-CHECKOUT"
    assert [f.id for f in plan.features] == ["F1", "F2", "F3"]
    assert plan.feature("F2").acceptance_criteria == ["Card payment succeeds", "Declined card shows an error"]
    assert plan.developer_stories[0].estimated_hours == 6
    assert plan.success_criteria[0].testable is True


def test_metadata_defaults_from_overview():
    plan, errors = validate_plan(load_plan("examples/dangling-link-plan.yaml"))
    assert errors == []
    assert plan.metadata.id == "Dangling link"
    assert plan.metadata.version == 1


def test_dangling_links_are_not_validation_errors():
    plan, errors = validate_plan(load_plan("examples/dangling-link-plan.yaml"))
    assert errors == []
    assert plan.links[0].target == "F9"


def test_validate_missing_required_field():
    plan, errors = validate_plan(load_plan("examples/invalid-missing-field.yaml"))
    assert plan is None
    by_path = {e.path: e.code for e in errors}
    assert by_path["features[0].name"] == "E_REQUIRED_FIELD"
    assert by_path["features[0].priority"] == "E_INVALID_ENUM"


def test_validate_duplicate_id():
    plan, errors = validate_plan(load_plan("examples/invalid-duplicate-id.yaml"))
    assert plan is None
    assert [(e.code, e.path) for e in errors] == [("E_DUPLICATE_ID", "features[1].id")]


def test_validate_bad_types():
    raw = {
        "__file__": "inline.yaml",
        "schema_version": "0.1.0",
        "overview": {"name": "X", "goals": "ship"},
        "features": [{"id": "F1", "name": "One", "priority": "low", "order": "first"}],
        "links": [{"source": "F1", "target": "F1", "type": "depends"}],
        "success_criteria": [{"id": "S1", "description": "d", "testable": "yes"}],
    }
    plan, errors = validate_plan(raw)
    assert plan is None
    codes = {(e.path, e.code) for e in errors}
    assert ("overview.goals", "E_INVALID_TYPE") in codes
    assert ("features[0].order", "E_INVALID_TYPE") in codes
    assert ("links[0].type", "E_INVALID_ENUM") in codes
    assert ("success_criteria[0].testable", "E_INVALID_TYPE") in codes
    assert all(e.file == "inline.yaml" for e in errors)


def test_features_are_required():
    plan, errors = validate_plan({"schema_version": "0.1.0", "overview": {"name": "X"}})
    assert plan is None
    assert [(e.path, e.code) for e in errors] == [("features", "E_REQUIRED_FIELD")]


def test_summarize_plan():
    plan, _ = validate_plan(load_plan("examples/basic-plan.yaml"))
    text = summarize_plan(plan)
    assert text.startswith("OK: 3 features (critical=1, high=1, medium=0, low=1)")
    assert "Links: 3 (2 requires)" in text
    assert "Stories: 1 user, 1 developer" in text
