from plan_executor.core.io.load_plan import load_plan
from plan_executor.core.lint.lint_plan import lint_plan


def _codes(errors):
    return [(e.code, e.path) for e in errors]


def test_basic_plan_is_clean():
    assert lint_plan(load_plan("examples/basic-plan.yaml")) == []


def test_cycle_and_missing_criteria():
    errors = lint_plan(load_plan("examples/cyclic-plan.yaml"))
    codes = _codes(errors)
    assert ("L_CYCLE_DETECTED", "features[0]") in codes
    assert [c for c, _ in codes].count("L_FEATURE_NO_CRITERIA") == 3
    cycle = next(e for e in errors if e.code == "L_CYCLE_DETECTED")
    assert "A -> B -> A" in cycle.message


def test_dangling_references():
    codes = _codes(lint_plan(load_plan("examples/dangling-link-plan.yaml")))
    assert ("L_UNKNOWN_LINK_TARGET", "links[0].target") in codes
    assert ("L_UNKNOWN_FEATURE_REFERENCE", "success_criteria[0].related_feature_ids[0]") in codes


def test_duplicate_ids():
    codes = _codes(lint_plan(load_plan("examples/invalid-duplicate-id.yaml")))
    assert codes == [("L_DUPLICATE_ID", "features[1].id")]


def test_self_link():
    raw = {
        "features": [{"id": "F1", "acceptance_criteria": ["x"]}],
        "links": [{"id": "L1", "source": "F1", "target": "F1", "type": "requires"}],
    }
    codes = [c for c, _ in _codes(lint_plan(raw))]
    assert "L_SELF_LINK" in codes
    assert "L_CYCLE_DETECTED" in codes


def test_best_effort_on_bad_shapes():
    assert lint_plan({"features": "nope", "links": [1, 2]}) == []


def test_broken_rule_is_skipped(monkeypatch):
    def boom(idx):
        raise RuntimeError("rule exploded")

    monkeypatch.setattr("plan_executor.core.lint.lint_plan._rule_self_links", boom)
    raw = {
        "features": [{"id": "F1", "acceptance_criteria": []}],
        "links": [{"id": "L1", "source": "F1", "target": "F1", "type": "requires"}],
    }
    codes = [c for c, _ in _codes(lint_plan(raw))]
    assert "L_SELF_LINK" not in codes
    assert "L_FEATURE_NO_CRITERIA" in codes
