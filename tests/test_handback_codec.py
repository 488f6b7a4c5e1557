import pytest

from plan_executor.core.errors import HandbackDecodeError
from plan_executor.core.handback.codec import (
    dump_record,
    load_outcome,
    load_validation_result,
    load_work_order,
    loads_outcome,
    loads_validation_result,
    loads_work_order,
    write_record,
)
from plan_executor.core.handback.validate_handback import validate_handback


def test_load_fixtures():
    wo = load_work_order("examples/work-order.yaml")
    assert wo.task_id == "task_F2"
    assert [r.path for r in wo.file_references] == ["src/payment.py", "tests/test_payment.py"]
    assert wo.file_references[1].description == ""

    outcome = load_outcome("examples/outcome-rejected.yaml")
    assert outcome.confidence == "low"
    assert outcome.test_results[0].failures[0].test_name == "test_declined_card"
    assert outcome.test_results[0].skipped == 0
    assert outcome.file_changes[0].content is None
    assert outcome.submitted_at == "2026-10-19T11:30:00+00:00"


def test_outcome_and_result_survive_encoding(tmp_path):
    wo = load_work_order("examples/work-order.yaml")
    outcome = load_outcome("examples/outcome-rejected.yaml")
    result = validate_handback(wo, outcome)

    assert loads_work_order(dump_record(wo)) == wo
    assert loads_outcome(dump_record(outcome)) == outcome
    assert loads_validation_result(dump_record(result)) == result

    out = tmp_path / "nested" / "result.yaml"
    write_record(result, str(out))
    assert load_validation_result(str(out)) == result


def test_unquoted_timestamp_is_kept_as_text():
    with open("examples/outcome-accepted.yaml", encoding="utf-8") as f:
        text = f.read().replace('"2026-10-19T10:15:00+00:00"', "2026-10-19T10:15:00+00:00")
    assert loads_outcome(text).submitted_at.startswith("2026-10-19T10:15:00")


@pytest.mark.parametrize(
    "text, path",
    [
        ("just a string", None),
        ("", None),
        ("id: [unterminated", None),
        ("- a\n- b\n", None),
    ],
)
def test_non_record_text_fails_loudly(text, path):
    with pytest.raises(HandbackDecodeError) as exc:
        loads_outcome(text)
    assert exc.value.code == "E_HANDBACK_DECODE"
    assert exc.value.file == "<outcome>"
    assert exc.value.path == path


def test_field_errors_name_the_path():
    with pytest.raises(HandbackDecodeError) as exc:
        load_outcome("examples/outcome-invalid.yaml")
    assert exc.value.path == "file_changes"
    assert exc.value.file == "examples/outcome-invalid.yaml"
    assert "expected list" in str(exc.value)


def test_enum_and_required_fields_are_checked():
    with pytest.raises(HandbackDecodeError) as exc:
        loads_work_order("id: WO-1\ntask_id: t\nfile_references:\n  - path: a.py\n    action: rename\n")
    assert exc.value.path == "file_references[0].action"

    with pytest.raises(HandbackDecodeError) as exc:
        loads_work_order("id: WO-1\n")
    assert exc.value.path == "task_id"
    assert "missing required field" in exc.value.message

    with pytest.raises(HandbackDecodeError) as exc:
        loads_validation_result("accepted: 'yes'\n")
    assert exc.value.path == "accepted"


def test_missing_file():
    with pytest.raises(HandbackDecodeError) as exc:
        load_outcome("examples/does-not-exist.yaml")
    assert exc.value.code == "E_FILE_NOT_FOUND"


def _accepted_text() -> str:
    with open("examples/outcome-accepted.yaml", encoding="utf-8") as f:
        return f.read()


_BLOCKER = "issues:\n  - type: blocker\n    title: Gateway sandbox is down\n"


def test_stored_status_must_match_reported_results():
    text = _accepted_text().replace("issues: []\n", _BLOCKER)
    with pytest.raises(HandbackDecodeError) as exc:
        loads_outcome(text)
    assert exc.value.path == "status"
    assert "'success'" in exc.value.message and "'blocked'" in exc.value.message


def test_status_is_derived_when_omitted():
    text = _accepted_text().replace("issues: []\n", _BLOCKER).replace("status: success\n", "")
    outcome = loads_outcome(text)
    assert outcome.status == "blocked"
    assert outcome.issues[0].severity == 3

    assert loads_outcome(_accepted_text().replace("status: success\n", "")).status == "success"


@pytest.mark.parametrize(
    "old, new, path",
    [
        ("passed: 12", "passed: -1", "test_results[0].passed"),
        ("total_tests: 12", "total_tests: -12", "test_results[0].total_tests"),
        ("lines_added: 40", "lines_added: -40", "file_changes[0].lines_added"),
        ("issues: []\n", _BLOCKER + "    severity: 9\n", "issues[0].severity"),
        ("issues: []\n", _BLOCKER + "    severity: 0\n", "issues[0].severity"),
    ],
)
def test_out_of_range_numbers_are_rejected(old, new, path):
    with pytest.raises(HandbackDecodeError) as exc:
        loads_outcome(_accepted_text().replace(old, new))
    assert exc.value.path == path


def test_unreadable_file(tmp_path):
    bad = tmp_path / "outcome.yaml"
    bad.write_bytes(b"id: \xff\xfe\n")
    with pytest.raises(HandbackDecodeError) as exc:
        load_outcome(str(bad))
    assert exc.value.code == "E_HANDBACK_DECODE"
    assert exc.value.file == str(bad)

    with pytest.raises(HandbackDecodeError) as exc:
        load_work_order(str(tmp_path))
    assert exc.value.code == "E_HANDBACK_DECODE"
