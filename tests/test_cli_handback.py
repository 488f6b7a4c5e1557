import json

from typer.testing import CliRunner

from plan_executor.cli import app
from plan_executor.core.handback.codec import load_validation_result


runner = CliRunner()


def test_cli_handback_accepted(tmp_path):
    out = tmp_path / "result.yaml"
    r = runner.invoke(
        app,
        [
            "handback",
            "examples/work-order.yaml",
            "examples/outcome-accepted.yaml",
            "--out",
            str(out),
        ],
    )
    assert r.exit_code == 0, r.stdout + r.stderr
    assert "ACCEPTED; 6 passed, 0 failed, 0 warnings, 0 skipped" in r.stdout
    assert "Suggested status: done" in r.stdout
    assert load_validation_result(str(out)).accepted is True


def test_cli_handback_rejected():
    r = runner.invoke(app, ["handback", "examples/work-order.yaml", "examples/outcome-rejected.yaml"])
    assert r.exit_code == 2
    assert "REJECTED; 0 passed, 4 failed, 2 warnings, 0 skipped; 2 scope violation(s)" in r.stdout
    assert "out_of_scope_file: src/checkout.py" in r.stdout
    assert "missing_file: tests/test_payment.py" in r.stdout
    assert "Suggested status: in_progress" in r.stdout


def test_cli_handback_policy_file_json():
    r = runner.invoke(
        app,
        [
            "handback",
            "examples/work-order.yaml",
            "examples/outcome-rejected.yaml",
            "--policy-file",
            "examples/handback-policy.yaml",
            "--format",
            "json",
        ],
    )
    assert r.exit_code == 2
    payload = json.loads(r.stdout)
    assert payload["command"] == "handback"
    assert payload["accepted"] is False
    results = {c["name"]: c["result"] for c in payload["checks"]}
    assert results["Scope Compliance"] == "warning"
    assert results["Test Coverage"] == "pass"
    assert results["Time Budget"] == "warning"
    assert results["Tests Pass"] == "fail"


def test_cli_handback_invalid_outcome():
    r = runner.invoke(app, ["handback", "examples/work-order.yaml", "examples/outcome-invalid.yaml"])
    assert r.exit_code == 1
    assert "examples/outcome-invalid.yaml:file_changes: E_HANDBACK_DECODE" in r.stderr


def test_cli_handback_missing_policy_file():
    r = runner.invoke(
        app,
        [
            "handback",
            "examples/work-order.yaml",
            "examples/outcome-accepted.yaml",
            "--policy-file",
            "examples/nope.yaml",
        ],
    )
    assert r.exit_code == 1
    assert "E_POLICY_FILE_NOT_FOUND" in r.stderr


def test_cli_handback_status_contradicting_results(tmp_path):
    with open("examples/outcome-accepted.yaml", encoding="utf-8") as f:
        text = f.read()
    outcome = tmp_path / "outcome.yaml"
    outcome.write_text(
        text.replace("issues: []\n", "issues:\n  - type: blocker\n    title: Gateway sandbox is down\n"),
        encoding="utf-8",
    )

    r = runner.invoke(app, ["handback", "examples/work-order.yaml", str(outcome)])
    assert r.exit_code == 1
    assert f"{outcome}:status: E_HANDBACK_DECODE" in r.stderr
    assert "ACCEPTED" not in r.stdout


def test_cli_handback_unreadable_outcome(tmp_path):
    outcome = tmp_path / "outcome.yaml"
    outcome.write_bytes(b"id: \xff\xfe\n")
    r = runner.invoke(app, ["handback", "examples/work-order.yaml", str(outcome)])
    assert r.exit_code == 1
    assert "E_HANDBACK_DECODE" in r.stderr
