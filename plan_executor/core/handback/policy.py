from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from plan_executor.core.handback.contracts import CONFIDENCE_RANK, ConfidenceLevel


@dataclass(frozen=True)
class HandbackPolicy:
    require_all_tests_pass: bool = True
    require_all_criteria_met: bool = True
    allow_out_of_scope_changes: bool = False
    min_auto_accept_confidence: ConfidenceLevel = "medium"
    max_time_overrun_percent: float = 50.0
    min_test_coverage: float = 80.0


# Strict by default; keep stable, tests depend on these values.
DEFAULT_HANDBACK_POLICY = HandbackPolicy()

_BOOL_KEYS = {"require_all_tests_pass", "require_all_criteria_met", "allow_out_of_scope_changes"}
_NUMBER_KEYS = {"max_time_overrun_percent", "min_test_coverage"}


class PolicyConfigError(ValueError):
    pass


def parse_policy_overrides(raw: Any) -> dict[str, Any]:
    """Validate a mapping of policy overrides; unknown keys are rejected."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise PolicyConfigError("policy file must be a mapping of setting -> value")

    known = {f.name for f in fields(HandbackPolicy)}
    out: dict[str, Any] = {}
    for k, v in raw.items():
        if k not in known:
            raise PolicyConfigError(f"unknown policy setting '{k}' (choose from: {', '.join(sorted(known))})")
        if k in _BOOL_KEYS and not isinstance(v, bool):
            raise PolicyConfigError(f"policy setting '{k}' must be a boolean")
        if k in _NUMBER_KEYS:
            if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
                raise PolicyConfigError(f"policy setting '{k}' must be a non-negative number")
            v = float(v)
        if k == "min_auto_accept_confidence" and (not isinstance(v, str) or v not in CONFIDENCE_RANK):
            raise PolicyConfigError(
                f"policy setting '{k}' must be one of {sorted(CONFIDENCE_RANK)}"
            )
        out[k] = v
    return out


def load_policy_file(path: str | Path) -> dict[str, Any]:
    """Load policy overrides from a YAML file.

    Format:
      require_all_tests_pass: true
      min_test_coverage: 70
      ...
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise PolicyConfigError(f"policy file is not valid YAML: {e}") from e
    except UnicodeDecodeError as e:
        raise PolicyConfigError(f"policy file is not UTF-8 text: {e}") from e
    return parse_policy_overrides(raw)


def merged_policy(overrides: dict[str, Any] | None = None) -> HandbackPolicy:
    """Return DEFAULT_HANDBACK_POLICY with the given settings replaced."""
    if not overrides:
        return DEFAULT_HANDBACK_POLICY
    return replace(DEFAULT_HANDBACK_POLICY, **overrides)


def load_and_merge(policy_file: str | None) -> HandbackPolicy:
    if not policy_file:
        return merged_policy()
    return merged_policy(load_policy_file(policy_file))
