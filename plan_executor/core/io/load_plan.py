from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from plan_executor.core.errors import PlanLoadError


PLAN_KEYS: tuple[str, ...] = (
    "schema_version",
    "metadata",
    "overview",
    "features",
    "links",
    "user_stories",
    "developer_stories",
    "success_criteria",
)


def load_plan(path: str) -> dict[str, Any]:
    """Load YAML/JSON plan file.

    Returns a dict holding the known top-level plan keys (missing ones are None).
    Does not coerce types; validator owns shape checking.
    """

    p = Path(path)
    data = load_document(p)

    # Normalize: keep only expected keys; validator checks required ones.
    normalized: dict[str, Any] = {k: data.get(k) for k in PLAN_KEYS}
    normalized["__file__"] = str(p)
    return normalized


def load_document(p: Path) -> dict[str, Any]:
    """Read a YAML/JSON file whose top level must be a mapping."""
    if not p.exists():
        raise PlanLoadError(
            code="E_FILE_NOT_FOUND",
            message="file does not exist",
            file=str(p),
        )

    suffix = p.suffix.lower()
    try:
        raw_text = p.read_text(encoding="utf-8")
    except Exception as e:  # pragma: no cover
        raise PlanLoadError(code="E_FILE_READ", message=str(e), file=str(p)) from e

    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw_text)
        elif suffix == ".json":
            data = json.loads(raw_text)
        else:
            raise PlanLoadError(
                code="E_UNSUPPORTED_FORMAT",
                message="supported formats are .yaml/.yml and .json",
                file=str(p),
            )
    except PlanLoadError:
        raise
    except Exception as e:
        code = "E_YAML_PARSE" if suffix in {".yaml", ".yml"} else "E_JSON_PARSE"
        raise PlanLoadError(code=code, message=str(e), file=str(p)) from e

    if not isinstance(data, dict):
        raise PlanLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object",
            file=str(p),
        )
    return data
