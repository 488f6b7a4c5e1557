import pytest

from plan_executor.core.io.load_plan import load_plan
from plan_executor.core.model import ProjectPlan
from plan_executor.core.validate.validate_plan import validate_plan


def _load(path: str) -> ProjectPlan:
    plan, errors = validate_plan(load_plan(path))
    assert errors == [], errors
    assert plan is not None
    return plan


@pytest.fixture
def basic_plan() -> ProjectPlan:
    return _load("examples/basic-plan.yaml")


@pytest.fixture
def cyclic_plan() -> ProjectPlan:
    return _load("examples/cyclic-plan.yaml")


@pytest.fixture
def dangling_plan() -> ProjectPlan:
    return _load("examples/dangling-link-plan.yaml")
