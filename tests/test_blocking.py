from plan_executor.core.graph.blocking import (
    CIRCULAR_DEPENDENCY,
    DEPENDENCY_BLOCKED,
    DEPENDENCY_FAILED,
    BlockingManager,
    calculate_blast_radius,
    get_tasks_blocked_by,
)
from plan_executor.core.graph.dependency_graph import DependencyGraph


def _chain() -> DependencyGraph:
    return DependencyGraph.from_mapping({"A": [], "B": ["A"], "C": ["B"], "D": []})


def test_block_cascades_to_transitive_dependents_only():
    g = _chain()
    m = BlockingManager()
    r = m.block_task("A", g)

    assert r.newly_blocked == ["A", "B", "C"]
    assert r.already_blocked == []
    assert r.total_affected == 3
    assert {rec.task_id for rec in m.get_blocked_tasks()} == {"A", "B", "C"}
    assert m.is_blocked("D") is False
    assert calculate_blast_radius("A", g) == 2


def test_block_records_reason_and_upstream():
    g = _chain()
    m = BlockingManager()
    m.block_task("A", g)

    a = m.get_block_info("A")
    c = m.get_block_info("C")
    assert a is not None and a.reason == DEPENDENCY_FAILED and a.blocked_by is None
    assert c is not None and c.reason == DEPENDENCY_BLOCKED and c.blocked_by == "B"
    assert '"B"' in c.description


def test_reblock_reports_already_blocked_without_duplicates():
    g = _chain()
    m = BlockingManager()
    m.block_task("A", g)
    first = m.get_block_info("B")

    r = m.block_task("A", g)
    assert r.newly_blocked == []
    assert r.already_blocked == ["A", "B", "C"]
    assert len(m.get_blocked_tasks()) == 3
    assert m.get_block_info("B") is first


def test_reblock_picks_up_edges_added_later():
    g = _chain()
    m = BlockingManager()
    m.block_task("A", g)
    g.add_dependency("E", "C")

    r = m.block_task("A", g)
    assert r.newly_blocked == ["E"]
    assert m.is_blocked("E")


def test_unblock_when_direct_dependencies_completed():
    g = _chain()
    m = BlockingManager()
    m.block_task("A", g)

    r = m.unblock_task("B", g, {"A"})
    assert r.unblocked == ["B"]
    assert m.is_blocked("B") is False

    r = m.unblock_task("C", g, {"A"})
    assert r.unblocked == []
    assert r.still_blocked == ["C"]
    assert m.is_blocked("C")


def test_unblock_not_blocked_is_noop():
    m = BlockingManager()
    r = m.unblock_task("A", _chain(), set())
    assert r.unblocked == [] and r.still_blocked == []


def test_manual_hold_survives_completed_dependencies():
    g = _chain()
    m = BlockingManager()
    m.add_manual_hold("B")
    assert m.has_manual_hold("B")
    assert m.is_blocked("B")

    r = m.unblock_task("B", g, {"A", "B", "C", "D"})
    assert r.still_blocked == ["B"]
    assert m.is_blocked("B")

    assert m.remove_manual_hold("B") is True
    assert m.is_blocked("B") is False
    assert m.remove_manual_hold("B") is False


def test_removing_hold_keeps_cascade_block():
    g = _chain()
    m = BlockingManager()
    m.block_task("A", g)
    m.add_manual_hold("B")
    m.remove_manual_hold("B")
    assert m.is_blocked("B")
    assert m.get_block_info("B").reason == DEPENDENCY_BLOCKED


def test_cascade_through_held_task_outlives_the_hold():
    g = _chain()
    m = BlockingManager()
    m.add_manual_hold("B")

    r = m.block_task("A", g)
    assert r.newly_blocked == ["A", "B", "C"]
    assert m.get_blocking_chain("C") == ["B", "A"]
    assert m.has_manual_hold("B")

    m.remove_manual_hold("B")
    b = m.get_block_info("B")
    assert m.is_blocked("B")
    assert b is not None and b.reason == DEPENDENCY_BLOCKED and b.blocked_by == "A"
    assert m.is_blocked("C")


def test_circular_dependency_block_is_never_auto_released():
    g = _chain()
    m = BlockingManager()
    m.block_task("D", g, CIRCULAR_DEPENDENCY)
    r = m.unblock_task("D", g, {"A", "B", "C"})
    assert r.still_blocked == ["D"]


def test_unblock_all_tries_every_task():
    g = _chain()
    m = BlockingManager()
    m.block_task("A", g)
    m.add_manual_hold("D")

    r = m.unblock_all(g, {"A"})
    assert r.unblocked == ["A", "B"]
    assert sorted(r.still_blocked) == ["C", "D"]


def test_blocking_chain_nearest_first():
    g = _chain()
    m = BlockingManager()
    m.block_task("A", g)
    assert m.get_blocking_chain("C") == ["B", "A"]
    assert m.get_blocking_chain("A") == []
    assert m.get_blocking_chain("D") == []


def test_tasks_blocked_by():
    assert get_tasks_blocked_by("A", _chain()) == ["B", "C"]
    assert get_tasks_blocked_by("D", _chain()) == []


def test_clear():
    m = BlockingManager()
    m.block_task("A", _chain())
    m.add_manual_hold("D")
    m.clear()
    assert m.get_blocked_tasks() == []
    assert m.is_blocked("D") is False
