# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the verification gate, the file applier and the verify command."""

import sys
from pathlib import Path

import pytest

from prunegraph.models import (
    Action,
    ActionGroup,
    ActionType,
    CleanupPlan,
    Confidence,
    DependencyGraph,
    GroupStatus,
    ReferenceEdge,
    ReferenceKind,
    Symbol,
    SymbolKind,
)
from prunegraph.planner import PlanGenerator, action_id_for
from prunegraph.reachability import ReachabilityAnalyzer, collect_roots
from prunegraph.verification import (
    CommandVerifier,
    FileSystemApplier,
    SimulationConflict,
    VerificationGate,
)

TREE = {
    "main.py": """
        from lib import used


        if __name__ == "__main__":
            used()
        """,
    "lib.py": """
        def used():
            return 1


        def unused():
            return 2


        def also_unused():
            return 3
        """,
    "dead.py": """
        def ping():
            return 4
        """,
}


def remove_action(subject: str) -> Action:
    return Action(
        action_id=action_id_for(ActionType.REMOVE, [subject]),
        action_type=ActionType.REMOVE,
        subjects=[subject],
        confidence="unreachable-certain",
        auto_apply=True,
    )


def snapshot(root: Path):
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*.py"))
        if ".prunegraph" not in p.parts
    }


@pytest.fixture
def project(write_tree, build_graph):
    """Tree, graph, roots and generated plan for TREE."""
    root = write_tree(TREE)
    extractions, graph = build_graph(root)
    roots = collect_roots(graph, extractions)
    result = ReachabilityAnalyzer().analyze(graph, roots)
    actions, groups = PlanGenerator().generate(graph, [], result)
    plan = CleanupPlan(
        root=str(root),
        generated_at="2025-01-01T00:00:00",
        fingerprint="f",
        file_counts={},
        candidates=result.candidates,
        actions=actions,
        groups=groups,
    )
    return root, graph, roots, plan


class TestCommandVerifier:
    """Tests for the external verify command."""

    def test_success(self, tmp_path):
        verifier = CommandVerifier(f'"{sys.executable}" -c "pass"', tmp_path)
        assert verifier() == (True, "exit status 0")

    def test_failure_reports_status_and_output(self, tmp_path):
        command = (
            f'"{sys.executable}" -c '
            '"import sys; sys.stderr.write(\'boom\\n\'); sys.exit(3)"'
        )
        succeeded, detail = CommandVerifier(command, tmp_path)()
        assert not succeeded
        assert detail.startswith("exit status 3")
        assert "boom" in detail

    def test_missing_program(self, tmp_path):
        succeeded, detail = CommandVerifier("definitely-not-a-real-program-xyz", tmp_path)()
        assert not succeeded
        assert "could not run" in detail

    def test_timeout(self, tmp_path):
        command = f'"{sys.executable}" -c "import time; time.sleep(5)"'
        succeeded, detail = CommandVerifier(command, tmp_path, timeout_seconds=0.2)()
        assert not succeeded
        assert "timed out" in detail

    def test_empty_command(self, tmp_path):
        with pytest.raises(ValueError):
            CommandVerifier("   ", tmp_path)


class TestFileSystemApplier:
    """Tests for applying and reverting file changes."""

    def test_symbol_span_removed_and_restored(self, project):
        root, graph, _, _ = project
        before = (root / "lib.py").read_bytes()
        applier = FileSystemApplier(root, graph)

        applier.apply("group-0001", [remove_action("lib.py::unused")])
        text = (root / "lib.py").read_text()
        assert "def unused" not in text
        assert "def used" in text
        assert "def also_unused" in text

        applier.revert("group-0001")
        assert (root / "lib.py").read_bytes() == before

    def test_module_moved_to_trash_and_restored(self, project, tmp_path):
        root, graph, _, _ = project
        before = (root / "dead.py").read_bytes()
        trash = tmp_path / "trash"
        applier = FileSystemApplier(root, graph, trash_root=trash)

        applier.apply("group-0001", [remove_action("dead.py")])
        assert not (root / "dead.py").exists()
        assert (trash / "group-0001" / "dead.py").read_bytes() == before

        applier.revert("group-0001")
        assert (root / "dead.py").read_bytes() == before
        assert not (trash / "group-0001" / "dead.py").exists()

    def test_committed_removals_shift_later_spans(self, project):
        """Test that a later group still hits its span after earlier lines are gone."""
        root, graph, _, _ = project
        applier = FileSystemApplier(root, graph)

        applier.apply("group-0001", [remove_action("lib.py::unused")])
        applier.commit("group-0001")
        applier.apply("group-0002", [remove_action("lib.py::also_unused")])

        text = (root / "lib.py").read_text()
        assert "unused" not in text
        assert "def used():\n    return 1" in text

    def test_revert_all_restores_committed_groups(self, project):
        """Test that undoing a fully applied plan gives back the original tree."""
        root, graph, roots, plan = project
        before = snapshot(root)
        applier = FileSystemApplier(root, graph)

        outcomes = VerificationGate(graph, roots).run(
            plan, apply=True, applier=applier, verifier=lambda: (True, "ok")
        )
        assert [o.status for o in outcomes] == [GroupStatus.COMMITTED] * 3
        assert snapshot(root) != before

        reverted = applier.revert_all()

        assert reverted == [g.group_id for g in reversed(plan.groups)]
        assert snapshot(root) == before
        assert applier.revert_all() == []

    def test_non_auto_actions_are_ignored(self, project):
        root, graph, _, _ = project
        before = snapshot(root)
        flag = Action("f", ActionType.FLAG_FOR_REVIEW, ["dead.py"], "unreachable-heuristic", False)

        FileSystemApplier(root, graph).apply("group-0001", [flag])

        assert snapshot(root) == before


class TestVerificationGate:
    """Tests for VerificationGate.run and simulate."""

    def test_plan_shape(self, project):
        _, _, _, plan = project
        assert [(a.action_type, a.subjects) for a in plan.actions] == [
            (ActionType.REMOVE, ["dead.py"]),
            (ActionType.REMOVE, ["lib.py::also_unused"]),
            (ActionType.REMOVE, ["lib.py::unused"]),
        ]
        assert len(plan.groups) == 3

    def test_dry_run_leaves_everything_pending(self, project):
        root, graph, roots, plan = project
        before = snapshot(root)

        outcomes = VerificationGate(graph, roots).run(plan)

        assert [o.status for o in outcomes] == [GroupStatus.PENDING] * 3
        assert not any(o.applied for o in outcomes)
        assert snapshot(root) == before

    def test_apply_commits_verified_groups(self, project):
        root, graph, roots, plan = project
        applier = FileSystemApplier(root, graph)

        outcomes = VerificationGate(graph, roots).run(
            plan, apply=True, applier=applier, verifier=lambda: (True, "ok")
        )

        assert [o.status for o in outcomes] == [GroupStatus.COMMITTED] * 3
        assert not (root / "dead.py").exists()
        assert "unused" not in (root / "lib.py").read_text()
        assert [g.status for g in plan.groups] == [GroupStatus.COMMITTED] * 3

    def test_failed_verification_restores_bytes(self, project):
        """Test that a negative signal reverts the group to its exact prior bytes."""
        root, graph, roots, plan = project
        before = snapshot(root)

        outcomes = VerificationGate(graph, roots).run(
            plan, apply=True, applier=FileSystemApplier(root, graph), verifier=lambda: (False, "x")
        )

        assert [o.status for o in outcomes] == [GroupStatus.ROLLED_BACK] * 3
        assert all("x" in o.message for o in outcomes)
        assert snapshot(root) == before

    def test_rollback_is_scoped_to_one_group(self, project):
        """Test that a failing group leaves earlier committed groups alone."""
        root, graph, roots, plan = project
        calls = []

        def verifier():
            calls.append(1)
            return len(calls) != 2, "checked"

        outcomes = VerificationGate(graph, roots).run(
            plan, apply=True, applier=FileSystemApplier(root, graph), verifier=verifier
        )

        assert [o.status for o in outcomes] == [
            GroupStatus.COMMITTED,
            GroupStatus.ROLLED_BACK,
            GroupStatus.COMMITTED,
        ]
        text = (root / "lib.py").read_text()
        assert not (root / "dead.py").exists()
        assert "def also_unused" in text
        assert "def unused" not in text

    def test_apply_requires_applier_and_verifier(self, project):
        _, graph, roots, plan = project
        with pytest.raises(ValueError):
            VerificationGate(graph, roots).run(plan, apply=True)

    def test_orphaning_group_needs_revision(self):
        """Test that a group orphaning code outside the plan is never applied."""
        graph = DependencyGraph()
        for path in ("main.py", "lib.py", "util.py"):
            graph.add_node(Symbol(path, path, SymbolKind.MODULE, path, 1, 20))
        graph.add_node(Symbol("lib.py::used", "lib.py", SymbolKind.FUNCTION, "used", 1, 3))
        graph.add_node(Symbol("util.py::leaf", "util.py", SymbolKind.FUNCTION, "leaf", 1, 3))
        for source, target in (
            ("main.py", "lib.py"),
            ("main.py", "lib.py::used"),
            ("lib.py::used", "util.py::leaf"),
        ):
            graph.add_edge(ReferenceEdge(source, target, ReferenceKind.CALL, Confidence.CERTAIN))
        action = remove_action("lib.py::used")
        action.group_id = "group-0001"
        plan = CleanupPlan(
            root="/project",
            generated_at="2025-01-01T00:00:00",
            fingerprint="f",
            file_counts={},
            actions=[action],
            groups=[ActionGroup("group-0001", [action.action_id])],
        )
        gate = VerificationGate(graph, {"main.py": "script-marker"})

        with pytest.raises(SimulationConflict) as excinfo:
            gate.simulate("group-0001", [action], {"lib.py::used"})
        assert excinfo.value.orphaned == ["util.py", "util.py::leaf"]

        outcomes = gate.run(plan)
        assert outcomes[0].status == GroupStatus.NEEDS_REVISION
        assert plan.groups[0].status == GroupStatus.NEEDS_REVISION
        assert "util.py::leaf" in plan.groups[0].message

    def test_merge_moves_inbound_edges_in_simulation(self):
        graph = DependencyGraph()
        graph.add_node(Symbol("a.py", "a.py", SymbolKind.MODULE, "a.py", 1, 9))
        graph.add_node(Symbol("a.py::f", "a.py", SymbolKind.FUNCTION, "f", 1, 2))
        graph.add_node(Symbol("a.py::g", "a.py", SymbolKind.FUNCTION, "g", 4, 5))
        graph.add_edge(ReferenceEdge("a.py", "a.py::g", ReferenceKind.CALL, Confidence.CERTAIN))
        merge = Action("m", ActionType.MERGE, ["a.py::g"], "exact", False, target="a.py::f")

        simulated = VerificationGate.apply_to_graph(graph, [merge])

        assert not simulated.has_node("a.py::g")
        assert [e.target for e in simulated.outbound("a.py")] == ["a.py::f"]
        assert graph.has_node("a.py::g")
