# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""End-to-end tests for scan -> extract -> graph -> analysis -> plan -> gate."""

import shutil

from prunegraph.config import Config
from prunegraph.context import AnalysisContext, ExtractionCache
from prunegraph.engine import AnalysisEngine
from prunegraph.models import ActionType, DuplicateKind, GroupStatus, ReachabilityState
from prunegraph.planner import choose_canonical
from prunegraph.report import write_report


def states_of(artifacts):
    return artifacts.reachability.states


class TestScenarios:
    """Representative cleanup scenarios."""

    def test_identical_unused_helpers(self, sample_project, run_analysis):
        """Test that identical unused functions form one exact cluster."""
        engine = AnalysisEngine(AnalysisContext(config=Config.for_project(sample_project)))
        plan = run_analysis(sample_project, engine=engine)

        exact = [c for c in plan.clusters if c.kind == DuplicateKind.EXACT]
        assert len(exact) == 1
        assert exact[0].members == [
            "app/dates_a.py::format_date",
            "app/dates_b.py::format_date",
        ]
        states = states_of(engine.last_run)
        for member in exact[0].members:
            assert states[member] == ReachabilityState.UNREACHABLE_CERTAIN
        assert choose_canonical(engine.last_run.graph, exact[0].members) == (
            "app/dates_a.py::format_date"
        )
        removed = [a.subjects for a in plan.actions_of_type(ActionType.REMOVE)]
        assert removed == [["app/dates_a.py"], ["app/dates_b.py"]]
        assert not plan.actions_of_type(ActionType.MERGE)

    def test_string_only_reference_is_flagged(self, sample_project, run_analysis):
        """Test that a file named only in a string is flagged, never removed."""
        plan = run_analysis(sample_project)

        flags = plan.actions_of_type(ActionType.FLAG_FOR_REVIEW)
        assert [a.subjects for a in flags] == [["app/exporter.py"]]
        assert flags[0].auto_apply is False
        subjects = {s for a in plan.actions_of_type(ActionType.REMOVE) for s in a.subjects}
        assert "app/exporter.py" not in subjects
        assert "app/exporter.py::export" not in subjects

    def test_near_duplicates_with_differing_parameters(self, sample_project, run_analysis):
        plan = run_analysis(sample_project)

        near = [c for c in plan.clusters if c.kind == DuplicateKind.NEAR]
        assert [c.members for c in near] == [
            ["app/formatting.py::render", "app/formatting.py::render_labels"]
        ]
        assert near[0].signatures_differ
        assert 0.8 <= near[0].similarity < 1.0

        parameterize = plan.actions_of_type(ActionType.PARAMETERIZE)
        assert len(parameterize) == 1
        assert parameterize[0].auto_apply is False
        assert parameterize[0].cluster_id == near[0].cluster_id

    def test_failed_verification_restores_the_group(self, sample_project, run_analysis, tree_hashes):
        """Test that a negative signal leaves every file byte-identical."""
        before = tree_hashes(sample_project)

        plan = run_analysis(sample_project, apply=True, verifier=lambda: (False, "tests failed"))

        by_group = {g.group_id: g for g in plan.groups}
        removal_groups = {a.group_id for a in plan.actions_of_type(ActionType.REMOVE)}
        assert removal_groups
        for group_id in removal_groups:
            assert by_group[group_id].status == GroupStatus.ROLLED_BACK
        assert tree_hashes(sample_project) == before

    def test_earlier_committed_groups_survive_a_later_failure(self, sample_project, run_analysis):
        calls = []

        def verifier():
            calls.append(1)
            return len(calls) == 1, f"run {len(calls)}"

        plan = run_analysis(sample_project, apply=True, verifier=verifier)

        statuses = {a.subjects[0]: plan.get_group(a.group_id).status for a in plan.actions}
        assert statuses["app/dates_a.py"] == GroupStatus.COMMITTED
        assert statuses["app/dates_b.py"] == GroupStatus.ROLLED_BACK
        assert statuses["app/exporter.py"] == GroupStatus.PENDING
        assert not (sample_project / "app" / "dates_a.py").exists()
        assert (sample_project / "app" / "dates_b.py").exists()

    def test_dry_run_touches_nothing(self, sample_project, run_analysis, tree_hashes):
        before = tree_hashes(sample_project)

        plan = run_analysis(sample_project)

        assert tree_hashes(sample_project) == before
        assert all(g.status == GroupStatus.PENDING for g in plan.groups)


class TestProperties:
    """Properties that must hold for any tree."""

    def test_idempotent_dry_runs(self, sample_project, run_analysis, tmp_path):
        """Test that an unchanged tree yields the same plan and is reported unchanged."""
        report = tmp_path / "report.json"
        first = run_analysis(sample_project)
        write_report(first, report)

        second = run_analysis(sample_project)
        data = write_report(second, report)

        assert second.signature() == first.signature()
        assert second.fingerprint == first.fingerprint
        assert data["unchanged_since_last_run"] is True

    def test_shared_cache_gives_same_plan(self, sample_project, run_analysis):
        cache = ExtractionCache()
        config = Config.for_project(sample_project)
        first = run_analysis(
            sample_project, engine=AnalysisEngine(AnalysisContext(config=config, cache=cache))
        )
        second = run_analysis(
            sample_project, engine=AnalysisEngine(AnalysisContext(config=config, cache=cache))
        )

        assert cache.hits > 0
        assert second.signature() == first.signature()

    def test_soundness(self, sample_project):
        """Test that no certain edge leaves the reachable set."""
        engine = AnalysisEngine(AnalysisContext(config=Config.for_project(sample_project)))
        engine.run(sample_project)
        graph = engine.last_run.graph
        states = states_of(engine.last_run)

        for edge in graph.edges():
            if edge.is_certain and states[edge.source] == ReachabilityState.REACHABLE:
                assert states[edge.target] == ReachabilityState.REACHABLE

    def test_duplicate_detection_ignores_declaration_order(
        self, sample_project, tmp_path, run_analysis
    ):
        """Test that swapping the two near duplicates does not change the clusters."""
        other = tmp_path / "swapped"
        shutil.copytree(sample_project, other)
        formatting = other / "app" / "formatting.py"
        docstring, render, render_labels = formatting.read_text().split("\n\n\n")
        formatting.write_text(
            "\n\n\n".join([docstring, render_labels.rstrip("\n"), render.rstrip("\n")]) + "\n"
        )

        original = run_analysis(sample_project)
        reordered = run_analysis(other)

        assert [(c.members, c.kind) for c in reordered.clusters] == [
            (c.members, c.kind) for c in original.clusters
        ]
        assert [c.similarity for c in reordered.clusters] == [
            c.similarity for c in original.clusters
        ]

    def test_heuristic_edges_only_weaken_removal(self, sample_project):
        """Test that adding a string mention never turns reachable code unreachable."""
        engine = AnalysisEngine(AnalysisContext(config=Config.for_project(sample_project)))
        engine.run(sample_project)
        before = dict(states_of(engine.last_run))

        cli = sample_project / "app" / "cli.py"
        cli.write_text(
            cli.read_text().replace(
                'plugin_path = "app.exporter"',
                'plugin_path = "app.exporter"\n    formatter = "format_date"',
            )
        )
        engine = AnalysisEngine(AnalysisContext(config=Config.for_project(sample_project)))
        engine.run(sample_project)
        after = states_of(engine.last_run)

        for node_id, state in before.items():
            if state == ReachabilityState.REACHABLE:
                assert after[node_id] == ReachabilityState.REACHABLE
            if state == ReachabilityState.UNREACHABLE_HEURISTIC:
                assert after[node_id] != ReachabilityState.UNREACHABLE_CERTAIN
        assert after["app/dates_a.py::format_date"] == ReachabilityState.UNREACHABLE_HEURISTIC
        assert after["app/dates_a.py"] == ReachabilityState.UNREACHABLE_HEURISTIC


class TestSafety:
    """Runs that must never plan an automatic removal of used code."""

    def test_computed_dispatch_is_flagged(self, write_tree, run_analysis):
        """Test that functions reached through globals()[...] are flagged, not removed."""
        root = write_tree(
            {
                "tool.py": """
                    def cmd_build():
                        return "build"


                    def cmd_clean():
                        return "clean"


                    def main(name):
                        return globals()["cmd_" + name]()


                    if __name__ == "__main__":
                        main("build")
                    """
            }
        )

        plan = run_analysis(root)

        assert not plan.actions_of_type(ActionType.REMOVE)
        assert not plan.actions_of_type(ActionType.ARCHIVE)
        flags = plan.actions_of_type(ActionType.FLAG_FOR_REVIEW)
        assert sorted(a.subjects for a in flags) == [["tool.py::cmd_build"], ["tool.py::cmd_clean"]]
        assert not any(a.auto_apply for a in flags)

    def test_computed_module_load_is_flagged(self, write_tree, run_analysis):
        """Test that modules a loader may import by computed name are not removed."""
        root = write_tree(
            {
                "app/__init__.py": "",
                "app/loader.py": """
                    import importlib
                    import sys


                    def load(name):
                        return importlib.import_module(name)


                    if __name__ == "__main__":
                        load(sys.argv[1])
                    """,
                "app/plugins/__init__.py": "",
                "app/plugins/report.py": """
                    def export(rows):
                        return rows
                    """,
            }
        )

        plan = run_analysis(root)

        removed = {s for a in plan.actions_of_type(ActionType.REMOVE) for s in a.subjects}
        assert "app/plugins/report.py" not in removed
        assert "app/plugins/report.py::export" not in removed
        flagged = {s for a in plan.actions_of_type(ActionType.FLAG_FOR_REVIEW) for s in a.subjects}
        assert "app/plugins/report.py" in flagged

    def test_backslash_continued_import(self, write_tree, run_analysis):
        """Test that names on a continuation line of an import are bound."""
        root = write_tree(
            {
                "main.py": """
                    from util import first, \\
                        second


                    if __name__ == "__main__":
                        first()
                        second()
                    """,
                "util.py": """
                    def first():
                        return 1


                    def second():
                        return 2
                    """,
            }
        )
        engine = AnalysisEngine(AnalysisContext(config=Config.for_project(root)))

        plan = run_analysis(root, engine=engine)

        assert plan.actions == []
        states = states_of(engine.last_run)
        assert states["util.py::second"] == ReachabilityState.REACHABLE

    def test_failed_graph_build_emits_incomplete_plan(self, write_tree, run_analysis):
        """Test that a fatal error after scanning still yields a partial plan."""
        root = write_tree(
            {
                "a.py": "def main():\n    return 1\n",
                "b.py": "def main():\n    return 2\n",
            }
        )
        config = Config.for_project(root, overrides={"unique_entry_points": ["main"]})
        engine = AnalysisEngine(AnalysisContext(config=config))

        plan = run_analysis(root, engine=engine)

        assert plan.complete is False
        assert plan.errors == [
            "GraphInconsistencyError: Entry point 'main' is declared in multiple files: a.py, b.py"
        ]
        assert plan.file_counts["total"] == 2
        assert plan.file_counts["by_language"] == {"python": 2}
        assert plan.actions == []
