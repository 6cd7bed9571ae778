# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the command-line interface."""

import json
import logging
import sys

import pytest

from prunegraph.cli import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_PENDING,
    build_parser,
    exit_code_for,
    load_config,
    main,
)
from prunegraph.models import Action, ActionGroup, CleanupPlan, GroupStatus

TREE = {
    "main.py": """
        def run():
            return 1


        if __name__ == "__main__":
            run()
        """,
    "dead.py": """
        def ping():
            return 4
        """,
}


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() configures the root logger; undo that after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def make_plan(statuses, complete=True) -> CleanupPlan:
    actions = [
        Action(f"remove-{i}", "remove", [f"f{i}.py"], "unreachable-certain", True)
        for i in range(len(statuses))
    ]
    groups = [
        ActionGroup(f"group-{i + 1:04d}", [f"remove-{i}"], status=status)
        for i, status in enumerate(statuses)
    ]
    return CleanupPlan("/p", "t", "f", {}, actions=actions, groups=groups, complete=complete)


def test_parser_defaults():
    args = build_parser().parse_args(["scan", "src"])

    assert args.command == "scan"
    assert args.apply is False
    assert args.verify_command is None
    assert args.log_level == "WARNING"
    assert args.json is False
    assert args.entry_points is None


def test_parser_rejects_both_modes():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["scan", "src", "--dry-run", "--apply"])


def test_watch_parser():
    args = build_parser().parse_args(["watch", "src", "--debounce", "2"])
    assert args.command == "watch"
    assert args.debounce == 2.0


def test_load_config_merges_flags(write_tree):
    """Test that flags override the file and repeatable flags extend its lists."""
    root = write_tree(
        {
            ".prunegraph.yml": """
                similarity_threshold: 0.9
                entry_points:
                  - cli.py
                ignore_patterns:
                  - build/
                """
        }
    )
    args = build_parser().parse_args(
        [
            "scan",
            str(root),
            "--similarity-threshold",
            "0.7",
            "--entry-point",
            "tools/*.py",
            "--exclude",
            "*.gen.py",
        ]
    )

    config = load_config(args)

    assert config.similarity_threshold == 0.7
    assert config.entry_points == ["cli.py", "tools/*.py"]
    assert config.ignore_patterns == ["build/", "*.gen.py"]


def test_exit_code_mapping():
    assert exit_code_for(make_plan([]), apply=True) == EXIT_OK
    assert exit_code_for(make_plan([GroupStatus.PENDING]), apply=False) == EXIT_OK
    assert exit_code_for(make_plan([GroupStatus.COMMITTED]), apply=True) == EXIT_OK
    assert exit_code_for(
        make_plan([GroupStatus.COMMITTED, GroupStatus.ROLLED_BACK]), apply=True
    ) == EXIT_PENDING
    assert exit_code_for(make_plan([GroupStatus.PENDING]), apply=True) == EXIT_PENDING
    assert exit_code_for(make_plan([], complete=False), apply=False) == EXIT_ERROR


def test_scan_writes_report(write_tree, capsys):
    root = write_tree(TREE)

    assert main(["scan", str(root)]) == EXIT_OK

    report = json.loads((root / ".prunegraph" / "report.json").read_text())
    assert [a["subjects"] for a in report["actions"]] == [["dead.py"]]
    out = capsys.readouterr().out
    assert "Removal candidates: 2" in out
    assert "Actions: remove=1" in out
    assert (root / "dead.py").exists()


def test_second_scan_reports_nothing_changed(write_tree, capsys):
    root = write_tree(TREE)
    main(["scan", str(root)])
    capsys.readouterr()

    main(["scan", str(root)])

    assert "Nothing changed since the last run" in capsys.readouterr().out


def test_scan_json_output(write_tree, capsys):
    root = write_tree(TREE)

    assert main(["scan", str(root), "--json"]) == EXIT_OK

    data = json.loads(capsys.readouterr().out)
    assert data["schema_version"] == 1
    assert data["complete"] is True
    assert data["files"]["total"] == 2


def test_custom_report_path(write_tree, tmp_path):
    root = write_tree(TREE)
    target = tmp_path / "out" / "plan.json"

    main(["scan", str(root), "--report", str(target)])

    assert target.exists()
    assert not (root / ".prunegraph" / "report.json").exists()


def test_apply_without_verify_command_is_pending(write_tree):
    """Test that nothing is applied without a verify command."""
    root = write_tree(TREE)

    assert main(["scan", str(root), "--apply"]) == EXIT_PENDING

    assert (root / "dead.py").exists()
    report = json.loads((root / ".prunegraph" / "report.json").read_text())
    assert "apply skipped: no verify command configured" in report["errors"]
    assert [g["status"] for g in report["groups"]] == [GroupStatus.PENDING]


def test_apply_with_verify_command(write_tree):
    root = write_tree(TREE)
    command = f'"{sys.executable}" -c "pass"'

    code = main(["scan", str(root), "--apply", "--verify-command", command])

    assert code == EXIT_OK
    assert not (root / "dead.py").exists()
    assert (root / "main.py").exists()


def test_apply_with_failing_verify_command(write_tree):
    root = write_tree(TREE)
    before = (root / "dead.py").read_bytes()
    command = f'"{sys.executable}" -c "import sys; sys.exit(1)"'

    code = main(["scan", str(root), "--apply", "--verify-command", command])

    assert code == EXIT_PENDING
    assert (root / "dead.py").read_bytes() == before


def test_missing_root_is_an_error(tmp_path, capsys):
    assert main(["scan", str(tmp_path / "missing")]) == EXIT_ERROR
    assert "error:" in capsys.readouterr().err


def test_missing_config_file_is_an_error(write_tree, tmp_path, capsys):
    root = write_tree(TREE)

    code = main(["scan", str(root), "--config", str(tmp_path / "nope.yml")])

    assert code == EXIT_ERROR
    assert "Configuration file not found" in capsys.readouterr().err


def test_watch_rejects_missing_root(tmp_path):
    assert main(["watch", str(tmp_path / "missing")]) == EXIT_ERROR


def test_incomplete_plan_is_reported_and_exits_with_error(write_tree):
    """Test that a failure after scanning still writes the partial report."""
    root = write_tree(
        {
            ".prunegraph.yml": """
                unique_entry_points:
                  - main
                """,
            "a.py": "def main():\n    return 1\n",
            "b.py": "def main():\n    return 2\n",
        }
    )

    assert main(["scan", str(root)]) == EXIT_ERROR

    report = json.loads((root / ".prunegraph" / "report.json").read_text())
    assert report["complete"] is False
    assert report["errors"][0].startswith("GraphInconsistencyError:")
    assert report["files"]["by_language"]["python"] == 2
