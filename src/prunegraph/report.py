# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Persisted cleanup report.

Report format (schema_version 1):
{
    "schema_version": 1,
    "run": {root, generated_at, tool_version, fingerprint, settings},
    "files": {total, by_language, opaque, unknown_language, failed, ...},
    "duplicate_clusters": [DuplicateCluster.to_dict(), ...],
    "removal_candidates": [RemovalCandidate.to_dict(), ...],
    "actions": [Action.to_dict(), ...],
    "groups": [ActionGroup.to_dict(), ...],
    "complete": bool,
    "errors": [str, ...],
    "unchanged_since_last_run": bool
}

Key names, action types and confidence tags are consumed by external tooling
and must stay stable across versions.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from prunegraph.models import (
    Action,
    ActionGroup,
    CleanupPlan,
    DuplicateCluster,
    RemovalCandidate,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

REPORT_KEYS = (
    "schema_version",
    "run",
    "files",
    "duplicate_clusters",
    "removal_candidates",
    "actions",
    "groups",
    "complete",
    "errors",
    "unchanged_since_last_run",
)


def plan_to_dict(plan: CleanupPlan, unchanged_since_last_run: bool = False) -> Dict[str, Any]:
    """Serialize a plan to the report mapping."""
    settings = dict(plan.settings)
    tool_version = settings.pop("tool_version", None)
    return {
        "schema_version": SCHEMA_VERSION,
        "run": {
            "root": plan.root,
            "generated_at": plan.generated_at,
            "tool_version": tool_version,
            "fingerprint": plan.fingerprint,
            "settings": settings,
        },
        "files": plan.file_counts,
        "duplicate_clusters": [c.to_dict() for c in plan.clusters],
        "removal_candidates": [c.to_dict() for c in plan.candidates],
        "actions": [a.to_dict() for a in plan.actions],
        "groups": [g.to_dict() for g in plan.groups],
        "complete": plan.complete,
        "errors": list(plan.errors),
        "unchanged_since_last_run": unchanged_since_last_run,
    }


def plan_from_dict(data: Dict[str, Any]) -> CleanupPlan:
    """Rebuild a plan from a report mapping.

    Raises:
        ValueError: If the schema version is not supported.
    """
    version = data.get("schema_version")
    if version != SCHEMA_VERSION:
        raise ValueError(f"Unsupported report schema_version: {version!r}")
    run = data["run"]
    settings = dict(run.get("settings", {}))
    if run.get("tool_version") is not None:
        settings["tool_version"] = run["tool_version"]
    return CleanupPlan(
        root=run["root"],
        generated_at=run["generated_at"],
        fingerprint=run["fingerprint"],
        file_counts=data.get("files", {}),
        clusters=[DuplicateCluster.from_dict(c) for c in data.get("duplicate_clusters", [])],
        candidates=[RemovalCandidate.from_dict(c) for c in data.get("removal_candidates", [])],
        actions=[Action.from_dict(a) for a in data.get("actions", [])],
        groups=[ActionGroup.from_dict(g) for g in data.get("groups", [])],
        complete=data.get("complete", True),
        errors=list(data.get("errors", [])),
        settings=settings,
    )


def read_report(path: Path) -> Optional[CleanupPlan]:
    """Read a previous report.

    Returns:
        The stored plan, or None when the file is missing or unusable.
    """
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return plan_from_dict(data)
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning(f"⚠️ Ignoring unreadable previous report {path}: {e}")
        return None


def unchanged_since(previous: Optional[CleanupPlan], plan: CleanupPlan) -> bool:
    """True when the tree, settings and resulting actions match the previous run."""
    if previous is None or not previous.complete or not plan.complete:
        return False
    return previous.fingerprint == plan.fingerprint and previous.signature() == plan.signature()


def write_report(plan: CleanupPlan, path: Path) -> Dict[str, Any]:
    """Write the report, comparing against whatever report path held before.

    Args:
        plan: Plan of the current run.
        path: Report location.

    Returns:
        The mapping that was written.
    """
    unchanged = unchanged_since(read_report(path), plan)
    data = plan_to_dict(plan, unchanged_since_last_run=unchanged)

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=False)
        f.write("\n")
    tmp_path.replace(path)

    logger.info(f"Wrote report to {path} (unchanged_since_last_run={unchanged})")
    return data


def resolve_report_path(root: Path, report_path: str) -> Path:
    """Report location: absolute as given, otherwise relative to root."""
    path = Path(report_path)
    return path if path.is_absolute() else root / path


def summarize(plan: CleanupPlan) -> List[str]:
    """Short human-readable summary lines for the console."""
    counts: Dict[str, int] = {}
    for action in plan.actions:
        counts[action.action_type] = counts.get(action.action_type, 0) + 1
    statuses: Dict[str, int] = {}
    for group in plan.groups:
        statuses[group.status] = statuses.get(group.status, 0) + 1

    lines = [
        f"Files: {plan.file_counts.get('total', 0)} "
        f"({plan.file_counts.get('opaque', 0)} opaque, {plan.file_counts.get('failed', 0)} failed)",
        f"Duplicate clusters: {len(plan.clusters)}",
        f"Removal candidates: {len(plan.candidates)}",
        "Actions: "
        + (", ".join(f"{k}={v}" for k, v in sorted(counts.items())) if counts else "none"),
    ]
    if statuses:
        lines.append("Groups: " + ", ".join(f"{k}={v}" for k, v in sorted(statuses.items())))
    if not plan.complete:
        lines.append("Plan is INCOMPLETE: " + "; ".join(plan.errors))
    return lines
