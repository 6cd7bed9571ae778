# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for integration tests.

Provides a representative mixed project and a helper that runs the full
analysis pipeline over it.
"""

import hashlib
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

from prunegraph.config import Config
from prunegraph.context import AnalysisContext
from prunegraph.engine import AnalysisEngine
from prunegraph.models import CleanupPlan
from prunegraph.verification import Verifier

FORMATTING = '''
"""Rendering helpers."""


def render(items):
    parts = []
    for item in items:
        text = str(item).strip()
        if not text:
            continue
        if len(text) > 40:
            text = text[:37] + "..."
        parts.append(text.title())
    parts.sort(key=lambda value: value.lower())
    unique = []
    for part in parts:
        if part not in unique:
            unique.append(part)
    if not unique:
        return ""
    header = unique[0].upper()
    unique[0] = header
    width = max(len(part) for part in unique)
    unique = [part.ljust(width) for part in unique]
    return " | ".join(unique)


def render_labels(items, sep):
    parts = []
    for item in items:
        text = str(item).strip()
        if not text:
            continue
        if len(text) > 40:
            text = text[:37] + "..."
        parts.append(text.title())
    parts.sort(key=lambda value: value.lower())
    unique = []
    for part in parts:
        if part not in unique:
            unique.append(part)
    if not unique:
        return ""
    header = unique[0].upper()
    unique[0] = header
    width = max(len(part) for part in unique)
    unique = [part.ljust(width) for part in unique]
    return sep.join(unique)
'''

DATES = """
def format_date(value):
    return value.strftime("%Y-%m-%d")
"""

SAMPLE_PROJECT: Dict[str, str] = {
    "app/__init__.py": "",
    "app/cli.py": """
        from app.formatting import render, render_labels


        def main(argv):
            plugin_path = "app.exporter"
            print(render(argv), plugin_path)
            return render_labels(argv, ", ")


        if __name__ == "__main__":
            main([])
        """,
    "app/formatting.py": FORMATTING,
    "app/dates_a.py": DATES,
    "app/dates_b.py": DATES,
    "app/exporter.py": """
        def export(rows):
            return [list(row) for row in rows]
        """,
}


def file_hashes(root: Path) -> Dict[str, str]:
    """sha256 of every source file under root, keyed by relative path."""
    return {
        p.relative_to(root).as_posix(): hashlib.sha256(p.read_bytes()).hexdigest()
        for p in sorted(root.rglob("*.py"))
        if ".prunegraph" not in p.parts
    }


@pytest.fixture
def tree_hashes() -> Callable[[Path], Dict[str, str]]:
    return file_hashes


@pytest.fixture
def sample_project(write_tree) -> Path:
    """Project with exact, near and string-only-referenced code.

    - app/cli.py is a script that calls render and render_labels
    - render/render_labels are near duplicates with different parameters
    - app/dates_a.py and app/dates_b.py hold identical, unused format_date
    - app/exporter.py is only named inside a string literal
    """
    return write_tree(SAMPLE_PROJECT)


@pytest.fixture
def run_analysis() -> Callable[..., CleanupPlan]:
    """Run the full pipeline over a root and return the plan."""

    def run(
        root: Path,
        apply: bool = False,
        verifier: Optional[Verifier] = None,
        engine: Optional[AnalysisEngine] = None,
    ) -> CleanupPlan:
        engine = engine or AnalysisEngine(AnalysisContext(config=Config.for_project(root)))
        return engine.run(root, apply=apply, verifier=verifier)

    return run
