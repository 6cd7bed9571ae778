# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for unit tests."""

import textwrap
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from prunegraph.extractor import SymbolExtractor
from prunegraph.graph_builder import GraphBuilder
from prunegraph.models import DependencyGraph, FileExtraction
from prunegraph.scanner import SourceScanner


def write_files(root: Path, files: Dict[str, str]) -> Path:
    """Write dedented file contents under root."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
    return root


@pytest.fixture
def write_tree(tmp_path: Path) -> Callable[..., Path]:
    """Write a {relative path: content} mapping into a fresh project root."""

    def write(files: Dict[str, str], root: Optional[Path] = None) -> Path:
        root = root or tmp_path / "project"
        root.mkdir(parents=True, exist_ok=True)
        return write_files(root, files)

    return write


@pytest.fixture
def build_graph() -> Callable[[Path], Tuple[List[FileExtraction], DependencyGraph]]:
    """Scan, extract and build the graph of a tree."""

    def build(root: Path) -> Tuple[List[FileExtraction], DependencyGraph]:
        files = SourceScanner(max_workers=2).scan(root)
        extractions = SymbolExtractor().extract_all(files, max_workers=2)
        builder = GraphBuilder()
        for extraction in extractions:
            builder.add_extraction(extraction)
        return extractions, builder.build()

    return build
