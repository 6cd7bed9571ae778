# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Entry-point discovery from packaging metadata.

Reads the entry points a project declares for itself so they seed the
reachability traversal without any configuration:
- pyproject.toml: [project.scripts], [project.gui-scripts],
  [project.entry-points.<group>] and [tool.poetry.scripts]
- package.json: main, module, bin and a string-valued exports

Python object references ("pkg.cli:main") become "path::symbol" specs;
JavaScript paths become file specs. References that do not resolve to a file
under the root are logged and skipped.
"""

import json
import logging
import sys
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

# Python 3.11+ has tomllib built-in, earlier versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

PYTHON_SOURCE_ROOTS = ("", "src/", "lib/")
JS_EXTENSIONS = ("", ".js", ".mjs", ".cjs", ".ts", "/index.js", "/index.ts")


def discover_entry_points(root: Path) -> List[str]:
    """Collect entry specs declared by pyproject.toml and package.json.

    Args:
        root: Project root.

    Returns:
        Sorted, de-duplicated entry specs relative to root.
    """
    specs: List[str] = []
    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        specs.extend(_pyproject_entry_points(root, pyproject))
    package_json = root / "package.json"
    if package_json.is_file():
        specs.extend(_package_json_entry_points(root, package_json))

    result = sorted(set(specs))
    if result:
        logger.info(f"Discovered {len(result)} declared entry points")
    return result


def _pyproject_entry_points(root: Path, path: Path) -> List[str]:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"⚠️ Could not read {path.name}: {e}")
        return []

    project = data.get("project", {})
    references: List[str] = []
    for table in (project.get("scripts", {}), project.get("gui-scripts", {})):
        references.extend(_string_values(table))
    for group in project.get("entry-points", {}).values():
        references.extend(_string_values(group))
    poetry = data.get("tool", {}).get("poetry", {})
    references.extend(_string_values(poetry.get("scripts", {})))

    specs = []
    for reference in references:
        spec = python_object_spec(root, reference)
        if spec is None:
            logger.warning(f"⚠️ Entry point '{reference}' in {path.name} matches no file")
        else:
            specs.append(spec)
    return specs


def python_object_spec(root: Path, reference: str) -> Optional[str]:
    """Turn "pkg.module:attr" (or "pkg.module") into an entry spec.

    Args:
        root: Project root the module path is resolved against.
        reference: Object reference, optionally followed by "[extras]".

    Returns:
        "path::attr", a bare path, or None when no file matches.
    """
    reference = reference.split("[", 1)[0].strip()
    module, _, attr = reference.partition(":")
    module = module.strip()
    if not module:
        return None
    relative = module.replace(".", "/")
    for prefix in PYTHON_SOURCE_ROOTS:
        for candidate in (f"{prefix}{relative}.py", f"{prefix}{relative}/__init__.py"):
            if (root / candidate).is_file():
                name = attr.strip().split(".", 1)[0]
                return f"{candidate}::{name}" if name else candidate
    return None


def _package_json_entry_points(root: Path, path: Path) -> List[str]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"⚠️ Could not read {path.name}: {e}")
        return []
    if not isinstance(data, dict):
        return []

    values: List[str] = []
    for key in ("main", "module", "exports"):
        if isinstance(data.get(key), str):
            values.append(data[key])
    bin_field = data.get("bin")
    if isinstance(bin_field, str):
        values.append(bin_field)
    elif isinstance(bin_field, dict):
        values.extend(_string_values(bin_field))

    specs = []
    for value in values:
        spec = js_path_spec(root, value)
        if spec is None:
            logger.warning(f"⚠️ Entry point '{value}' in {path.name} matches no file")
        else:
            specs.append(spec)
    return specs


def js_path_spec(root: Path, value: str) -> Optional[str]:
    """Resolve a package.json path (with extension and index fallbacks)."""
    normalized = str(PurePosixPath(value.strip()))
    if normalized.startswith("./"):
        normalized = normalized[2:]
    if not normalized or normalized.startswith(".."):
        return None
    for suffix in JS_EXTENSIONS:
        candidate = f"{normalized}{suffix}"
        if (root / candidate).is_file():
            return candidate
    return None


def _string_values(table: Any) -> Iterable[str]:
    if not isinstance(table, dict):
        return []
    return [v for v in table.values() if isinstance(v, str)]


def merge_entry_points(configured: Iterable[str], discovered: Iterable[str]) -> List[str]:
    """Configured specs first, then discovered ones not already listed."""
    merged: Dict[str, None] = {}
    for spec in list(configured) + list(discovered):
        merged.setdefault(spec, None)
    return list(merged)
