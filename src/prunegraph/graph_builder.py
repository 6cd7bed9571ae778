# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Dependency graph builder.

Merges per-file extractions into one DependencyGraph. This is the only stage
that sees every file, so it is where raw references are resolved:

Flow: FileExtraction (all files) -> GraphBuilder -> DependencyGraph

Resolution per file happens in two passes:
1. Imports: each import specifier is resolved to module files using the
   profile's import style, producing certain import edges and local bindings
   (imported name -> symbol, alias -> module).
2. Everything else: identifiers resolve against the file's own symbols, its
   bindings, its directory scope (Go, Java) and wildcard imports, yielding
   certain edges. Attribute access on something that is not a known module,
   string literals and dynamic-loading targets yield heuristic edges. A lookup
   whose name is computed at run time links heuristically to everything it
   could reach.

References that resolve to nothing in the tree (builtins, third-party
packages) are dropped.

Symbol identity is (declared name, declaring file): same-name symbols in two
files stay two nodes unless an import links one to the other's importer.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from prunegraph.models import (
    Confidence,
    DependencyGraph,
    FileExtraction,
    RawReference,
    ReferenceEdge,
    ReferenceKind,
    Symbol,
)
from prunegraph.profiles import ImportStyle, LanguageProfile, ProfileRegistry, default_registry

logger = logging.getLogger(__name__)

# Path prefixes stripped when deriving importable module names
SOURCE_ROOTS = ("src", "lib", "python")

RUST_PATH_KEYWORDS = ("crate", "self", "super")


class GraphInconsistencyError(Exception):
    """Raised when declarations contradict the configured uniqueness rules."""

    pass


@dataclass
class _Scope:
    """Names visible inside one file after its imports are resolved."""

    bindings: Dict[str, List[str]] = field(default_factory=dict)  # local name -> node ids
    module_bindings: Dict[str, List[str]] = field(default_factory=dict)  # alias -> module ids
    dotted_bindings: Dict[str, List[str]] = field(default_factory=dict)  # "a.b" -> module ids
    wildcard_modules: List[str] = field(default_factory=list)
    external_names: Set[str] = field(default_factory=set)

    def bind(self, name: str, node_id: str) -> None:
        targets = self.bindings.setdefault(name, [])
        if node_id not in targets:
            targets.append(node_id)

    def bind_module(self, name: str, module_id: str) -> None:
        targets = self.module_bindings.setdefault(name, [])
        if module_id not in targets:
            targets.append(module_id)

    def modules_for_qualifier(self, qualifier: str) -> List[str]:
        if qualifier in self.module_bindings:
            return self.module_bindings[qualifier]
        found: List[str] = []
        for dotted, modules in self.dotted_bindings.items():
            if dotted == qualifier or dotted.endswith("." + qualifier):
                found.extend(m for m in modules if m not in found)
        return found


class GraphBuilder:
    """Builds a DependencyGraph from FileExtractions.

    Usage:
        builder = GraphBuilder(unique_entry_points=["main"])
        for extraction in extractions:
            builder.add_extraction(extraction)
        graph = builder.build()
    """

    def __init__(
        self,
        registry: Optional[ProfileRegistry] = None,
        unique_entry_points: Optional[Sequence[str]] = None,
    ):
        """Initialize the builder.

        Args:
            registry: Profile registry used to look up import styles.
            unique_entry_points: Names at most one file may declare.
        """
        self.registry = registry or default_registry()
        self.unique_entry_points = list(unique_entry_points or [])
        self._extractions: Dict[str, FileExtraction] = {}

        # Index: symbol name -> symbols declaring it (module nodes excluded)
        self._definition_index: Dict[str, List[Symbol]] = {}
        # Index: importable dotted name -> module paths (Python)
        self._dotted_index: Dict[str, List[str]] = {}
        # Index: directory -> paths directly inside it
        self._directory_index: Dict[str, List[str]] = {}
        # Index: path without extension, and bare stem -> paths
        self._stem_index: Dict[str, List[str]] = {}

    def add_extraction(self, extraction: FileExtraction) -> None:
        """Add one file's extraction, replacing any previous one for the path."""
        if extraction.path in self._extractions:
            self.remove_extraction(extraction.path)
        self._extractions[extraction.path] = extraction

        for symbol in extraction.symbols[1:]:
            self._definition_index.setdefault(symbol.name, []).append(symbol)
        for dotted in python_module_names(extraction.path):
            self._dotted_index.setdefault(dotted, []).append(extraction.path)
        directory = posixpath.dirname(extraction.path)
        self._directory_index.setdefault(directory, []).append(extraction.path)
        stem_path = posixpath.splitext(extraction.path)[0]
        for key in {stem_path, posixpath.basename(stem_path)}:
            self._stem_index.setdefault(key, []).append(extraction.path)

    def remove_extraction(self, path: str) -> None:
        """Remove a file's extraction and its index entries."""
        extraction = self._extractions.pop(path, None)
        if extraction is None:
            return
        for symbol in extraction.symbols[1:]:
            remaining = [s for s in self._definition_index.get(symbol.name, []) if s.path != path]
            if remaining:
                self._definition_index[symbol.name] = remaining
            else:
                self._definition_index.pop(symbol.name, None)
        for index in (self._dotted_index, self._directory_index, self._stem_index):
            for key in list(index):
                index[key] = [p for p in index[key] if p != path]
                if not index[key]:
                    del index[key]

    def build(self) -> DependencyGraph:
        """Build the graph from every added extraction.

        Returns:
            A DependencyGraph whose edges all resolve to nodes in it.

        Raises:
            GraphInconsistencyError: If a name in unique_entry_points is
                declared at top level by more than one file.
        """
        self._check_unique_entry_points()

        graph = DependencyGraph()
        for path in sorted(self._extractions):
            extraction = self._extractions[path]
            graph.add_file(extraction.source_file)
            for symbol in extraction.symbols:
                graph.add_node(symbol)

        seen: Set[Tuple[str, str, str, str, int]] = set()
        for path in sorted(self._extractions):
            extraction = self._extractions[path]
            if extraction.is_opaque:
                continue
            profile = self.registry.get(extraction.source_file.language)
            if profile is None:
                continue
            for edge in self._resolve_file(extraction, profile):
                key = (edge.source, edge.target, edge.kind, edge.confidence, edge.line_number)
                if key in seen or edge.source == edge.target:
                    continue
                seen.add(key)
                graph.add_edge(edge)

        is_valid, errors = graph.validate()
        if not is_valid:
            raise GraphInconsistencyError("; ".join(errors))

        logger.info(f"Built dependency graph: {len(graph)} nodes, {len(graph.edges())} edges")
        return graph

    def _check_unique_entry_points(self) -> None:
        for name in self.unique_entry_points:
            declaring = sorted({s.path for s in self._definition_index.get(name, [])})
            if len(declaring) > 1:
                raise GraphInconsistencyError(
                    f"Entry point '{name}' is declared in multiple files: {', '.join(declaring)}"
                )

    # -- per-file resolution ----------------------------------------------

    def _resolve_file(
        self, extraction: FileExtraction, profile: LanguageProfile
    ) -> List[ReferenceEdge]:
        edges: List[ReferenceEdge] = []
        scope = _Scope()

        for ref in extraction.references:
            if ref.kind == ReferenceKind.IMPORT:
                edges.extend(self._resolve_import(extraction, profile, ref, scope))

        for ref in extraction.references:
            if ref.kind == ReferenceKind.CALL:
                edges.extend(self._resolve_identifier(extraction, profile, ref, scope))
            elif ref.kind == ReferenceKind.STRING_MENTION:
                edges.extend(self._resolve_mention(extraction, ref))
            elif ref.kind == ReferenceKind.DYNAMIC_REFERENCE and ref.is_wildcard:
                edges.extend(self._resolve_computed(extraction, profile, ref, scope))
            elif ref.kind == ReferenceKind.DYNAMIC_REFERENCE:
                edges.extend(self._resolve_dynamic(extraction, profile, ref))
        return edges

    def _resolve_import(
        self,
        extraction: FileExtraction,
        profile: LanguageProfile,
        ref: RawReference,
        scope: _Scope,
    ) -> List[ReferenceEdge]:
        edges: List[ReferenceEdge] = []
        modules = self.resolve_module(profile, extraction.path, ref.name, ref.relative_level)

        for module_id in modules:
            edges.append(self._edge(ref, module_id, ReferenceKind.IMPORT, Confidence.CERTAIN))
            if profile.import_style == ImportStyle.PYTHON_MODULE:
                # Importing a submodule runs every enclosing package's __init__.py
                for package_id in self._enclosing_packages(module_id):
                    edges.append(
                        self._edge(ref, package_id, ReferenceKind.IMPORT, Confidence.CERTAIN)
                    )

        # Names bound to modules outside the tree (third-party, standard
        # library) are remembered so attribute access on them is not
        # mistaken for dynamic dispatch
        if ref.alias:
            for module_id in modules:
                scope.bind_module(ref.alias, module_id)
            if not modules:
                scope.external_names.add(ref.alias)
        elif not ref.imported_names and not ref.is_wildcard:
            binding = self._default_binding(profile, ref.name)
            if not modules:
                scope.external_names.add(binding)
            elif profile.import_style == ImportStyle.PYTHON_MODULE and "." in ref.name:
                # "import a.b" binds "a"; "a.b" is reached through it
                for package_id in self._resolve_python(extraction.path, binding, 0):
                    scope.bind_module(binding, package_id)
                scope.dotted_bindings.setdefault(ref.name, []).extend(modules)
            else:
                for module_id in modules:
                    scope.bind_module(binding, module_id)

        if ref.is_wildcard:
            scope.wildcard_modules.extend(m for m in modules if m not in scope.wildcard_modules)

        for name, alias in ref.imported_names:
            symbols = [self._symbol_in(module_id, name) for module_id in modules]
            found = [s for s in symbols if s is not None]
            if found:
                for symbol in found:
                    edges.append(
                        self._edge(ref, symbol.node_id, ReferenceKind.IMPORT, Confidence.CERTAIN)
                    )
                    scope.bind(alias, symbol.node_id)
                continue

            submodules = self.resolve_module(
                profile,
                extraction.path,
                join_specifier(profile.import_style, ref.name, name),
                ref.relative_level,
            )
            if submodules:
                for module_id in submodules:
                    edges.append(
                        self._edge(ref, module_id, ReferenceKind.IMPORT, Confidence.CERTAIN)
                    )
                    scope.bind_module(alias, module_id)
                    scope.bind(alias, module_id)
                continue

            if not modules:
                scope.external_names.add(alias)
            # Re-exported or dynamically defined: the import edge to the
            # module keeps whatever it re-exports reachable
            for module_id in modules:
                scope.bind(alias, module_id)
        return edges

    @staticmethod
    def _default_binding(profile: LanguageProfile, specifier: str) -> str:
        """Local name an un-aliased module import binds."""
        style = profile.import_style
        if style == ImportStyle.PYTHON_MODULE:
            return specifier.split(".")[0]
        if style == ImportStyle.RUST_MODULE:
            return specifier.split("::")[-1]
        if style in (ImportStyle.DIRECTORY_PACKAGE, ImportStyle.SOURCE_PATH):
            return posixpath.basename(specifier).split(".")[0]
        if style == ImportStyle.QUALIFIED_CLASS:
            return specifier.split(".")[-1]
        return specifier

    def _resolve_identifier(
        self,
        extraction: FileExtraction,
        profile: LanguageProfile,
        ref: RawReference,
        scope: _Scope,
    ) -> List[ReferenceEdge]:
        if ref.qualifier is None:
            return self._resolve_bare_name(extraction, profile, ref, scope)

        if ref.qualifier:
            modules = scope.modules_for_qualifier(ref.qualifier)
            if modules:
                edges: List[ReferenceEdge] = []
                for module_id in modules:
                    symbol = self._symbol_in(module_id, ref.name)
                    if symbol is not None:
                        edges.append(
                            self._edge(ref, symbol.node_id, ReferenceKind.CALL, Confidence.CERTAIN)
                        )
                if not edges:
                    # Attribute of a known module that is not a top-level
                    # symbol: maybe a submodule
                    dotted = f"{ref.qualifier}.{ref.name}"
                    for module_id in self._dotted_index.get(dotted, []):
                        edges.append(
                            self._edge(ref, module_id, ReferenceKind.CALL, Confidence.CERTAIN)
                        )
                return edges
            if ref.qualifier in scope.external_names:
                return []

        # Receiver is an object: the method could be any same-named symbol
        return [
            self._edge(ref, symbol.node_id, ReferenceKind.DYNAMIC_REFERENCE, Confidence.HEURISTIC)
            for symbol in self._definition_index.get(ref.name, [])
            if symbol.node_id != ref.source
        ]

    def _resolve_bare_name(
        self,
        extraction: FileExtraction,
        profile: LanguageProfile,
        ref: RawReference,
        scope: _Scope,
    ) -> List[ReferenceEdge]:
        local = extraction.get_symbol(ref.name)
        if local is not None:
            return [self._edge(ref, local.node_id, ReferenceKind.CALL, Confidence.CERTAIN)]

        targets: List[str] = list(scope.bindings.get(ref.name, []))
        targets.extend(t for t in scope.module_bindings.get(ref.name, []) if t not in targets)
        if not targets and profile.directory_scope:
            directory = posixpath.dirname(extraction.path)
            for path in sorted(self._directory_index.get(directory, [])):
                sibling = self._extractions[path]
                if path == extraction.path or sibling.source_file.language != profile.language:
                    continue
                symbol = sibling.get_symbol(ref.name)
                if symbol is not None:
                    targets.append(symbol.node_id)
        if not targets:
            for module_id in scope.wildcard_modules:
                symbol = self._symbol_in(module_id, ref.name)
                if symbol is not None:
                    targets.append(symbol.node_id)

        return [self._edge(ref, t, ReferenceKind.CALL, Confidence.CERTAIN) for t in targets]

    def _resolve_mention(self, extraction: FileExtraction, ref: RawReference) -> List[ReferenceEdge]:
        """String literals naming a symbol, module path or "module:attr" entry."""
        targets: Set[str] = set()
        for value in {ref.name, *ref.name.split(":")}:
            if not value:
                continue
            targets.update(s.node_id for s in self._definition_index.get(value, []))
            targets.update(self._modules_named(value))
            if "." in value:
                module_part, _, attr = value.rpartition(".")
                for module_id in self._modules_named(module_part):
                    symbol = self._symbol_in(module_id, attr)
                    if symbol is not None:
                        targets.add(symbol.node_id)
        targets.discard(ref.source)
        return [
            self._edge(ref, target, ReferenceKind.STRING_MENTION, Confidence.HEURISTIC)
            for target in sorted(targets)
        ]

    def _resolve_dynamic(
        self, extraction: FileExtraction, profile: LanguageProfile, ref: RawReference
    ) -> List[ReferenceEdge]:
        """Targets of dynamic loading: same-file symbol, module, then any symbol."""
        targets: List[str] = []
        local = extraction.get_symbol(ref.name)
        if local is not None:
            targets.append(local.node_id)
        else:
            targets.extend(self.resolve_module(profile, extraction.path, ref.name, 0))
            targets.extend(m for m in self._modules_named(ref.name) if m not in targets)
            if not targets:
                targets.extend(s.node_id for s in self._definition_index.get(ref.name, []))
        return [
            self._edge(ref, target, ReferenceKind.DYNAMIC_REFERENCE, Confidence.HEURISTIC)
            for target in targets
            if target != ref.source
        ]

    def _resolve_computed(
        self,
        extraction: FileExtraction,
        profile: LanguageProfile,
        ref: RawReference,
        scope: _Scope,
    ) -> List[ReferenceEdge]:
        """Targets of a lookup whose name is only known at run time.

        Any top-level symbol of the file may be looked up, as may the symbols
        of a module bound to the looked-up object. A computed module load may
        reach any module of the same language at or below the file's
        directory.
        """
        targets: Dict[str, None] = dict.fromkeys(s.node_id for s in extraction.symbols[1:])
        if ref.qualifier:
            for module_id in scope.modules_for_qualifier(ref.qualifier):
                module = self._extractions.get(module_id)
                if module is not None:
                    targets.update(dict.fromkeys(s.node_id for s in module.symbols[1:]))
        if ref.loads_modules:
            directory = posixpath.dirname(extraction.path)
            prefix = f"{directory}/" if directory else ""
            for path in sorted(self._extractions):
                other = self._extractions[path]
                if (
                    path != extraction.path
                    and path.startswith(prefix)
                    and self.registry.get(other.source_file.language) is profile
                ):
                    targets[path] = None
        return [
            self._edge(ref, target, ReferenceKind.DYNAMIC_REFERENCE, Confidence.HEURISTIC)
            for target in targets
            if target != ref.source
        ]

    # -- module resolution ------------------------------------------------

    def resolve_module(
        self, profile: LanguageProfile, importer: str, specifier: str, level: int = 0
    ) -> List[str]:
        """Resolve an import specifier to module node ids (file paths).

        Dispatches on the profile's import style. Returns an empty list for
        specifiers outside the scanned tree.
        """
        style = profile.import_style
        if style == ImportStyle.PYTHON_MODULE:
            return self._resolve_python(importer, specifier, level)
        if style == ImportStyle.RELATIVE_PATH:
            return self._resolve_relative_path(profile, importer, specifier)
        if style == ImportStyle.DIRECTORY_PACKAGE:
            return self._resolve_directory_package(profile, specifier)
        if style == ImportStyle.QUALIFIED_CLASS:
            return self._resolve_qualified_class(profile, specifier)
        if style == ImportStyle.RUST_MODULE:
            return self._resolve_rust(importer, specifier)
        if style == ImportStyle.SOURCE_PATH:
            return self._resolve_source_path(importer, specifier)
        logger.warning(f"Unknown import style '{style}' for {importer}")
        return []

    def _resolve_python(self, importer: str, specifier: str, level: int) -> List[str]:
        if level:
            package = posixpath.dirname(importer)
            for _ in range(level - 1):
                package = posixpath.dirname(package)
            base = posixpath.join(package, *specifier.split(".")) if specifier else package
            return self._existing(
                [f"{base}.py", f"{base}.pyi", posixpath.join(base, "__init__.py")]
            )
        if not specifier:
            return []
        # Prefer full-path matches; fall back to every suffix match
        candidates = self._dotted_index.get(specifier, [])
        full = [p for p in candidates if specifier in rooted_python_module_names(p)]
        return sorted(full or candidates)

    def _resolve_relative_path(
        self, profile: LanguageProfile, importer: str, specifier: str
    ) -> List[str]:
        if not specifier.startswith("."):
            return []
        base = posixpath.normpath(posixpath.join(posixpath.dirname(importer), specifier))
        candidates = [base]
        candidates.extend(f"{base}{ext}" for ext in profile.module_extensions)
        candidates.extend(posixpath.join(base, f"index{ext}") for ext in profile.module_extensions)
        found = self._existing(candidates)
        return found[:1]

    def _resolve_directory_package(self, profile: LanguageProfile, specifier: str) -> List[str]:
        found: List[str] = []
        for directory in sorted(self._directory_index):
            if not directory:
                continue
            if specifier == directory or specifier.endswith("/" + directory):
                found.extend(
                    p
                    for p in sorted(self._directory_index[directory])
                    if self._extractions[p].source_file.language == profile.language
                )
        return found

    def _resolve_qualified_class(self, profile: LanguageProfile, specifier: str) -> List[str]:
        parts = specifier.split(".")
        # Static imports name a member; retry with the enclosing class
        for length in (len(parts), len(parts) - 1):
            if length <= 0:
                break
            relative = "/".join(parts[:length])
            found = self._paths_with_suffix([relative + ext for ext in profile.module_extensions])
            if found:
                return found
        # Wildcard import of a package directory
        return self._resolve_directory_package(profile, "/".join(parts))

    def _resolve_rust(self, importer: str, specifier: str) -> List[str]:
        segments = [s for s in specifier.split("::") if s and s not in RUST_PATH_KEYWORDS]
        if not segments:
            return sorted(
                p for p in self._extractions if posixpath.basename(p) in ("lib.rs", "main.rs")
            )
        if len(segments) == 1:
            directory = posixpath.dirname(importer)
            stem = posixpath.basename(importer)[: -len(".rs")]
            name = segments[0]
            local = [
                posixpath.join(directory, f"{name}.rs"),
                posixpath.join(directory, name, "mod.rs"),
            ]
            if stem not in ("mod", "lib", "main"):
                local.append(posixpath.join(directory, stem, f"{name}.rs"))
            found = self._existing(local)
            if found:
                return found
        relative = "/".join(segments)
        return self._paths_with_suffix([f"{relative}.rs", f"{relative}/mod.rs"])

    def _resolve_source_path(self, importer: str, specifier: str) -> List[str]:
        candidates = [
            posixpath.normpath(posixpath.join(posixpath.dirname(importer), specifier)),
            posixpath.normpath(specifier.lstrip("/")),
        ]
        return self._existing(candidates)

    def _enclosing_packages(self, module_id: str) -> List[str]:
        packages: List[str] = []
        directory = posixpath.dirname(module_id)
        while directory:
            init = posixpath.join(directory, "__init__.py")
            if init != module_id and init in self._extractions:
                packages.append(init)
            directory = posixpath.dirname(directory)
        return packages

    def _existing(self, candidates: Iterable[str]) -> List[str]:
        found: List[str] = []
        for candidate in candidates:
            if candidate in self._extractions and candidate not in found:
                found.append(candidate)
        return found

    def _paths_with_suffix(self, suffixes: Sequence[str]) -> List[str]:
        return sorted(
            p
            for p in self._extractions
            if any(p == suffix or p.endswith("/" + suffix) for suffix in suffixes)
        )

    def _modules_named(self, value: str) -> List[str]:
        """Modules a string could name: path, path without extension, dotted name or stem."""
        found: Set[str] = set()
        if value in self._extractions:
            found.add(value)
        found.update(self._dotted_index.get(value, []))
        found.update(self._stem_index.get(value, []))
        return sorted(found)

    def _symbol_in(self, module_id: str, name: str) -> Optional[Symbol]:
        extraction = self._extractions.get(module_id)
        if extraction is None:
            return None
        return extraction.get_symbol(name)

    @staticmethod
    def _edge(ref: RawReference, target: str, kind: str, confidence: str) -> ReferenceEdge:
        return ReferenceEdge(
            source=ref.source,
            target=target,
            kind=kind,
            confidence=confidence,
            line_number=ref.line_number,
        )


def python_module_names(path: str) -> List[str]:
    """Importable dotted names for a Python file, longest first.

    "src/pkg/util.py" yields ["src.pkg.util", "pkg.util", "util"];
    a package's __init__.py is named after its directory.
    """
    if not path.endswith((".py", ".pyi")):
        return []
    parts = path.rsplit(".", 1)[0].split("/")
    if parts[-1] == "__init__":
        parts = parts[:-1]
    if not parts:
        return []
    return [".".join(parts[i:]) for i in range(len(parts))]


def rooted_python_module_names(path: str) -> List[str]:
    """Dotted names importable from the project root or a source root."""
    names = python_module_names(path)
    if not names:
        return []
    rooted = [names[0]]
    if len(names) > 1 and names[0].split(".", 1)[0] in SOURCE_ROOTS:
        rooted.append(names[1])
    return rooted


def join_specifier(style: str, specifier: str, name: str) -> str:
    """Specifier of a child module named name."""
    if style == ImportStyle.RUST_MODULE:
        return f"{specifier}::{name}" if specifier else name
    if style in (ImportStyle.PYTHON_MODULE, ImportStyle.QUALIFIED_CLASS):
        return f"{specifier}.{name}" if specifier else name
    return posixpath.join(specifier, name)
