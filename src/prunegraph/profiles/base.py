# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Language profile records and the profile registry.

A LanguageProfile is an immutable capability set: symbol-definition patterns,
import patterns, dynamic-reference patterns and the lexical facts needed to
mask comments and strings. Profiles carry no behaviour of their own. The
extractor and the graph builder select behaviour from small tag tables
(block_style, visibility_rule, import_style), so adding a language means
adding data, not subclassing.

Registry lookup is by language tag; language detection is by extension
first and shebang second.
"""

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Pattern, Tuple

logger = logging.getLogger(__name__)


class BlockStyle:
    """How a declaration's span end is found."""

    INDENT = "indent"  # ends before the next line at column 0
    BRACES = "braces"  # ends at the brace matching the first "{"


class VisibilityRule:
    """How a declaration's visibility is decided."""

    EXPORT_LIST = "export_list"  # __all__ -> public, leading "_" -> private
    EXPORT_KEYWORD = "export_keyword"  # "export"/"pub"/"public" -> public, else private
    CAPITALIZED = "capitalized"  # Go: Upper -> public, lower -> private
    NONE = "none"  # always unknown


class ImportStyle:
    """How an import specifier resolves to files (see graph_builder)."""

    PYTHON_MODULE = "python_module"
    RELATIVE_PATH = "relative_path"
    DIRECTORY_PACKAGE = "directory_package"
    QUALIFIED_CLASS = "qualified_class"
    RUST_MODULE = "rust_module"
    SOURCE_PATH = "source_path"


@dataclass(frozen=True)
class SymbolPattern:
    """Matches a top-level declaration.

    Named groups: ``name`` (required), ``params`` (optional parameter list),
    ``export`` (optional; non-empty means explicitly exported).
    """

    kind: str  # SymbolKind value
    regex: Pattern[str]


@dataclass(frozen=True)
class ImportPattern:
    """Matches an import statement in comment-free source.

    Named groups (all optional): ``module`` (specifier), ``modules`` (comma
    list of ``spec [as alias]``), ``names`` (comma list of imported names),
    ``name`` (single imported name), ``alias``/``default`` (local binding of
    the module), ``wildcard``, ``level`` (leading dots), ``block`` (text
    re-scanned with ``item_regex``).
    """

    regex: Pattern[str]
    item_regex: Optional[Pattern[str]] = None


@dataclass(frozen=True)
class DynamicPattern:
    """Matches a dynamic-loading or reflective lookup.

    When the ``target`` group matched a literal, a heuristic edge is created
    toward it. Otherwise the target is computed at run time and every
    top-level symbol of the file (and of the module bound to the ``object``
    group, if any) may be the one looked up. ``loads_modules`` marks loaders
    that take a computed module name, which may load any module at or below
    the loading file's directory.
    """

    pattern_type: str
    regex: Pattern[str]
    loads_modules: bool = False


@dataclass(frozen=True)
class LanguageProfile:
    """Per-language capability set used by the extractor and graph builder."""

    language: str
    extensions: Tuple[str, ...]
    block_style: str
    visibility_rule: str
    import_style: str
    symbol_patterns: Tuple[SymbolPattern, ...]
    import_patterns: Tuple[ImportPattern, ...]
    dynamic_patterns: Tuple[DynamicPattern, ...] = ()
    shebangs: Tuple[str, ...] = ()
    line_comments: Tuple[str, ...] = ()
    block_comments: Tuple[Tuple[str, str], ...] = ()
    string_delimiters: Tuple[str, ...] = ('"', "'")
    member_separators: Tuple[str, ...] = (".",)
    export_list_regex: Optional[Pattern[str]] = None
    script_markers: Tuple[Pattern[str], ...] = ()
    entry_file_patterns: Tuple[str, ...] = ()
    decorator_prefix: Optional[str] = None
    transparent_decorators: FrozenSet[str] = field(default_factory=frozenset)
    directory_scope: bool = False  # files in one directory share names (Go, Java)
    module_extensions: Tuple[str, ...] = ()  # tried when resolving specifiers

    def is_entry_file(self, rel_path: str) -> bool:
        """Check whether a path names an entry file (tests, main modules, ...)."""
        name = rel_path.rsplit("/", 1)[-1]
        return any(
            fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern)
            for pattern in self.entry_file_patterns
        )


def compile_multiline(pattern: str) -> Pattern[str]:
    """Compile a pattern anchored per line."""
    return re.compile(pattern, re.MULTILINE)


class ProfileRegistry:
    """Registry of language profiles keyed by language tag.

    Thread Safety:
        Register all profiles during initialization; lookups afterwards are
        read-only and safe from worker threads.
    """

    def __init__(self) -> None:
        self._profiles: Dict[str, LanguageProfile] = {}
        self._by_extension: Dict[str, str] = {}

    def register(self, profile: LanguageProfile) -> None:
        """Register a profile, replacing any profile with the same tag.

        Raises:
            TypeError: If profile is not a LanguageProfile instance.
        """
        if not isinstance(profile, LanguageProfile):
            raise TypeError(f"Profile must be a LanguageProfile instance, got {type(profile)}")

        self._profiles[profile.language] = profile
        for extension in profile.extensions:
            self._by_extension[extension.lower()] = profile.language

        logger.debug(f"Registered language profile '{profile.language}'")

    def get(self, language: str) -> Optional[LanguageProfile]:
        """Get the profile for a language tag, or None if unprofiled."""
        return self._profiles.get(language)

    def languages(self) -> List[str]:
        return sorted(self._profiles)

    def language_for_extension(self, extension: str) -> Optional[str]:
        return self._by_extension.get(extension.lower())

    def language_for_shebang(self, first_line: str) -> Optional[str]:
        """Match a shebang line against the registered interpreters."""
        if not first_line.startswith("#!"):
            return None
        interpreter_line = first_line[2:].strip()
        for language in sorted(self._profiles):
            for shebang in self._profiles[language].shebangs:
                if re.search(rf"(^|[/\s]){re.escape(shebang)}[\d.]*(\s|$)", interpreter_line):
                    return language
        return None

    def count(self) -> int:
        return len(self._profiles)
