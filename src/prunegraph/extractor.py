# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Symbol extraction driven by language profiles.

Pipeline for one file:
1. Masking: comments are blanked everywhere; string contents are blanked in
   the identifier view only. Offsets and line breaks are preserved, so every
   view shares one coordinate system.
2. Declarations: the profile's symbol patterns are matched at top level
   (column 0, outside any bracket). The span end follows the profile's block
   style; decorator lines above a declaration belong to its span.
3. References: import statements, identifiers (with their qualifier), string
   literals and dynamic-loading patterns become RawReferences attributed to
   the enclosing declaration, or to the module for top-level code.

Resolution into graph edges is left to the graph builder, which sees every
file. Files without a profile, or whose extraction raises, become opaque
module nodes.
"""

import bisect
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from prunegraph.context import CancellationToken, ExtractionCache
from prunegraph.models import (
    FileExtraction,
    RawReference,
    ReferenceKind,
    SourceFile,
    Symbol,
    SymbolKind,
    Visibility,
    symbol_node_id,
)
from prunegraph.profiles import (
    BlockStyle,
    LanguageProfile,
    ProfileRegistry,
    VisibilityRule,
    default_registry,
)

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"(?<![\w$])[A-Za-z_$][\w$]*")
TRAILING_IDENTIFIER_RE = re.compile(r"([A-Za-z_$][\w$]*)\s*$")
STRING_MENTION_RE = re.compile(r"[A-Za-z_$][\w.:/$-]*")
DECORATOR_NAME_RE = re.compile(r"^\W\s*([\w.$]+)")
MAX_STRING_MENTION_LENGTH = 200

# A declaration header continues past a newline after these tokens...
_CONTINUATION_SUFFIXES = ("=>", "=", ",", "->", "&&", "||", "+", ":", "(", "extends", "implements")
# ...or when the next line starts with one of these
_CONTINUATION_PREFIXES = ("{", "where", "extends", "implements", "throws", ".", "->", "=>", ":", "?")


@dataclass
class MaskedSource:
    """Comment-free views of a file sharing the raw text's offsets."""

    code: str  # comments and string contents blanked
    code_with_strings: str  # comments blanked
    strings: List[Tuple[int, str]] = field(default_factory=list)  # (offset, content)
    literal_line_starts: Set[int] = field(default_factory=set)  # 1-based


def _blank(chars: List[str], start: int, end: int) -> None:
    for k in range(start, end):
        if chars[k] != "\n":
            chars[k] = " "


def _string_prefix(text: str, start: int) -> str:
    """Letters glued to an opening quote (Python f/r/b prefixes)."""
    j = start
    while j > 0 and text[j - 1].isalpha() and start - j < 3:
        j -= 1
    prefix = text[j:start]
    if prefix and all(c in "rRbBuUfF" for c in prefix):
        if j == 0 or not (text[j - 1].isalnum() or text[j - 1] == "_"):
            return prefix
    return ""


def _skip_interpolation(text: str, i: int) -> int:
    """Index of the brace closing an interpolation that starts at i."""
    depth = 1
    while i < len(text):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return len(text)


def _scan_string(
    text: str,
    start: int,
    delimiter: str,
    content_ranges: List[Tuple[int, int]],
    strings: List[Tuple[int, str]],
) -> int:
    """Scan one string literal; returns the offset just past it."""
    n = len(text)
    content_start = start + len(delimiter)
    if delimiter == "`":
        interpolation: Optional[str] = "${"
    elif "f" in _string_prefix(text, start).lower():
        interpolation = "{"
    else:
        interpolation = None
    multiline = len(delimiter) > 1 or delimiter == "`"

    i = content_start
    segment_start = content_start
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "\n" and not multiline:
            break
        if text.startswith(delimiter, i):
            content_ranges.append((segment_start, i))
            strings.append((content_start, text[content_start:i]))
            return i + len(delimiter)
        if interpolation and text.startswith(interpolation, i):
            if interpolation == "{" and text.startswith("{{", i):
                i += 2
                continue
            # Interpolated expressions stay visible as code
            content_ranges.append((segment_start, i + len(interpolation)))
            i = _skip_interpolation(text, i + len(interpolation))
            segment_start = i
            i += 1
            continue
        i += 1

    # Unterminated literal
    content_ranges.append((segment_start, min(i, n)))
    return min(i, n)


def _comment_allowed(text: str, i: int, marker: str) -> bool:
    # "$#" and "${#var}" are shell expansions, not comments
    if marker == "#" and i > 0 and text[i - 1] in "$#{":
        return False
    return True


def mask_source(text: str, profile: LanguageProfile) -> MaskedSource:
    """Blank comments and string contents while preserving offsets.

    Args:
        text: Raw file text.
        profile: Profile supplying comment markers and string delimiters.

    Returns:
        MaskedSource with both views and the string literals found.
    """
    comment_ranges: List[Tuple[int, int]] = []
    content_ranges: List[Tuple[int, int]] = []
    strings: List[Tuple[int, str]] = []
    delimiters = sorted(profile.string_delimiters, key=len, reverse=True)
    n = len(text)

    i = 0
    while i < n:
        advanced = False
        for opener, closer in profile.block_comments:
            if text.startswith(opener, i):
                end = text.find(closer, i + len(opener))
                end = n if end == -1 else end + len(closer)
                comment_ranges.append((i, end))
                i = end
                advanced = True
                break
        if advanced:
            continue
        for marker in profile.line_comments:
            if text.startswith(marker, i) and _comment_allowed(text, i, marker):
                end = text.find("\n", i)
                end = n if end == -1 else end
                comment_ranges.append((i, end))
                i = end
                advanced = True
                break
        if advanced:
            continue
        for delimiter in delimiters:
            if text.startswith(delimiter, i):
                i = _scan_string(text, i, delimiter, content_ranges, strings)
                advanced = True
                break
        if not advanced:
            i += 1

    code = list(text)
    kept = list(text)
    for start, end in comment_ranges:
        _blank(code, start, end)
        _blank(kept, start, end)
    for start, end in content_ranges:
        _blank(code, start, end)

    newlines = [index for index, ch in enumerate(text) if ch == "\n"]
    literal_line_starts: Set[int] = set()
    for start, end in comment_ranges + content_ranges:
        first = bisect.bisect_left(newlines, start)
        last = bisect.bisect_left(newlines, end)
        # The line after the k-th newline (0-based) is line k + 2
        literal_line_starts.update(range(first + 2, last + 2))

    return MaskedSource(
        code="".join(code),
        code_with_strings="".join(kept),
        strings=strings,
        literal_line_starts=literal_line_starts,
    )


def parse_parameters(raw: Optional[str]) -> Optional[Tuple[str, ...]]:
    """Extract parameter names from a raw parameter list.

    Type annotations, defaults and modifiers are dropped; "a: int = 1" and
    "mut a: i32" both yield "a". Bare "*" and "/" markers are skipped.
    """
    if raw is None:
        return None
    names: List[str] = []
    for part in split_top_level(raw):
        part = part.strip().lstrip("*&.").strip()
        for modifier in ("mut ", "ref ", "readonly ", "public ", "private ", "protected ", "final "):
            if part.startswith(modifier):
                part = part[len(modifier) :].strip()
        match = re.match(r"[A-Za-z_$][\w$]*", part)
        if match:
            names.append(match.group())
    return tuple(names)


def split_top_level(text: str, separator: str = ",") -> List[str]:
    """Split on separator outside brackets."""
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in text:
        if ch in "([{<":
            depth += 1
        elif ch in ")]}>":
            depth = max(0, depth - 1)
        if ch == separator and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p for p in parts if p.strip()]


def join_continuations(text: str) -> str:
    """Join backslash-continued lines into one."""
    return text.replace("\\\n", " ")

def parse_name_list(text: str) -> List[Tuple[str, str]]:
    """Parse an import/export name list into (name, local alias) pairs.

    Handles "a", "a as b", "a: b" (destructuring), quoted names and a
    leading "type" modifier.
    """
    pairs: List[Tuple[str, str]] = []
    for item in split_top_level(join_continuations(text)):
        item = item.strip().strip("'\"").strip()
        if item.startswith("type "):
            item = item[5:].strip()
        if not item or item in ("*", "self"):
            continue
        as_match = re.match(r"^([\w$]+)\s+as\s+([\w$]+)$", item)
        colon_match = re.match(r"^([\w$]+)\s*:\s*([\w$]+)$", item)
        if as_match:
            pairs.append((as_match.group(1), as_match.group(2)))
        elif colon_match:
            pairs.append((colon_match.group(1), colon_match.group(2)))
        elif re.match(r"^[\w$]+$", item):
            pairs.append((item, item))
        elif "::" in item:
            last = item.rsplit("::", 1)[-1]
            if re.match(r"^[\w$]+$", last):
                pairs.append((last, last))
    return pairs


def module_display_name(path: str) -> str:
    """Name of a module node: the file stem."""
    filename = path.rsplit("/", 1)[-1]
    return filename.split(".", 1)[0] if not filename.startswith(".") else filename


class _FileState:
    """Per-file working state while extracting one SourceFile."""

    def __init__(self, source_file: SourceFile, profile: LanguageProfile):
        self.source_file = source_file
        self.profile = profile
        self.text = source_file.text
        self.masked = mask_source(self.text, profile)
        self.code_lines = self.masked.code.split("\n")
        self.kept_lines = self.masked.code_with_strings.split("\n")
        self.line_starts = [0]
        for index, ch in enumerate(self.text):
            if ch == "\n":
                self.line_starts.append(index + 1)
        self.depths = self._line_depths(self.masked.code)
        # (declaration line, end line, node id) for enclosing-symbol lookup
        self.spans: List[Tuple[int, int, str]] = []
        self._span_starts: List[int] = []

    def set_spans(self, spans: List[Tuple[int, int, str]]) -> None:
        self.spans = sorted(spans)
        self._span_starts = [decl_line for decl_line, _, _ in self.spans]

    @staticmethod
    def _line_depths(code: str) -> List[int]:
        """Bracket nesting depth at the start of every line (index 0 = line 1)."""
        depth = 0
        depths = [0]
        for ch in code:
            if ch == "\n":
                depths.append(depth)
            elif ch in "([{":
                depth += 1
            elif ch in ")]}":
                depth = max(0, depth - 1)
        return depths

    def line_of(self, offset: int) -> int:
        return bisect.bisect_right(self.line_starts, offset)

    def enclosing(self, line: int) -> str:
        """Node id of the declaration containing line, else the module."""
        index = bisect.bisect_right(self._span_starts, line) - 1
        if index >= 0:
            _, end_line, node_id = self.spans[index]
            if line <= end_line:
                return node_id
        return self.source_file.path


class SymbolExtractor:
    """Extracts symbols and raw references from source files.

    Thread Safety:
        extract() keeps all working state per call; the shared cache is
        lock-protected. Safe to call from pool workers.
    """

    def __init__(
        self,
        registry: Optional[ProfileRegistry] = None,
        languages: Optional[Sequence[str]] = None,
        cache: Optional[ExtractionCache] = None,
    ):
        """Initialize the extractor.

        Args:
            registry: Profile registry (default: built-in profiles).
            languages: Language tags to profile; empty or None means all.
                Files in other languages become opaque nodes.
            cache: Optional extraction cache shared across runs.
        """
        self.registry = registry or default_registry()
        self.languages: Set[str] = set(languages or [])
        self.cache = cache

    def profile_for(self, language: str) -> Optional[LanguageProfile]:
        if self.languages and language not in self.languages:
            return None
        return self.registry.get(language)

    def extract(self, source_file: SourceFile) -> FileExtraction:
        """Extract one file.

        Never raises for file content: a profile failure degrades the file to
        an opaque node and is logged as a warning.
        """
        profile = self.profile_for(source_file.language)
        if profile is None:
            return self._opaque(source_file)

        if self.cache is not None:
            cached = self.cache.get(
                source_file.path, source_file.content_hash, source_file.language
            )
            if cached is not None:
                logger.debug(f"Cache hit for {source_file.path}")
                return cached

        try:
            extraction = self._extract_with_profile(source_file, profile)
        except Exception as e:
            logger.warning(
                f"⚠️ Extraction failed for {source_file.path}, treating it as opaque: {e}"
            )
            return self._opaque(source_file, error_message=str(e))

        if self.cache is not None:
            self.cache.set(extraction)
        return extraction

    def extract_all(
        self,
        files: Sequence[SourceFile],
        max_workers: int = 1,
        token: Optional[CancellationToken] = None,
    ) -> List[FileExtraction]:
        """Extract many files on a bounded worker pool.

        Raises:
            AnalysisCancelled: If the token is cancelled.
        """
        token = token or CancellationToken()

        def work(source_file: SourceFile) -> Optional[FileExtraction]:
            if token.is_cancelled():
                return None
            return self.extract(source_file)

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            results = list(executor.map(work, files))
        token.raise_if_cancelled()
        return [r for r in results if r is not None]

    def _opaque(self, source_file: SourceFile, error_message: Optional[str] = None) -> FileExtraction:
        module = Symbol(
            node_id=source_file.path,
            path=source_file.path,
            kind=SymbolKind.MODULE,
            name=module_display_name(source_file.path),
            line_start=1,
            line_end=max(1, len(source_file.lines)),
            opaque=True,
        )
        return FileExtraction(
            source_file=source_file,
            symbols=[module],
            references=[],
            is_opaque=True,
            error_message=error_message,
        )

    def _extract_with_profile(
        self, source_file: SourceFile, profile: LanguageProfile
    ) -> FileExtraction:
        state = _FileState(source_file, profile)
        path = source_file.path

        exported = self._export_list(state)
        declarations = self._find_declarations(state, exported)

        module = Symbol(
            node_id=path,
            path=path,
            kind=SymbolKind.MODULE,
            name=module_display_name(path),
            line_start=1,
            line_end=max(1, len(source_file.lines)),
        )
        symbols = [module] + [d[0] for d in declarations]
        state.set_spans([(decl_line, s.line_end, s.node_id) for s, decl_line, _ in declarations])

        references: List[RawReference] = []
        import_ranges = self._imports(state, references)
        self._decorator_registrations(state, declarations, references)
        name_offsets = {offset for _, _, offset in declarations}
        self._identifiers(state, name_offsets, import_ranges, references)
        self._string_mentions(state, import_ranges, references)
        dynamic_types = self._dynamic_patterns(state, references)

        is_script = False
        script_symbols: List[str] = []
        for marker in profile.script_markers:
            for match in marker.finditer(state.text):
                is_script = True
                if "name" in marker.groupindex and match.group("name"):
                    script_symbols.append(match.group("name"))

        bodies = {
            symbol.node_id: self._body(state, symbol, offset)
            for symbol, _, offset in declarations
        }

        logger.debug(
            f"Extracted {len(symbols) - 1} symbols and {len(references)} references from {path}"
        )
        return FileExtraction(
            source_file=source_file,
            symbols=symbols,
            references=references,
            is_script=is_script,
            is_entry_file=profile.is_entry_file(path),
            script_symbols=sorted(set(script_symbols)),
            dynamic_pattern_types=dynamic_types,
            bodies=bodies,
        )

    # -- declarations -----------------------------------------------------

    def _export_list(self, state: _FileState) -> Set[str]:
        """Names listed in __all__, export {...}, module.exports and friends."""
        regex = state.profile.export_list_regex
        names: Set[str] = set()
        if regex is None:
            return names
        for match in regex.finditer(state.masked.code_with_strings):
            for group_name, value in match.groupdict().items():
                if not value:
                    continue
                if group_name.endswith("names"):
                    # "local as exported" and "exported: local" both name the local
                    for name, alias in parse_name_list(value):
                        names.add(alias if ":" in value and name != alias else name)
                elif group_name == "single":
                    names.add(value)
        return names

    def _find_declarations(
        self, state: _FileState, exported: Set[str]
    ) -> List[Tuple[Symbol, int, int]]:
        """Top-level declarations as (symbol, declaration line, name offset)."""
        profile = state.profile
        code = state.masked.code
        claimed_lines: Set[int] = set()
        seen_names: Set[str] = set()
        found: List[Tuple[Symbol, int, int]] = []

        for pattern in profile.symbol_patterns:
            for match in pattern.regex.finditer(code):
                decl_line = state.line_of(match.start())
                if decl_line in claimed_lines or not self._is_top_level(state, decl_line):
                    continue
                name = match.group("name")
                if name in seen_names:
                    logger.debug(f"Ignoring redeclaration of {name} in {state.source_file.path}")
                    continue
                claimed_lines.add(decl_line)
                seen_names.add(name)

                start_line = self._decorator_start(state, decl_line)
                end_line = self._block_end(state, match.end(), decl_line)
                groups = match.groupdict()
                raw_params = next(
                    (
                        value
                        for key, value in groups.items()
                        if value is not None and (key.endswith("params") or key.endswith("param"))
                    ),
                    None,
                )
                if raw_params is None and pattern.kind == SymbolKind.FUNCTION:
                    raw_params = ""

                symbol = Symbol(
                    node_id=symbol_node_id(state.source_file.path, name),
                    path=state.source_file.path,
                    kind=pattern.kind,
                    name=name,
                    line_start=start_line,
                    line_end=max(end_line, decl_line),
                    visibility=self._visibility(profile, name, groups.get("export"), exported),
                    parameters=parse_parameters(raw_params),
                )
                found.append((symbol, decl_line, match.start("name")))

        found.sort(key=lambda item: item[0].line_start)
        return found

    def _is_top_level(self, state: _FileState, line: int) -> bool:
        text = state.code_lines[line - 1]
        if not text or text[0] in " \t":
            return False
        if line in state.masked.literal_line_starts:
            return False
        return state.depths[line - 1] == 0

    def _decorator_start(self, state: _FileState, decl_line: int) -> int:
        prefix = state.profile.decorator_prefix
        if not prefix:
            return decl_line
        first = decl_line
        index = decl_line - 2
        while index >= 0:
            line = state.code_lines[index]
            if line.startswith(prefix):
                first = index + 1
            elif not (line.strip() and state.depths[index] > 0):
                break
            index -= 1
        return first

    def _block_end(self, state: _FileState, offset: int, decl_line: int) -> int:
        if state.profile.block_style == BlockStyle.INDENT:
            return self._indent_block_end(state, decl_line)
        return state.line_of(self._brace_block_end(state.masked.code, offset))

    def _indent_block_end(self, state: _FileState, decl_line: int) -> int:
        last_content = decl_line
        for index in range(decl_line, len(state.code_lines)):
            line = state.code_lines[index]
            if not line.strip():
                continue
            line_number = index + 1
            if (
                line[0] not in " \t"
                and state.depths[index] == 0
                and line_number not in state.masked.literal_line_starts
            ):
                break
            last_content = line_number
        return last_content

    def _brace_block_end(self, code: str, offset: int) -> int:
        """Offset of the last character of a brace-style declaration."""
        n = len(code)
        depth = 0
        i = offset
        while i < n:
            ch = code[i]
            if ch in "([":
                depth += 1
            elif ch in ")]":
                depth = max(0, depth - 1)
            elif ch == "{" and depth == 0:
                return self._matching_brace(code, i)
            elif ch == ";" and depth == 0:
                return i
            elif ch == "\n" and depth == 0 and not self._header_continues(code, i):
                return max(offset, i - 1)
            i += 1
        return max(offset, n - 1)

    @staticmethod
    def _matching_brace(code: str, start: int) -> int:
        depth = 0
        for i in range(start, len(code)):
            if code[i] == "{":
                depth += 1
            elif code[i] == "}":
                depth -= 1
                if depth == 0:
                    return i
        return len(code) - 1

    @staticmethod
    def _header_continues(code: str, newline: int) -> bool:
        line_start = code.rfind("\n", 0, newline) + 1
        current = code[line_start:newline].rstrip()
        if current.endswith(_CONTINUATION_SUFFIXES):
            return True
        rest = code[newline + 1 :]
        for line in rest.split("\n", 20)[:20]:
            stripped = line.strip()
            if stripped:
                return stripped.startswith(_CONTINUATION_PREFIXES)
        return False

    @staticmethod
    def _visibility(
        profile: LanguageProfile, name: str, export_group: Optional[str], exported: Set[str]
    ) -> str:
        rule = profile.visibility_rule
        if rule == VisibilityRule.EXPORT_LIST:
            if name in exported:
                return Visibility.PUBLIC
            if name.startswith("_") or exported:
                return Visibility.PRIVATE
            return Visibility.UNKNOWN
        if rule == VisibilityRule.EXPORT_KEYWORD:
            if export_group or name in exported:
                return Visibility.PUBLIC
            return Visibility.PRIVATE
        if rule == VisibilityRule.CAPITALIZED:
            return Visibility.PUBLIC if name[:1].isupper() else Visibility.PRIVATE
        return Visibility.UNKNOWN

    def _body(self, state: _FileState, symbol: Symbol, name_offset: int) -> str:
        """Comment-free declaration text with the declared name blanked out.

        Blanking the name lets renamed copies of the same body compare equal.
        """
        start = state.line_starts[symbol.line_start - 1]
        end_line = symbol.line_end
        end = state.line_starts[end_line] - 1 if end_line < len(state.line_starts) else len(state.text)
        kept = state.masked.code_with_strings
        relative = name_offset - start
        body = kept[start:end]
        if 0 <= relative < len(body):
            body = body[:relative] + "_" + body[relative + len(symbol.name) :]
        return body

    # -- references -------------------------------------------------------

    def _imports(self, state: _FileState, references: List[RawReference]) -> List[Tuple[int, int]]:
        """Record import references; returns the offset ranges of import statements."""
        ranges: List[Tuple[int, int]] = []
        seen_starts: Set[int] = set()
        text = state.masked.code_with_strings

        for pattern in state.profile.import_patterns:
            for match in pattern.regex.finditer(text):
                if match.start() in seen_starts:
                    continue
                seen_starts.add(match.start())
                ranges.append((match.start(), match.end()))
                line = state.line_of(match.start())
                source = state.enclosing(line)
                groups = match.groupdict()

                if groups.get("block") is not None and pattern.item_regex is not None:
                    block_offset = match.start("block")
                    for item in pattern.item_regex.finditer(groups["block"]):
                        item_groups = item.groupdict()
                        references.append(
                            RawReference(
                                kind=ReferenceKind.IMPORT,
                                name=item_groups["module"],
                                line_number=state.line_of(block_offset + item.start()),
                                source=source,
                                alias=item_groups.get("alias"),
                            )
                        )
                    continue

                if groups.get("modules"):
                    for spec in split_top_level(join_continuations(groups["modules"])):
                        parts = spec.split()
                        alias = parts[2] if len(parts) == 3 and parts[1] == "as" else None
                        references.append(
                            RawReference(
                                kind=ReferenceKind.IMPORT,
                                name=parts[0],
                                line_number=line,
                                source=source,
                                alias=alias,
                            )
                        )
                    continue

                module = groups.get("module") or ""
                level = len(groups.get("level") or "")
                if not module and not level:
                    continue

                if groups.get("name"):
                    imported_names: Tuple[Tuple[str, str], ...] = (
                        (groups["name"], groups.get("alias") or groups["name"]),
                    )
                    alias = None
                else:
                    imported_names = tuple(parse_name_list(groups.get("names") or ""))
                    alias = groups.get("alias") or groups.get("default")

                references.append(
                    RawReference(
                        kind=ReferenceKind.IMPORT,
                        name=module,
                        line_number=line,
                        source=source,
                        imported_names=imported_names,
                        alias=alias,
                        is_wildcard=bool(groups.get("wildcard")),
                        relative_level=level,
                    )
                )
        return ranges

    def _decorator_registrations(
        self,
        state: _FileState,
        declarations: List[Tuple[Symbol, int, int]],
        references: List[RawReference],
    ) -> None:
        """A non-transparent decorator may register its target by name at import time."""
        prefix = state.profile.decorator_prefix
        if not prefix:
            return
        for symbol, decl_line, _ in declarations:
            for line_number in range(symbol.line_start, decl_line):
                line = state.code_lines[line_number - 1]
                if not line.startswith(prefix):
                    continue
                match = DECORATOR_NAME_RE.match(line)
                if match and match.group(1) not in state.profile.transparent_decorators:
                    references.append(
                        RawReference(
                            kind=ReferenceKind.DYNAMIC_REFERENCE,
                            name=symbol.name,
                            line_number=line_number,
                            source=state.source_file.path,
                        )
                    )
                    break

    def _identifiers(
        self,
        state: _FileState,
        name_offsets: Set[int],
        import_ranges: List[Tuple[int, int]],
        references: List[RawReference],
    ) -> None:
        code = state.masked.code
        starts = sorted(import_ranges)
        range_starts = [s for s, _ in starts]
        seen: Set[Tuple[str, Optional[str], str, int]] = set()

        for match in IDENTIFIER_RE.finditer(code):
            offset = match.start()
            if offset in name_offsets:
                continue
            position = bisect.bisect_right(range_starts, offset) - 1
            if position >= 0 and offset < starts[position][1]:
                continue

            line = state.line_of(offset)
            name = match.group()
            qualifier = self._qualifier_before(code, offset, state.profile.member_separators)
            source = state.enclosing(line)
            key = (name, qualifier, source, line)
            if key in seen:
                continue
            seen.add(key)
            references.append(
                RawReference(
                    kind=ReferenceKind.CALL,
                    name=name,
                    line_number=line,
                    source=source,
                    qualifier=qualifier,
                )
            )

    @staticmethod
    def _qualifier_before(code: str, offset: int, separators: Sequence[str]) -> Optional[str]:
        """Identifier before a member separator ("" for an unnamed receiver)."""
        j = offset
        while j > 0 and code[j - 1] in " \t":
            j -= 1
        for separator in sorted(separators, key=len, reverse=True):
            k = j - len(separator)
            if k >= 0 and code[k:j] == separator:
                if separator == "." and k > 0 and code[k - 1] == ".":
                    return None  # spread or range operator
                window = code[max(0, k - 120) : k]
                match = TRAILING_IDENTIFIER_RE.search(window)
                if match and not match.group(1)[0].isdigit():
                    return match.group(1)
                return ""
        return None

    def _string_mentions(
        self,
        state: _FileState,
        import_ranges: List[Tuple[int, int]],
        references: List[RawReference],
    ) -> None:
        for offset, content in state.masked.strings:
            if any(start <= offset < end for start, end in import_ranges):
                continue
            value = content.strip()
            if not value or len(value) > MAX_STRING_MENTION_LENGTH:
                continue
            if not STRING_MENTION_RE.fullmatch(value):
                continue
            line = state.line_of(offset)
            references.append(
                RawReference(
                    kind=ReferenceKind.STRING_MENTION,
                    name=value,
                    line_number=line,
                    source=state.enclosing(line),
                )
            )

    def _dynamic_patterns(self, state: _FileState, references: List[RawReference]) -> List[str]:
        pattern_types: Set[str] = set()
        text = state.masked.code_with_strings
        for pattern in state.profile.dynamic_patterns:
            for match in pattern.regex.finditer(text):
                pattern_types.add(pattern.pattern_type)
                groups = match.groupdict()
                line = state.line_of(match.start())
                target = groups.get("target")
                obj = groups.get("object")
                references.append(
                    RawReference(
                        kind=ReferenceKind.DYNAMIC_REFERENCE,
                        name=target or "",
                        line_number=line,
                        source=state.enclosing(line),
                        qualifier=obj.strip() if obj else None,
                        is_wildcard=not target,
                        loads_modules=pattern.loads_modules and not target,
                    )
                )
        if pattern_types:
            logger.debug(
                f"Dynamic patterns in {state.source_file.path}: {', '.join(sorted(pattern_types))}"
            )
        return sorted(pattern_types)
