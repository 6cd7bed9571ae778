# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for profile-driven symbol extraction."""

import textwrap

import pytest

from prunegraph.context import ExtractionCache
from prunegraph.extractor import (
    SymbolExtractor,
    mask_source,
    module_display_name,
    parse_name_list,
    parse_parameters,
)
from prunegraph.models import ReferenceKind, SourceFile, SymbolKind, Visibility
from prunegraph.profiles import default_registry

PYTHON_SOURCE = '''
import os
from .helpers import clean, normalize as norm
from pkg import util

__all__ = ["Parser", "parse"]

MAX_SIZE = 10


@register
def parse(text, *, strict=False):
    # ignored_name lives in a comment
    value = clean(text)
    return util.tokenize(value)


class Parser:
    def feed(self, data):
        return parse(data)


def _private():
    return "Parser"


if __name__ == "__main__":
    parse("x")
'''

JAVASCRIPT_SOURCE = """
import { helper, other as alias } from './util';
const fs = require('fs');

export function main(argv) {
  return helper(argv);
}

export const handler = async (event, context) => {
  return alias(event);
};

function unused(x) {
  return x * 2;
}

class Widget {
  render() {
    return lookup['render'];
  }
}
"""


def make_source(path: str, text: str, language: str, content_hash: str = "hash") -> SourceFile:
    text = textwrap.dedent(text).lstrip("\n")
    return SourceFile(
        path=path,
        abs_path=f"/project/{path}",
        language=language,
        content_hash=content_hash,
        lines=tuple(text.splitlines()),
    )


@pytest.fixture
def python_extraction():
    return SymbolExtractor().extract(make_source("pkg/parser.py", PYTHON_SOURCE, "python"))


@pytest.fixture
def javascript_extraction():
    return SymbolExtractor().extract(make_source("web/app.js", JAVASCRIPT_SOURCE, "javascript"))


class TestPythonExtraction:
    """Tests for extraction with the Python profile."""

    def test_module_symbol_first(self, python_extraction):
        module = python_extraction.module_symbol
        assert module.node_id == "pkg/parser.py"
        assert module.kind == SymbolKind.MODULE
        assert module.name == "parser"
        assert not python_extraction.is_opaque

    def test_only_top_level_declarations(self, python_extraction):
        """Test that methods and locals do not become symbols."""
        names = [s.name for s in python_extraction.symbols[1:]]
        assert names == ["MAX_SIZE", "parse", "Parser", "_private"]
        assert python_extraction.get_symbol("feed") is None

    def test_kinds_and_parameters(self, python_extraction):
        parse = python_extraction.get_symbol("parse")
        assert parse.kind == SymbolKind.FUNCTION
        assert parse.parameters == ("text", "strict")
        assert python_extraction.get_symbol("Parser").kind == SymbolKind.CLASS
        assert python_extraction.get_symbol("MAX_SIZE").kind == SymbolKind.EXPORTED_CONSTANT

    def test_visibility_from_export_list(self, python_extraction):
        """Test that __all__ decides public names and hides the rest."""
        visibility = {s.name: s.visibility for s in python_extraction.symbols[1:]}
        assert visibility == {
            "MAX_SIZE": Visibility.PRIVATE,
            "parse": Visibility.PUBLIC,
            "Parser": Visibility.PUBLIC,
            "_private": Visibility.PRIVATE,
        }

    def test_span_includes_decorator(self, python_extraction):
        """Test that a decorated function's span starts at the decorator."""
        parse = python_extraction.get_symbol("parse")
        source_lines = python_extraction.source_file.lines
        assert source_lines[parse.line_start - 1] == "@register"
        assert source_lines[parse.line_end - 1] == "    return util.tokenize(value)"

        parser = python_extraction.get_symbol("Parser")
        assert source_lines[parser.line_end - 1] == "        return parse(data)"

    def test_imports(self, python_extraction):
        imports = [r for r in python_extraction.references if r.kind == ReferenceKind.IMPORT]
        by_name = {r.name: r for r in imports}

        assert set(by_name) == {"os", "helpers", "pkg"}
        assert by_name["helpers"].relative_level == 1
        assert by_name["helpers"].imported_names == (("clean", "clean"), ("normalize", "norm"))
        assert by_name["pkg"].imported_names == (("util", "util"),)
        assert by_name["os"].imported_names == ()

    def test_calls_attributed_to_enclosing_symbol(self, python_extraction):
        """Test that identifiers are attributed to the declaration they sit in."""
        calls = [r for r in python_extraction.references if r.kind == ReferenceKind.CALL]

        assert any(
            r.name == "parse" and r.source == "pkg/parser.py::Parser" for r in calls
        )
        assert any(
            r.name == "tokenize" and r.qualifier == "util" and r.source == "pkg/parser.py::parse"
            for r in calls
        )
        assert any(r.name == "parse" and r.source == "pkg/parser.py" for r in calls)
        assert not any(r.name == "ignored_name" for r in calls)

    def test_string_mentions(self, python_extraction):
        mentions = [
            r for r in python_extraction.references if r.kind == ReferenceKind.STRING_MENTION
        ]
        assert any(r.name == "Parser" and r.source == "pkg/parser.py::_private" for r in mentions)

    def test_registering_decorator_is_dynamic_reference(self, python_extraction):
        """Test that a non-transparent decorator marks its target as dynamically used."""
        dynamic = [
            r for r in python_extraction.references if r.kind == ReferenceKind.DYNAMIC_REFERENCE
        ]
        assert [(r.name, r.source) for r in dynamic] == [("parse", "pkg/parser.py")]

    def test_transparent_decorator_is_not_dynamic(self):
        source = make_source(
            "pkg/cached.py",
            """
            from functools import lru_cache


            @lru_cache
            def compute(n):
                return n * n
            """,
            "python",
        )
        extraction = SymbolExtractor().extract(source)
        assert not any(
            r.kind == ReferenceKind.DYNAMIC_REFERENCE for r in extraction.references
        )

    def test_script_marker(self, python_extraction):
        assert python_extraction.is_script
        assert not python_extraction.is_entry_file

    def test_entry_file(self):
        extraction = SymbolExtractor().extract(
            make_source("tests/test_parser.py", "def test_parse():\n    pass\n", "python")
        )
        assert extraction.is_entry_file

    def test_body_is_comment_free_and_name_blanked(self, python_extraction):
        body = python_extraction.bodies["pkg/parser.py::parse"]
        assert body.startswith("@register")
        assert "def _(text" in body
        assert "ignored_name" not in body

    def test_dynamic_patterns(self):
        source = make_source(
            "pkg/loader.py",
            """
            import importlib


            def load(name):
                plugin = importlib.import_module("pkg.plugins")
                return getattr(plugin, name)
            """,
            "python",
        )
        extraction = SymbolExtractor().extract(source)

        assert extraction.dynamic_pattern_types == ["getattr", "import_module"]
        dynamic = [r for r in extraction.references if r.kind == ReferenceKind.DYNAMIC_REFERENCE]
        assert [(r.name, r.source, r.qualifier, r.is_wildcard) for r in dynamic] == [
            ("pkg.plugins", "pkg/loader.py::load", None, False),
            ("", "pkg/loader.py::load", "plugin", True),
        ]

    def test_computed_lookups(self):
        """Test that lookups by a computed name are recorded without a target."""
        source = make_source(
            "tool.py",
            """
            import importlib


            def run(name):
                handler = globals()["cmd_" + name]
                module = importlib.import_module(name)
                return handler(module)
            """,
            "python",
        )
        extraction = SymbolExtractor().extract(source)

        assert extraction.dynamic_pattern_types == ["globals", "import_module"]
        computed = [r for r in extraction.references if r.is_wildcard]
        assert [(r.name, r.source, r.loads_modules) for r in computed] == [
            ("", "tool.py::run", True),
            ("", "tool.py::run", False),
        ]

    def test_backslash_continued_imports(self):
        source = make_source(
            "main.py",
            """
            from util import first, \\
                second as other
            import os, \\
                json
            """,
            "python",
        )
        extraction = SymbolExtractor().extract(source)

        imports = [r for r in extraction.references if r.kind == ReferenceKind.IMPORT]
        assert [(r.name, r.imported_names) for r in imports] == [
            ("util", (("first", "first"), ("second", "other"))),
            ("os", ()),
            ("json", ()),
        ]
        assert not any(r.kind == ReferenceKind.CALL for r in extraction.references)


class TestJavaScriptExtraction:
    """Tests for extraction with the JavaScript profile."""

    def test_symbols(self, javascript_extraction):
        names = [s.name for s in javascript_extraction.symbols[1:]]
        assert names == ["main", "handler", "unused", "Widget"]

    def test_export_keyword_visibility(self, javascript_extraction):
        visibility = {s.name: s.visibility for s in javascript_extraction.symbols[1:]}
        assert visibility["main"] == Visibility.PUBLIC
        assert visibility["handler"] == Visibility.PUBLIC
        assert visibility["unused"] == Visibility.PRIVATE

    def test_arrow_function_parameters_and_span(self, javascript_extraction):
        handler = javascript_extraction.get_symbol("handler")
        assert handler.parameters == ("event", "context")
        lines = javascript_extraction.source_file.lines
        assert lines[handler.line_end - 1] == "};"

    def test_brace_block_span(self, javascript_extraction):
        widget = javascript_extraction.get_symbol("Widget")
        lines = javascript_extraction.source_file.lines
        assert lines[widget.line_start - 1] == "class Widget {"
        assert lines[widget.line_end - 1] == "}"

    def test_imports_and_require(self, javascript_extraction):
        imports = {
            r.name: r
            for r in javascript_extraction.references
            if r.kind == ReferenceKind.IMPORT
        }
        assert imports["./util"].imported_names == (("helper", "helper"), ("other", "alias"))
        assert imports["fs"].alias == "fs"

    def test_computed_member_is_dynamic(self, javascript_extraction):
        assert "computed_member" in javascript_extraction.dynamic_pattern_types
        dynamic = [
            r
            for r in javascript_extraction.references
            if r.kind == ReferenceKind.DYNAMIC_REFERENCE
        ]
        assert [(r.name, r.source) for r in dynamic] == [("render", "web/app.js::Widget")]

    def test_computed_lookups(self):
        """Test that exports[name] and require(expr) are recorded without a target."""
        source = make_source(
            "web/router.js",
            """
            function home() {
              return 1;
            }

            function route(name) {
              return exports[name]();
            }

            const plugin = require(process.env.PLUGIN);
            """,
            "javascript",
        )
        extraction = SymbolExtractor().extract(source)

        assert extraction.dynamic_pattern_types == ["computed_member", "dynamic_require"]
        computed = [r for r in extraction.references if r.is_wildcard]
        assert sorted((r.source, r.loads_modules) for r in computed) == [
            ("web/router.js", True),
            ("web/router.js::route", False),
        ]


class TestOpaqueFiles:
    """Tests for files that cannot be profiled."""

    def test_unprofiled_language(self):
        extraction = SymbolExtractor().extract(make_source("lib/native.c", "int x;\n", "c"))
        assert extraction.is_opaque
        assert extraction.module_symbol.opaque
        assert extraction.error_message is None
        assert extraction.symbols == [extraction.module_symbol]

    def test_language_filter(self):
        """Test that languages outside the filter become opaque."""
        extractor = SymbolExtractor(languages=["javascript"])
        extraction = extractor.extract(make_source("a.py", "def f():\n    pass\n", "python"))
        assert extraction.is_opaque

    def test_profile_failure_degrades_to_opaque(self, monkeypatch):
        """Test that an extraction error is recorded instead of raised."""
        extractor = SymbolExtractor()

        def explode(source_file, profile):
            raise ValueError("pattern blew up")

        monkeypatch.setattr(extractor, "_extract_with_profile", explode)
        extraction = extractor.extract(make_source("a.py", "x = 1\n", "python"))

        assert extraction.is_opaque
        assert extraction.error_message == "pattern blew up"


class TestExtractionCacheUse:
    """Tests for cache reuse across extractions."""

    def test_unchanged_file_hits_cache(self):
        cache = ExtractionCache()
        extractor = SymbolExtractor(cache=cache)
        source = make_source("a.py", "def f():\n    pass\n", "python", content_hash="h1")

        first = extractor.extract(source)
        second = extractor.extract(source)
        changed = extractor.extract(
            make_source("a.py", "def g():\n    pass\n", "python", content_hash="h2")
        )

        assert second is first
        assert changed.get_symbol("g") is not None
        assert cache.hits == 1

    def test_extract_all_preserves_order(self):
        sources = [
            make_source(f"m{i}.py", f"def f{i}():\n    pass\n", "python") for i in range(5)
        ]
        extractions = SymbolExtractor().extract_all(sources, max_workers=3)
        assert [e.path for e in extractions] == [s.path for s in sources]


class TestHelpers:
    """Tests for extractor helper functions."""

    def test_parse_parameters(self):
        assert parse_parameters("a: int = 1, *args, b=None, **kwargs") == ("a", "args", "b", "kwargs")
        assert parse_parameters("self, /, x") == ("self", "x")
        assert parse_parameters("") == ()
        assert parse_parameters(None) is None

    def test_parse_name_list(self):
        assert parse_name_list("a, b as c, type D") == [("a", "a"), ("b", "c"), ("D", "D")]
        assert parse_name_list("x: y") == [("x", "y")]

    def test_module_display_name(self):
        assert module_display_name("pkg/util.py") == "util"
        assert module_display_name("web/types.d.ts") == "types"
        assert module_display_name(".eslintrc") == ".eslintrc"

    def test_mask_source_preserves_offsets(self):
        """Test that masking blanks comments and strings without moving text."""
        profile = default_registry().get("python")
        text = 'x = "a # b"  # real comment\ny = 2\n'

        masked = mask_source(text, profile)

        assert len(masked.code) == len(text)
        assert "real comment" not in masked.code_with_strings
        assert '"a # b"' in masked.code_with_strings
        assert "a # b" not in masked.code
        assert masked.strings == [(5, "a # b")]
