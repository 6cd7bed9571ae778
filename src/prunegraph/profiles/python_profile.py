# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Python language profile."""

from prunegraph.models import SymbolKind
from prunegraph.profiles.base import (
    BlockStyle,
    DynamicPattern,
    ImportPattern,
    ImportStyle,
    LanguageProfile,
    SymbolPattern,
    VisibilityRule,
    compile_multiline,
)

# Decorators that wrap a definition without registering it anywhere
TRANSPARENT_DECORATORS = frozenset(
    {
        "dataclass",
        "dataclasses.dataclass",
        "property",
        "staticmethod",
        "classmethod",
        "abstractmethod",
        "abc.abstractmethod",
        "overload",
        "typing.overload",
        "final",
        "typing.final",
        "cache",
        "lru_cache",
        "functools.cache",
        "functools.lru_cache",
        "functools.wraps",
        "wraps",
        "total_ordering",
        "functools.total_ordering",
        "contextmanager",
        "contextlib.contextmanager",
        "asynccontextmanager",
        "contextlib.asynccontextmanager",
        "cached_property",
        "functools.cached_property",
        "unique",
        "enum.unique",
    }
)

PYTHON_PROFILE = LanguageProfile(
    language="python",
    extensions=(".py", ".pyw", ".pyi"),
    shebangs=("python", "python3"),
    block_style=BlockStyle.INDENT,
    visibility_rule=VisibilityRule.EXPORT_LIST,
    import_style=ImportStyle.PYTHON_MODULE,
    line_comments=("#",),
    string_delimiters=('"""', "'''", '"', "'"),
    symbol_patterns=(
        SymbolPattern(
            SymbolKind.FUNCTION,
            compile_multiline(r"^(?:async\s+)?def\s+(?P<name>\w+)\s*\((?P<params>[^)]*)\)"),
        ),
        SymbolPattern(SymbolKind.CLASS, compile_multiline(r"^class\s+(?P<name>\w+)")),
        SymbolPattern(
            SymbolKind.EXPORTED_CONSTANT,
            compile_multiline(r"^(?P<name>[A-Z][A-Z0-9_]*)\s*(?::[^=\n]*)?=(?!=)"),
        ),
    ),
    import_patterns=(
        ImportPattern(
            compile_multiline(
                r"^[ \t]*from[ \t]+(?P<level>\.*)(?P<module>[\w.]*)[ \t]+import[ \t]*"
                r"\((?P<names>[^)]*)\)"
            )
        ),
        ImportPattern(
            compile_multiline(
                r"^[ \t]*from[ \t]+(?P<level>\.*)(?P<module>[\w.]*)[ \t]+import[ \t]+"
                r"(?:(?P<wildcard>\*)|(?P<names>(?:[^(\n;\\]|\\\n)+))"
            )
        ),
        ImportPattern(
            compile_multiline(
                r"^[ \t]*import[ \t]+(?P<modules>[\w.]+(?:[ \t]+as[ \t]+\w+)?"
                r"(?:(?:[ \t]|\\\n)*,(?:[ \t]|\\\n)*[\w.]+(?:[ \t]+as[ \t]+\w+)?)*)"
            )
        ),
    ),
    dynamic_patterns=(
        DynamicPattern(
            "import_module",
            compile_multiline(r"import_module\(\s*['\"](?P<target>[\w.]+)['\"]"),
        ),
        DynamicPattern(
            "__import__", compile_multiline(r"__import__\(\s*['\"](?P<target>[\w.]+)['\"]")
        ),
        DynamicPattern(
            "getattr",
            compile_multiline(r"\bgetattr\(\s*[^,()]+?\s*,\s*['\"](?P<target>\w+)['\"]"),
        ),
        DynamicPattern(
            "import_module",
            compile_multiline(r"import_module\(\s*[^'\"\s)]"),
            loads_modules=True,
        ),
        DynamicPattern(
            "__import__", compile_multiline(r"__import__\(\s*[^'\"\s)]"), loads_modules=True
        ),
        DynamicPattern(
            "getattr",
            compile_multiline(r"\bgetattr\(\s*(?P<object>[^,()]+?)\s*,\s*[^'\"\s)]"),
        ),
        DynamicPattern("exec", compile_multiline(r"(?<![\w.])exec\(")),
        DynamicPattern("eval", compile_multiline(r"(?<![\w.])eval\(")),
        DynamicPattern("globals", compile_multiline(r"(?<![\w.])globals\(\)\s*\[")),
    ),
    export_list_regex=compile_multiline(r"^__all__\s*(?::[^=\n]*)?\+?=\s*[\[(](?P<names>[^\])]*)"),
    script_markers=(
        compile_multiline(r"^if\s+__name__\s*==\s*['\"]__main__['\"]\s*:"),
    ),
    entry_file_patterns=(
        "__main__.py",
        "setup.py",
        "conftest.py",
        "manage.py",
        "wsgi.py",
        "asgi.py",
        "test_*.py",
        "*_test.py",
        "noxfile.py",
    ),
    decorator_prefix="@",
    transparent_decorators=TRANSPARENT_DECORATORS,
    module_extensions=(".py", ".pyi"),
)
