# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""POSIX shell / bash language profile."""

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

SHELL_PROFILE = LanguageProfile(
    language="shell",
    extensions=(".sh", ".bash", ".zsh"),
    shebangs=("sh", "bash", "zsh", "dash", "ksh"),
    block_style=BlockStyle.BRACES,
    visibility_rule=VisibilityRule.NONE,
    import_style=ImportStyle.SOURCE_PATH,
    line_comments=("#",),
    # Double quotes still expand $(...) substitutions, so only single quotes mask
    string_delimiters=("'",),
    symbol_patterns=(
        SymbolPattern(
            SymbolKind.FUNCTION,
            compile_multiline(r"^(?:function\s+)?(?P<name>[A-Za-z_][\w-]*)\s*\(\s*\)"),
        ),
        SymbolPattern(
            SymbolKind.FUNCTION,
            compile_multiline(r"^function\s+(?P<name>[A-Za-z_][\w-]*)\s*\{"),
        ),
    ),
    import_patterns=(
        ImportPattern(
            compile_multiline(r"^[ \t]*(?:source|\.)[ \t]+['\"]?(?P<module>[\w./-]+)['\"]?[ \t]*$")
        ),
    ),
    dynamic_patterns=(
        DynamicPattern("eval", compile_multiline(r"(?<![\w-])eval\s")),
        DynamicPattern(
            "indirect_source",
            compile_multiline(r"^[ \t]*(?:source|\.)[ \t]+\S*\$"),
            loads_modules=True,
        ),
    ),
    # An executable script is its own entry point
    script_markers=(compile_multiline(r"\A#!"),),
)
