# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Go, Java and Rust language profiles."""

import re

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

GO_PROFILE = LanguageProfile(
    language="go",
    extensions=(".go",),
    block_style=BlockStyle.BRACES,
    visibility_rule=VisibilityRule.CAPITALIZED,
    import_style=ImportStyle.DIRECTORY_PACKAGE,
    line_comments=("//",),
    block_comments=(("/*", "*/"),),
    string_delimiters=("`", '"', "'"),
    symbol_patterns=(
        # Methods are attached to their receiver type, so only plain functions count
        SymbolPattern(
            SymbolKind.FUNCTION,
            compile_multiline(
                r"^func\s+(?P<name>\w+)\s*(?:\[[^\]]*\])?\s*\((?P<params>[^)]*)\)"
            ),
        ),
        SymbolPattern(SymbolKind.CLASS, compile_multiline(r"^type\s+(?P<name>\w+)")),
        SymbolPattern(
            SymbolKind.EXPORTED_CONSTANT,
            compile_multiline(r"^(?:const|var)\s+(?P<name>[A-Z]\w*)\b"),
        ),
    ),
    import_patterns=(
        ImportPattern(
            compile_multiline(r"^import\s*\((?P<block>[^)]*)\)"),
            item_regex=re.compile(r"(?:(?P<alias>[\w.]+)\s+)?\"(?P<module>[^\"\n]+)\""),
        ),
        ImportPattern(
            compile_multiline(r"^import\s+(?:(?P<alias>[\w.]+)\s+)?\"(?P<module>[^\"\n]+)\"")
        ),
    ),
    dynamic_patterns=(
        DynamicPattern("plugin_open", compile_multiline(r"plugin\.Open\(\s*\"(?P<target>[^\"]+)\"")),
        DynamicPattern(
            "plugin_lookup", compile_multiline(r"\.Lookup\(\s*\"(?P<target>\w+)\"\s*\)")
        ),
        DynamicPattern("reflection", compile_multiline(r"\breflect\.\w+\(")),
    ),
    script_markers=(compile_multiline(r"^func\s+(?P<name>main|init)\s*\(\s*\)"),),
    entry_file_patterns=("*_test.go",),
    directory_scope=True,
    module_extensions=(".go",),
)

JAVA_PROFILE = LanguageProfile(
    language="java",
    extensions=(".java",),
    block_style=BlockStyle.BRACES,
    visibility_rule=VisibilityRule.EXPORT_KEYWORD,
    import_style=ImportStyle.QUALIFIED_CLASS,
    line_comments=("//",),
    block_comments=(("/*", "*/"),),
    string_delimiters=('"""', '"', "'"),
    symbol_patterns=(
        SymbolPattern(
            SymbolKind.CLASS,
            compile_multiline(
                r"^(?P<export>public\s+)?(?:(?:abstract|final|static|sealed|strictfp)\s+)*"
                r"(?:class|interface|enum|record|@interface)\s+(?P<name>\w+)"
            ),
        ),
    ),
    import_patterns=(
        ImportPattern(
            compile_multiline(
                r"^import\s+(?:static\s+)?(?P<module>[\w.]+)\.(?P<wildcard>\*)\s*;"
            )
        ),
        ImportPattern(
            compile_multiline(
                r"^import\s+(?:static\s+)?(?P<module>(?:\w+\.)*(?P<name>\w+))\s*;"
            )
        ),
    ),
    dynamic_patterns=(
        DynamicPattern(
            "class_for_name",
            compile_multiline(r"Class\.forName\(\s*\"(?P<target>[\w.$]+)\""),
        ),
        DynamicPattern(
            "class_for_name",
            compile_multiline(r"Class\.forName\(\s*[^\"\s)]"),
            loads_modules=True,
        ),
        DynamicPattern("reflection", compile_multiline(r"\.getDeclaredMethod\(|\.getMethod\(")),
        DynamicPattern(
            "service_loader", compile_multiline(r"ServiceLoader\.load\("), loads_modules=True
        ),
    ),
    script_markers=(
        re.compile(r"\bpublic\s+static\s+void\s+main\s*\(", re.MULTILINE),
    ),
    entry_file_patterns=("*Test.java", "*Tests.java", "*IT.java"),
    decorator_prefix="@",
    transparent_decorators=frozenset(
        {"Override", "Deprecated", "SuppressWarnings", "FunctionalInterface"}
    ),
    directory_scope=True,
    module_extensions=(".java",),
)

_RUST_PUB = r"(?P<export>pub(?:\s*\([^)]*\))?\s+)?"

RUST_PROFILE = LanguageProfile(
    language="rust",
    extensions=(".rs",),
    block_style=BlockStyle.BRACES,
    visibility_rule=VisibilityRule.EXPORT_KEYWORD,
    import_style=ImportStyle.RUST_MODULE,
    line_comments=("//",),
    block_comments=(("/*", "*/"),),
    # Single quotes also start lifetimes, so only double-quoted strings are masked
    string_delimiters=('"',),
    member_separators=("::", "."),
    symbol_patterns=(
        SymbolPattern(
            SymbolKind.FUNCTION,
            compile_multiline(
                rf"^{_RUST_PUB}(?:(?:const|async|unsafe)\s+)*(?:extern\s+\"[^\"]*\"\s+)?"
                r"fn\s+(?P<name>\w+)\s*(?:<[^>{]*>)?\s*\((?P<params>[^)]*)\)"
            ),
        ),
        SymbolPattern(
            SymbolKind.CLASS,
            compile_multiline(rf"^{_RUST_PUB}(?:struct|enum|trait|union|type)\s+(?P<name>\w+)"),
        ),
        SymbolPattern(
            SymbolKind.EXPORTED_CONSTANT,
            compile_multiline(
                rf"^{_RUST_PUB}(?:const|static)\s+(?:mut\s+)?(?P<name>[A-Z][A-Z0-9_]*)\s*:"
            ),
        ),
    ),
    import_patterns=(
        ImportPattern(compile_multiline(r"^(?:pub(?:\s*\([^)]*\))?\s+)?mod\s+(?P<module>\w+)\s*;")),
        ImportPattern(
            compile_multiline(
                r"^[ \t]*(?:pub(?:\s*\([^)]*\))?\s+)?use\s+(?:(?:crate|self|super)::)*"
                r"(?P<module>\w+(?:::\w+)*?)::(?:\{(?P<names>[^}]*)\}|(?P<wildcard>\*)"
                r"|(?P<name>\w+)(?:\s+as\s+(?P<alias>\w+))?)\s*;"
            )
        ),
    ),
    dynamic_patterns=(
        DynamicPattern("library_loading", compile_multiline(r"\bLibrary::new\(")),
        DynamicPattern("any_downcast", compile_multiline(r"\.downcast_ref::<")),
    ),
    script_markers=(compile_multiline(r"^fn\s+(?P<name>main)\s*\(\s*\)"),),
    entry_file_patterns=(
        "main.rs", "lib.rs", "build.rs", "tests/*.rs", "benches/*.rs", "examples/*.rs"
    ),
    decorator_prefix=None,
    module_extensions=(".rs",),
)
