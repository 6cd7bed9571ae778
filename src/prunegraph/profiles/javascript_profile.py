# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""JavaScript and TypeScript language profiles."""

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

_EXPORT = r"(?P<export>export\s+(?:default\s+)?)?"

_SYMBOLS = (
    SymbolPattern(
        SymbolKind.FUNCTION,
        compile_multiline(
            rf"^{_EXPORT}(?:async\s+)?function\s*\*?\s*(?P<name>[\w$]+)\s*(?:<[^>]*>)?\s*"
            r"\((?P<params>[^)]*)\)"
        ),
    ),
    SymbolPattern(
        SymbolKind.FUNCTION,
        compile_multiline(
            rf"^{_EXPORT}(?:const|let|var)\s+(?P<name>[\w$]+)\s*(?::[^=\n]+)?=\s*(?:async\s+)?"
            r"(?:function\b[^(]*\((?P<params>[^)]*)\)|\((?P<arrow_params>[^)]*)\)\s*(?::[^=\n]+)?=>"
            r"|(?P<single_param>[\w$]+)\s*=>)"
        ),
    ),
    SymbolPattern(
        SymbolKind.CLASS,
        compile_multiline(rf"^{_EXPORT}(?:abstract\s+)?class\s+(?P<name>[\w$]+)"),
    ),
    SymbolPattern(
        SymbolKind.EXPORTED_CONSTANT,
        compile_multiline(rf"^{_EXPORT}(?:const|let|var)\s+(?P<name>[A-Z][A-Z0-9_]*)\b"),
    ),
)

_TYPESCRIPT_SYMBOLS = _SYMBOLS + (
    SymbolPattern(
        SymbolKind.CLASS,
        compile_multiline(
            rf"^{_EXPORT}(?:declare\s+)?(?:interface|type|enum|const\s+enum)\s+(?P<name>[\w$]+)"
        ),
    ),
)

_IMPORTS = (
    ImportPattern(
        compile_multiline(
            r"^[ \t]*import\s+(?:type\s+)?(?:(?P<default>[\w$]+)\s*,?\s*)?"
            r"(?:\*\s*as\s+(?P<alias>[\w$]+)|\{(?P<names>[^}]*)\})?\s*"
            r"from\s*['\"](?P<module>[^'\"\n]+)['\"]"
        )
    ),
    ImportPattern(compile_multiline(r"^[ \t]*import\s*['\"](?P<module>[^'\"\n]+)['\"]")),
    ImportPattern(
        compile_multiline(
            r"^[ \t]*export\s+(?:type\s+)?(?:(?P<wildcard>\*)(?:\s+as\s+[\w$]+)?|\{(?P<names>[^}]*)\})"
            r"\s*from\s*['\"](?P<module>[^'\"\n]+)['\"]"
        )
    ),
    ImportPattern(
        compile_multiline(
            r"(?:(?:const|let|var)\s+(?:(?P<alias>[\w$]+)|\{(?P<names>[^}]*)\})\s*=\s*)?"
            r"\brequire\(\s*['\"](?P<module>[^'\"\n]+)['\"]\s*\)"
        )
    ),
)

_DYNAMIC = (
    DynamicPattern(
        "dynamic_import", compile_multiline(r"\bimport\(\s*['\"`](?P<target>[^'\"`\n]+)['\"`]")
    ),
    DynamicPattern(
        "dynamic_import", compile_multiline(r"\bimport\(\s*[^'\"`\s)]"), loads_modules=True
    ),
    DynamicPattern(
        "dynamic_require", compile_multiline(r"\brequire\(\s*[^'\"`\s)]"), loads_modules=True
    ),
    DynamicPattern(
        "computed_member", compile_multiline(r"[\w$)\]]\[\s*['\"](?P<target>[\w$]+)['\"]\s*\]")
    ),
    # Computed lookups on objects that hold the module's own bindings
    DynamicPattern(
        "computed_member",
        compile_multiline(
            r"(?<![\w$.])(?:this|window|globalThis|global|exports|module\.exports)"
            r"\[\s*[^'\"\s\]]"
        ),
    ),
    DynamicPattern("eval", compile_multiline(r"(?<![\w.$])eval\(")),
    DynamicPattern("function_constructor", compile_multiline(r"\bnew\s+Function\(")),
)

_EXPORT_LIST = compile_multiline(
    r"(?:^export\s*\{(?P<names>[^}]*)\}\s*;?\s*$|module\.exports\s*=\s*\{(?P<cjs_names>[^}]*)\}"
    r"|(?:module\.)?exports\.(?P<single>[\w$]+)\s*=)"
)

_ENTRY_FILES = (
    "*.test.js",
    "*.spec.js",
    "*.test.ts",
    "*.spec.ts",
    "*.test.jsx",
    "*.test.tsx",
    "*.spec.tsx",
    "*.config.js",
    "*.config.mjs",
    "*.config.cjs",
    "*.config.ts",
    "__tests__/*",
)

JAVASCRIPT_PROFILE = LanguageProfile(
    language="javascript",
    extensions=(".js", ".mjs", ".cjs", ".jsx"),
    shebangs=("node", "nodejs"),
    block_style=BlockStyle.BRACES,
    visibility_rule=VisibilityRule.EXPORT_KEYWORD,
    import_style=ImportStyle.RELATIVE_PATH,
    line_comments=("//",),
    block_comments=(("/*", "*/"),),
    string_delimiters=('"', "'", "`"),
    symbol_patterns=_SYMBOLS,
    import_patterns=_IMPORTS,
    dynamic_patterns=_DYNAMIC,
    export_list_regex=_EXPORT_LIST,
    entry_file_patterns=_ENTRY_FILES,
    module_extensions=(".js", ".mjs", ".cjs", ".jsx", ".ts", ".tsx"),
)

TYPESCRIPT_PROFILE = LanguageProfile(
    language="typescript",
    extensions=(".ts", ".tsx", ".mts", ".cts"),
    shebangs=("ts-node", "deno"),
    block_style=BlockStyle.BRACES,
    visibility_rule=VisibilityRule.EXPORT_KEYWORD,
    import_style=ImportStyle.RELATIVE_PATH,
    line_comments=("//",),
    block_comments=(("/*", "*/"),),
    string_delimiters=('"', "'", "`"),
    symbol_patterns=_TYPESCRIPT_SYMBOLS,
    import_patterns=_IMPORTS,
    dynamic_patterns=_DYNAMIC,
    export_list_regex=_EXPORT_LIST,
    entry_file_patterns=_ENTRY_FILES,
    decorator_prefix="@",
    module_extensions=(".ts", ".tsx", ".d.ts", ".js", ".jsx", ".mjs"),
)
