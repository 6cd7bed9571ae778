# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Built-in language profiles."""

from prunegraph.profiles.base import (
    BlockStyle,
    DynamicPattern,
    ImportPattern,
    ImportStyle,
    LanguageProfile,
    ProfileRegistry,
    SymbolPattern,
    VisibilityRule,
)
from prunegraph.profiles.compiled_profiles import GO_PROFILE, JAVA_PROFILE, RUST_PROFILE
from prunegraph.profiles.javascript_profile import JAVASCRIPT_PROFILE, TYPESCRIPT_PROFILE
from prunegraph.profiles.python_profile import PYTHON_PROFILE
from prunegraph.profiles.shell_profile import SHELL_PROFILE

BUILTIN_PROFILES = (
    PYTHON_PROFILE,
    JAVASCRIPT_PROFILE,
    TYPESCRIPT_PROFILE,
    GO_PROFILE,
    JAVA_PROFILE,
    RUST_PROFILE,
    SHELL_PROFILE,
)


def default_registry() -> ProfileRegistry:
    """Create a registry holding every built-in profile."""
    registry = ProfileRegistry()
    for profile in BUILTIN_PROFILES:
        registry.register(profile)
    return registry


__all__ = [
    "BUILTIN_PROFILES",
    "BlockStyle",
    "DynamicPattern",
    "ImportPattern",
    "ImportStyle",
    "LanguageProfile",
    "ProfileRegistry",
    "SymbolPattern",
    "VisibilityRule",
    "default_registry",
]
