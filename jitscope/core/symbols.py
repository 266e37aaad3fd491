"""Build JIT method-selector strings from a resolved code symbol.

WHY: DOTNET_JitDisasm, DOTNET_JitDump and friends select methods with a
"<Type>:<Member>" pattern language that supports "*" wildcards. The
symbol the user points at (method, constructor, local function,
property, or a whole type) has to be turned into the right pattern,
including the quirks: nested and generic types can only be matched by
wildcard, local functions only by their mangled name.

HOW: CodeSymbolDescriptor is the plain-data view of a resolved symbol
that the caller (editor integration, CLI) supplies. build_symbol_info()
computes the type prefix, then the member selector according to the
symbol kind.

RULES:
- Top-level type prefix: "<Namespace>.<TypeMetadataName>"
- Nested type prefix: "*<TypeMetadataName>" (outer types are wildcarded)
- Generic type: prefix gets a trailing "*"
- Method: "<prefix>:<MetadataName>"
- Constructor: "<prefix>:.ctor"
- Local function: "<prefix>:*<MetadataName>*" (compiler-mangled names)
- Property: "<prefix>:get_<Name> <prefix>:set_<Name>"
- Whole type: "<prefix>:*"
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class SymbolKind(str, enum.Enum):
    """The kinds of symbols a disassembly can be requested for."""

    METHOD = "method"
    CONSTRUCTOR = "ctor"
    LOCAL_FUNCTION = "local"
    PROPERTY = "property"
    TYPE = "type"


@dataclass(frozen=True)
class CodeSymbolDescriptor:
    """A resolved code symbol, as supplied by the symbol-resolution layer.

    RULES:
    - kind: what the caret/selection resolved to
    - namespace: dotted namespace of the outermost containing type ("" for global)
    - type_path: containing type names from outermost to innermost, as
      metadata names (e.g. ["Outer", "Inner`1"]); for kind=TYPE the last
      entry is the selected type itself
    - name: member metadata name (ignored for kind=TYPE)
    - is_generic_type: the innermost containing type has type parameters
    - is_generic_method: the method itself has type parameters
    """

    kind: SymbolKind
    type_path: tuple[str, ...]
    namespace: str = ""
    name: str = ""
    is_generic_type: bool = False
    is_generic_method: bool = False

    @property
    def is_nested(self) -> bool:
        return len(self.type_path) > 1

    @property
    def display_type_name(self) -> str:
        """Human-readable containing type, e.g. "MyApp.Outer.Inner`1"."""
        parts = ([self.namespace] if self.namespace else []) + list(self.type_path)
        return ".".join(parts)


@dataclass(frozen=True)
class SymbolInfo:
    """Everything the toolchain needs to select the symbol's methods.

    RULES:
    - target: the JIT selector string (may hold two space-separated patterns)
    - class_name: host type display name, passed to the loader app
    - method_name: loader member filter; "*" means every member of the type
    - member_selectors: the member part of each pattern in target
    """

    target: str
    class_name: str
    method_name: str
    member_selectors: tuple[str, ...] = field(default=())


def type_prefix(symbol: CodeSymbolDescriptor) -> str:
    """Return the type half of the selector pattern."""
    if not symbol.type_path:
        raise ValueError("Symbol has no containing type")

    innermost = symbol.type_path[-1]
    if symbol.is_nested:
        # Match all for nested types
        prefix = "*" + innermost
    elif symbol.namespace:
        prefix = symbol.namespace + "." + innermost
    else:
        prefix = innermost

    if symbol.is_generic_type:
        prefix += "*"
    return prefix


def build_symbol_info(symbol: CodeSymbolDescriptor) -> SymbolInfo:
    """Build the JIT selector for a resolved symbol.

    WHY: The selector is the only link between "what the user pointed at"
    and "what the JIT prints", so every symbol kind needs its own rule.

    HOW: Computes the type prefix once, then picks the member selector by
    symbol kind.

    RULES:
    - See module docstring for the per-kind selector grammar
    - Raises ValueError for a symbol without a containing type, or a
      member symbol without a name

    Args:
        symbol: The resolved symbol.

    Returns:
        SymbolInfo with target, class_name, method_name, member_selectors.
    """
    prefix = type_prefix(symbol)
    class_name = symbol.display_type_name

    if symbol.kind == SymbolKind.TYPE:
        return SymbolInfo(
            target=prefix + ":*",
            class_name=class_name,
            method_name="*",
            member_selectors=("*",),
        )

    if not symbol.name:
        raise ValueError("{} symbol has no name".format(symbol.kind.value))

    if symbol.kind == SymbolKind.LOCAL_FUNCTION:
        selector = "*" + symbol.name + "*"
        return SymbolInfo(prefix + ":" + selector, class_name, "*", (selector,))

    if symbol.kind == SymbolKind.CONSTRUCTOR:
        return SymbolInfo(prefix + ":.ctor", class_name, "*", (".ctor",))

    if symbol.kind == SymbolKind.PROPERTY:
        getter = "get_" + symbol.name
        setter = "set_" + symbol.name
        return SymbolInfo(
            target="{0}:{1} {0}:{2}".format(prefix, getter, setter),
            class_name=class_name,
            method_name=symbol.name,
            member_selectors=(getter, setter),
        )

    return SymbolInfo(prefix + ":" + symbol.name, class_name, symbol.name, (symbol.name,))
