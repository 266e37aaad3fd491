"""Tests for JIT selector construction from resolved symbols.

WHY: The selector is the only link between what the user pointed at and
what the JIT prints. A wrong pattern produces an empty listing, which
looks exactly like "the method was inlined".
"""

from __future__ import annotations

import pytest

from jitscope.core.symbols import (
    CodeSymbolDescriptor,
    SymbolKind,
    build_symbol_info,
    type_prefix,
)


def _symbol(kind=SymbolKind.METHOD, type_path=("Program",), namespace="MyApp", name="Foo", **kwargs):
    return CodeSymbolDescriptor(kind=kind, type_path=tuple(type_path), namespace=namespace, name=name, **kwargs)


class TestTypePrefix:
    """type_prefix() handles top-level, nested and generic types."""

    def test_top_level(self):
        assert type_prefix(_symbol()) == "MyApp.Program"

    def test_global_namespace(self):
        assert type_prefix(_symbol(namespace="")) == "Program"

    def test_nested_uses_wildcard(self):
        assert type_prefix(_symbol(type_path=("Outer", "Inner"))) == "*Inner"

    def test_generic_adds_trailing_wildcard(self):
        assert type_prefix(_symbol(type_path=("List`1",), is_generic_type=True)) == "MyApp.List`1*"

    def test_no_type_raises(self):
        with pytest.raises(ValueError):
            type_prefix(_symbol(type_path=()))


class TestBuildSymbolInfo:
    """build_symbol_info() picks the member selector by symbol kind."""

    def test_method(self):
        info = build_symbol_info(_symbol())
        assert info.target == "MyApp.Program:Foo"
        assert info.class_name == "MyApp.Program"
        assert info.method_name == "Foo"

    def test_constructor(self):
        info = build_symbol_info(_symbol(kind=SymbolKind.CONSTRUCTOR, name=".ctor"))
        assert info.target == "MyApp.Program:.ctor"
        assert info.method_name == "*"

    def test_local_function(self):
        info = build_symbol_info(_symbol(kind=SymbolKind.LOCAL_FUNCTION, name="Helper"))
        assert info.target == "MyApp.Program:*Helper*"
        assert info.method_name == "*"

    def test_property_selects_getter_and_setter(self):
        info = build_symbol_info(_symbol(kind=SymbolKind.PROPERTY, name="Count"))
        assert info.target == "MyApp.Program:get_Count MyApp.Program:set_Count"
        assert info.member_selectors == ("get_Count", "set_Count")
        assert info.method_name == "Count"

    def test_whole_type(self):
        info = build_symbol_info(_symbol(kind=SymbolKind.TYPE, name=""))
        assert info.target == "MyApp.Program:*"
        assert info.method_name == "*"

    def test_nested_type_class_name_keeps_full_path(self):
        info = build_symbol_info(_symbol(type_path=("Outer", "Inner")))
        assert info.target == "*Inner:Foo"
        assert info.class_name == "MyApp.Outer.Inner"

    def test_member_without_name_raises(self):
        with pytest.raises(ValueError):
            build_symbol_info(_symbol(name=""))
