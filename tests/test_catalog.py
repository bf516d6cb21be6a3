# tests/test_catalog.py
"""
Tests for the pattern catalog: type families, matcher order and the
built-in table.
"""

import pytest
from unittest.mock import MagicMock

from cast_tidy.catalog import (
    ALL_OPERATIONS,
    ATTRIBUTE_FAMILY,
    BUILTIN_FAMILIES,
    OPERATION_FAMILY,
    POINTER_UNION_FAMILY,
    VALUE_FAMILY,
    MemberCall,
    OperationName,
    PatternCatalog,
    TypeFamily,
    TypeRef,
    default_catalog,
)
from cast_tidy.errors import CastTidyError, CatalogError
from cast_tidy.host import ClassHierarchy


def _call(member, type_name, underlying=None, is_arrow=False):
    return MemberCall(member, is_arrow, TypeRef(type_name, underlying))


class TestOperationName:

    def test_closed_set(self):
        assert {op.value for op in OperationName} == {
            "cast", "dyn_cast", "dyn_cast_or_null", "isa"
        }

    def test_only_isa_is_variadic(self):
        assert [op for op in OperationName if op.variadic] == [OperationName.ISA]

    def test_from_member(self):
        assert OperationName.from_member("dyn_cast") is OperationName.DYN_CAST
        assert OperationName.from_member("getType") is None


class TestTypeFamily:

    def test_empty_operations_rejected(self):
        with pytest.raises(CatalogError):
            TypeFamily("broken", ("mlir::Type",), operations=frozenset())

    def test_empty_bases_rejected(self):
        with pytest.raises(CatalogError):
            TypeFamily("broken", ())

    def test_catalog_error_is_cast_tidy_error(self):
        with pytest.raises(CastTidyError):
            TypeFamily("broken", ())

    def test_bases_normalised(self):
        family = TypeFamily("x", ("::ns::Base<int>",))
        assert family.bases == ("ns::Base",)

    def test_recognises_exact_base(self):
        assert VALUE_FAMILY.recognises(TypeRef("mlir::Value"))
        assert VALUE_FAMILY.recognises(TypeRef("const mlir::Value &"))

    def test_does_not_recognise_unknown_type(self):
        assert not VALUE_FAMILY.recognises(TypeRef("mlir::Attribute"))
        assert not VALUE_FAMILY.recognises(None)

    def test_recognises_through_oracle(self):
        oracle = MagicMock()
        oracle.is_a.side_effect = lambda t, b: (t, b) == ("MyAttr", "mlir::Attribute")
        assert ATTRIBUTE_FAMILY.recognises(TypeRef("MyAttr"), oracle)
        assert not VALUE_FAMILY.recognises(TypeRef("MyAttr"), oracle)

    def test_alias_target_tried_for_every_family(self):
        alias = TypeRef("UnionAlias", underlying="llvm::PointerUnion<A *, B *>")
        assert POINTER_UNION_FAMILY.recognises(alias)
        assert VALUE_FAMILY.recognises(TypeRef("ValueAlias", underlying="mlir::Value"))
        assert not VALUE_FAMILY.recognises(TypeRef("Other", underlying="mlir::Type"))

    def test_alias_of_derived_class_through_oracle(self):
        oracle = MagicMock()
        oracle.is_a.side_effect = lambda t, b: (t, b) == ("mlir::StringAttr", "mlir::Attribute")
        alias = TypeRef("MyStrAttr", underlying="mlir::StringAttr")
        assert ATTRIBUTE_FAMILY.recognises(alias, oracle)


class TestPatternCatalog:

    def test_register_appends_in_operation_order(self):
        catalog = PatternCatalog()
        added = catalog.register(
            VALUE_FAMILY, [OperationName.ISA, OperationName.CAST]
        )
        assert [e.operation for e in added] == [OperationName.CAST, OperationName.ISA]
        assert len(catalog) == 2

    def test_register_empty_operations_rejected(self):
        with pytest.raises(CatalogError):
            PatternCatalog().register(VALUE_FAMILY, [])

    def test_register_unsupported_operation_rejected(self):
        family = TypeFamily("narrow", ("ns::T",),
                            operations=frozenset({OperationName.ISA}))
        with pytest.raises(CatalogError, match="does not support: cast"):
            PatternCatalog().register(family, [OperationName.CAST])

    def test_member_names(self):
        catalog = PatternCatalog()
        catalog.register(VALUE_FAMILY, [OperationName.ISA])
        assert catalog.member_names == frozenset({"isa"})

    def test_member_name_filter(self):
        catalog = default_catalog()
        assert catalog.match(_call("getType", "mlir::Value")) is None

    def test_first_match_wins(self):
        wide = TypeFamily("wide", ("mlir::Value",))
        catalog = PatternCatalog()
        catalog.register(VALUE_FAMILY)
        catalog.register(wide)
        entry = catalog.match(_call("cast", "mlir::Value"))
        assert entry.family is VALUE_FAMILY

    def test_order_is_registration_order(self):
        wide = TypeFamily("wide", ("mlir::Value",))
        catalog = PatternCatalog()
        catalog.register(wide)
        catalog.register(VALUE_FAMILY)
        assert catalog.match(_call("cast", "mlir::Value")).family is wide

    def test_no_match_for_unsupported_operation_of_family(self):
        catalog = PatternCatalog()
        catalog.register(VALUE_FAMILY, [OperationName.ISA])
        assert catalog.match(_call("cast", "mlir::Value")) is None

    def test_families_listed_once(self):
        catalog = default_catalog()
        assert catalog.families == list(BUILTIN_FAMILIES)


class TestDefaultCatalog:

    def test_every_family_gets_every_operation(self):
        catalog = default_catalog()
        assert len(catalog) == len(BUILTIN_FAMILIES) * len(ALL_OPERATIONS)

    def test_entry_names(self):
        names = [str(e) for e in default_catalog()][:4]
        assert names == [
            "attribute.cast",
            "attribute.dyn_cast",
            "attribute.dyn_cast_or_null",
            "attribute.isa",
        ]

    def test_only_pointer_union_is_permissive(self):
        assert [f.name for f in BUILTIN_FAMILIES if f.permissive] == ["pointer-union"]

    @pytest.mark.parametrize("type_name, family", [
        ("mlir::Attribute", "attribute"),
        ("mlir::Op", "operation"),
        ("mlir::Op<MyOp>", "operation"),
        ("mlir::Type", "type"),
        ("mlir::Value", "value"),
        ("mlir::OpFoldResult", "fold-result"),
        ("llvm::PointerUnion<A *, B *>", "pointer-union"),
    ])
    def test_builtin_bases(self, type_name, family):
        entry = default_catalog().match(_call("isa", type_name))
        assert entry.family.name == family

    def test_derived_class_through_hierarchy(self):
        hierarchy = ClassHierarchy()
        hierarchy.add_class("mlir::ConstantOp", ["Op<ConstantOp>"], ["mlir"])
        entry = default_catalog().match(_call("cast", "mlir::ConstantOp"), hierarchy)
        assert entry.family is OPERATION_FAMILY
        assert entry.operation is OperationName.CAST

    def test_pointer_union_alias(self):
        call = _call("dyn_cast", "Handle", "llvm::PointerUnion<A *, B *>")
        assert default_catalog().match(call).family is POINTER_UNION_FAMILY

    def test_unrelated_type_no_match(self):
        assert default_catalog().match(_call("cast", "std::string")) is None

    def test_unknown_receiver_type_no_match(self):
        assert default_catalog().match(MemberCall("cast", False, None)) is None
