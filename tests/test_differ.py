# moveinv/tests/test_differ.py
from __future__ import annotations
import json
from copy import deepcopy
import pytest
from moveinv.differ import (
    KIND_FUNCTION,
    KIND_MODULE,
    KIND_STRUCT,
    MismatchCategory,
    diff_packages,
    extra_in_right,
    missing_in_right,
)
from moveinv.errors import DiffInternalError
from moveinv.model import (
    Ability,
    Field,
    FunctionInterface,
    ModuleInterface,
    PackageInterface,
    Primitive,
    StructInterface,
    TypeParameter,
    Visibility,
)
from moveinv.normalize import normalize_local, normalize_rpc
from utility import PKG, local_package, rpc_package


def _coin(value_type: str = "u64") -> StructInterface:
    return StructInterface(
        abilities=frozenset({Ability.STORE, Ability.KEY}),
        fields=(Field("value", Primitive(value_type)),),
    )


def _pkg(**modules: ModuleInterface) -> PackageInterface:
    return PackageInterface(PKG, dict(sorted(modules.items())))


# Identical Coin struct in two modules on both sides -> no mismatches.
def test_identical_models_have_no_mismatches():
    left = _pkg(a=ModuleInterface("a", structs={"Coin": _coin()}), b=ModuleInterface("b", structs={"Coin": _coin()}))
    right = _pkg(a=ModuleInterface("a", structs={"Coin": _coin()}), b=ModuleInterface("b", structs={"Coin": _coin()}))

    report = diff_packages(left, right)
    assert report.ok
    assert report.mismatches == []
    assert report.diff_summary == {}
    assert report.modules_with_diffs == []


# u64 locally vs u128 remotely at field 0 -> exactly one FieldMismatch at index 0.
def test_field_type_mismatch():
    left = _pkg(coin=ModuleInterface("coin", structs={"Coin": _coin("u64")}))
    right = _pkg(coin=ModuleInterface("coin", structs={"Coin": _coin("u128")}))

    report = diff_packages(left, right)
    assert report.diff_summary == {"FieldMismatch": 1}
    (m,) = report.mismatches
    assert m.category is MismatchCategory.FIELD_MISMATCH
    assert (m.module, m.kind, m.entity, m.slot, m.position) == ("coin", KIND_STRUCT, "Coin", "fields", 0)
    assert m.left == {"name": "value", "type": "u64"}
    assert m.right == {"name": "value", "type": "u128"}
    assert report.modules_with_diffs == ["coin"]


# Public locally, Friend remotely -> one VisibilityMismatch for f.
def test_visibility_mismatch():
    left = _pkg(m=ModuleInterface("m", functions={"f": FunctionInterface(Visibility.PUBLIC)}))
    right = _pkg(m=ModuleInterface("m", functions={"f": FunctionInterface(Visibility.FRIEND)}))

    report = diff_packages(left, right)
    assert [(m.category, m.entity, m.left, m.right) for m in report.mismatches] == [
        (MismatchCategory.VISIBILITY_MISMATCH, "f", "Public", "Friend"),
    ]


# A module missing remotely is reported once at module level and its contents are not compared.
def test_missing_module_is_not_descended_into():
    vault = ModuleInterface("vault", structs={"Vault": _coin()}, functions={"f": FunctionInterface(Visibility.PUBLIC)})
    left = _pkg(coin=ModuleInterface("coin"), vault=vault)
    right = _pkg(coin=ModuleInterface("coin"))

    report = diff_packages(left, right)
    assert report.missing_in_right == ["vault"]
    assert report.extra_in_right == []
    assert len(report.mismatches) == 1
    m = report.mismatches[0]
    assert (m.category, m.kind, m.module) == (MismatchCategory.MISSING_IN_RIGHT, KIND_MODULE, "vault")
    assert report.modules_with_diffs == []


# Entities present on one side only are MissingInRight / ExtraInRight at their own level.
def test_missing_and_extra_entities():
    left = _pkg(m=ModuleInterface("m", structs={"A": StructInterface()}, functions={"f": FunctionInterface(Visibility.PUBLIC)}))
    right = _pkg(m=ModuleInterface("m", structs={"B": StructInterface()}, functions={"f": FunctionInterface(Visibility.PUBLIC)}))

    report = diff_packages(left, right)
    assert [(m.category.value, m.kind, m.entity) for m in report.mismatches] == [
        ("MissingInRight", KIND_STRUCT, "A"),
        ("ExtraInRight", KIND_STRUCT, "B"),
    ]


# Type parameters are compared positionally: count, constraints of the common prefix, phantom flags on structs.
def test_type_parameter_mismatches():
    left = _pkg(m=ModuleInterface("m", structs={"S": StructInterface(type_parameters=(
        TypeParameter(frozenset({Ability.COPY}), is_phantom=True),
        TypeParameter(),
    ))}))
    right = _pkg(m=ModuleInterface("m", structs={"S": StructInterface(type_parameters=(
        TypeParameter(frozenset({Ability.DROP}), is_phantom=False),
    ))}))

    report = diff_packages(left, right)
    assert report.diff_summary == {
        "TypeParamConstraintMismatch": 1,
        "TypeParamCountMismatch": 1,
        "TypeParamPhantomMismatch": 1,
    }
    count = next(m for m in report.mismatches if m.category is MismatchCategory.TYPE_PARAM_COUNT_MISMATCH)
    assert (count.left, count.right) == (2, 1)
    constraint = next(m for m in report.mismatches if m.category is MismatchCategory.TYPE_PARAM_CONSTRAINT_MISMATCH)
    assert (constraint.position, constraint.left, constraint.right) == (0, ["Copy"], ["Drop"])


# Function flags and signatures: entry, native (only when both known), parameters and returns per position.
def test_function_flags_and_signatures():
    left = _pkg(m=ModuleInterface("m", functions={
        "f": FunctionInterface(Visibility.PUBLIC, is_entry=True, is_native=True,
                               parameters=(Primitive("u64"), Primitive("bool")), returns=(Primitive("u8"),)),
        "g": FunctionInterface(Visibility.PUBLIC, is_native=True),
    }))
    right = _pkg(m=ModuleInterface("m", functions={
        "f": FunctionInterface(Visibility.PUBLIC, is_entry=False, is_native=False,
                               parameters=(Primitive("u64"),), returns=(Primitive("u16"),)),
        "g": FunctionInterface(Visibility.PUBLIC, is_native=None),
    }))

    report = diff_packages(left, right)
    got = [(m.entity, m.category.value, m.slot, m.position, m.left, m.right) for m in report.mismatches]
    assert got == [
        ("f", "EntryMismatch", None, None, True, False),
        ("f", "NativeMismatch", None, None, True, False),
        ("f", "FunctionSignatureMismatch", "parameters", 1, "bool", None),
        ("f", "FunctionSignatureMismatch", "returns", 0, "u8", "u16"),
    ]


# Ability set differences on structs are AbilityMismatch.
def test_ability_mismatch():
    left = _pkg(m=ModuleInterface("m", structs={"S": StructInterface(abilities=frozenset({Ability.KEY}))}))
    right = _pkg(m=ModuleInterface("m", structs={"S": StructInterface(abilities=frozenset())}))
    (m,) = diff_packages(left, right).mismatches
    assert (m.category, m.left, m.right) == (MismatchCategory.ABILITY_MISMATCH, ["Key"], [])


# Mismatches are ordered module, then structs before functions, then entity, slot, position, category.
def test_mismatch_ordering():
    left = _pkg(
        b=ModuleInterface("b", functions={"a": FunctionInterface(Visibility.PUBLIC)}),
        a=ModuleInterface("a", structs={"Z": StructInterface(abilities=frozenset({Ability.COPY}))},
                          functions={"x": FunctionInterface(Visibility.PUBLIC)}),
    )
    right = _pkg(
        b=ModuleInterface("b", functions={"a": FunctionInterface(Visibility.FRIEND)}),
        a=ModuleInterface("a", structs={"Z": StructInterface()},
                          functions={"x": FunctionInterface(Visibility.FRIEND, is_entry=True)}),
    )
    keys = [(m.module, m.kind, m.entity, m.category.value) for m in diff_packages(left, right).mismatches]
    assert keys == [
        ("a", KIND_STRUCT, "Z", "AbilityMismatch"),
        ("a", KIND_FUNCTION, "x", "EntryMismatch"),
        ("a", KIND_FUNCTION, "x", "VisibilityMismatch"),
        ("b", KIND_FUNCTION, "a", "VisibilityMismatch"),
    ]


# Diffing a model against a deep copy of itself yields ok with no mismatches.
def test_self_diff_of_normalized_package():
    model = normalize_local(PKG, local_package())
    report = diff_packages(model, deepcopy(model))
    assert report.ok and report.mismatch_count == 0


# Real fixture pair: the only difference is the declared visibility of value().
def test_normalized_fixture_pair():
    left = normalize_local(PKG, local_package(value_visibility="public"))
    right = normalize_rpc(PKG, rpc_package(value_visibility="Friend"))
    report = diff_packages(left, right)
    assert report.diff_summary == {"VisibilityMismatch": 1}
    assert report.modules_with_diffs == ["coin"]


# missing_in_right(A, B) == extra_in_right(B, A).
def test_set_difference_symmetry():
    a = _pkg(x=ModuleInterface("x"), y=ModuleInterface("y"))
    b = _pkg(y=ModuleInterface("y"), z=ModuleInterface("z"))
    assert missing_in_right(a, b) == extra_in_right(b, a) == ["x"]
    assert missing_in_right(b, a) == extra_in_right(a, b) == ["z"]


# Per-category counts add up to the mismatch list, and repeated diffs serialize identically.
def test_completeness_and_determinism():
    left = normalize_local(PKG, local_package(coin_value_type="u64"))
    right = normalize_rpc(PKG, rpc_package(coin_value_type="U128", value_visibility="Friend", with_vault=False))

    first = diff_packages(left, right)
    second = diff_packages(left, right)
    assert sum(first.diff_summary.values()) == len(first.mismatches)
    dump = lambda r: json.dumps([m.to_json() for m in r.mismatches], sort_keys=True)
    assert dump(first) == dump(second)
    assert first.missing_in_right == ["vault"]


# The differ refuses inputs that are not two canonical models of one package.
def test_diff_internal_errors():
    model = _pkg()
    with pytest.raises(DiffInternalError):
        diff_packages(model, {"modules": {}})
    with pytest.raises(DiffInternalError):
        diff_packages(model, PackageInterface("0x" + "0" * 64))
