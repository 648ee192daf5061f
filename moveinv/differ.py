# moveinv/differ.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from moveinv.errors import DiffInternalError
from moveinv.model import (
    AbilitySet,
    Field,
    FunctionInterface,
    ModuleInterface,
    PackageInterface,
    StructInterface,
    TypeParameter,
    ability_tokens,
    type_to_json,
)


class MismatchCategory(Enum):
    MISSING_IN_RIGHT = "MissingInRight"
    EXTRA_IN_RIGHT = "ExtraInRight"
    ABILITY_MISMATCH = "AbilityMismatch"
    TYPE_PARAM_COUNT_MISMATCH = "TypeParamCountMismatch"
    TYPE_PARAM_CONSTRAINT_MISMATCH = "TypeParamConstraintMismatch"
    TYPE_PARAM_PHANTOM_MISMATCH = "TypeParamPhantomMismatch"
    FIELD_MISMATCH = "FieldMismatch"
    VISIBILITY_MISMATCH = "VisibilityMismatch"
    ENTRY_MISMATCH = "EntryMismatch"
    NATIVE_MISMATCH = "NativeMismatch"
    FUNCTION_SIGNATURE_MISMATCH = "FunctionSignatureMismatch"


# entity kinds, in mismatch-list order
KIND_MODULE = "module"
KIND_STRUCT = "struct"
KIND_FUNCTION = "function"
_KIND_RANK = {KIND_MODULE: 0, KIND_STRUCT: 1, KIND_FUNCTION: 2}


@dataclass(frozen=True)
class Mismatch:
    """
    One discrepancy between the left (local) and right (remote) model.

    ``slot`` names the positional sequence ``position`` indexes into
    (fields, type_parameters, parameters, returns); both are None for
    whole-entity mismatches. ``left``/``right`` hold JSON-ready values,
    None meaning "absent on that side".
    """
    category: MismatchCategory
    module: str
    kind: str
    entity: str
    slot: Optional[str] = None
    position: Optional[int] = None
    left: Any = None
    right: Any = None

    def sort_key(self) -> Tuple[Any, ...]:
        return (
            self.module,
            _KIND_RANK[self.kind],
            self.entity,
            self.slot or "",
            -1 if self.position is None else self.position,
            self.category.value,
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "module": self.module,
            "kind": self.kind,
            "entity": self.entity,
            "slot": self.slot,
            "position": self.position,
            "left": self.left,
            "right": self.right,
        }


@dataclass
class DiffReport:
    package_id: str
    missing_in_right: List[str] = field(default_factory=list)
    extra_in_right: List[str] = field(default_factory=list)
    modules_with_diffs: List[str] = field(default_factory=list)
    mismatches: List[Mismatch] = field(default_factory=list)
    diff_summary: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.mismatches

    @property
    def mismatch_count(self) -> int:
        return len(self.mismatches)


# --------------------------- set differences ---------------------------

def missing_in_right(left: PackageInterface, right: PackageInterface) -> List[str]:
    """Module names present in ``left`` only."""
    return sorted(set(left.modules) - set(right.modules))


def extra_in_right(left: PackageInterface, right: PackageInterface) -> List[str]:
    """Module names present in ``right`` only."""
    return sorted(set(right.modules) - set(left.modules))


# --------------------------- comparison helpers ---------------------------

def _abilities_json(s: AbilitySet) -> List[str]:
    return ability_tokens(s)


def _field_json(f: Optional[Field]) -> Any:
    return None if f is None else f.to_json()


class _ModuleDiffer:
    """Collects mismatches for one commonly-named module."""

    def __init__(self, module: str):
        self.module = module
        self.out: List[Mismatch] = []

    def _add(self, category: MismatchCategory, kind: str, entity: str, **kw: Any) -> None:
        self.out.append(Mismatch(category=category, module=self.module, kind=kind, entity=entity, **kw))

    def _names(self, kind: str, left: Dict[str, Any], right: Dict[str, Any]) -> List[str]:
        for name in sorted(set(left) - set(right)):
            self._add(MismatchCategory.MISSING_IN_RIGHT, kind, name, left=True, right=False)
        for name in sorted(set(right) - set(left)):
            self._add(MismatchCategory.EXTRA_IN_RIGHT, kind, name, left=False, right=True)
        return sorted(set(left) & set(right))

    def _type_parameters(self, kind: str, entity: str,
                         left: Sequence[TypeParameter], right: Sequence[TypeParameter]) -> None:
        if len(left) != len(right):
            self._add(MismatchCategory.TYPE_PARAM_COUNT_MISMATCH, kind, entity,
                      slot="type_parameters", left=len(left), right=len(right))
        # common prefix is still compared position by position
        for idx, (lp, rp) in enumerate(zip(left, right)):
            if lp.constraints != rp.constraints:
                self._add(MismatchCategory.TYPE_PARAM_CONSTRAINT_MISMATCH, kind, entity,
                          slot="type_parameters", position=idx,
                          left=_abilities_json(lp.constraints), right=_abilities_json(rp.constraints))
            if kind == KIND_STRUCT and lp.is_phantom != rp.is_phantom:
                self._add(MismatchCategory.TYPE_PARAM_PHANTOM_MISMATCH, kind, entity,
                          slot="type_parameters", position=idx,
                          left=lp.is_phantom, right=rp.is_phantom)

    def structs(self, left: ModuleInterface, right: ModuleInterface) -> None:
        for name in self._names(KIND_STRUCT, left.structs, right.structs):
            self.struct(name, left.structs[name], right.structs[name])

    def struct(self, name: str, ls: StructInterface, rs: StructInterface) -> None:
        if ls.abilities != rs.abilities:
            self._add(MismatchCategory.ABILITY_MISMATCH, KIND_STRUCT, name, slot="abilities",
                      left=_abilities_json(ls.abilities), right=_abilities_json(rs.abilities))
        self._type_parameters(KIND_STRUCT, name, ls.type_parameters, rs.type_parameters)

        for idx in range(max(len(ls.fields), len(rs.fields))):
            lf = ls.fields[idx] if idx < len(ls.fields) else None
            rf = rs.fields[idx] if idx < len(rs.fields) else None
            if lf != rf:
                self._add(MismatchCategory.FIELD_MISMATCH, KIND_STRUCT, name, slot="fields",
                          position=idx, left=_field_json(lf), right=_field_json(rf))

    def functions(self, left: ModuleInterface, right: ModuleInterface) -> None:
        for name in self._names(KIND_FUNCTION, left.functions, right.functions):
            self.function(name, left.functions[name], right.functions[name])

    def function(self, name: str, lf: FunctionInterface, rf: FunctionInterface) -> None:
        if lf.visibility != rf.visibility:
            self._add(MismatchCategory.VISIBILITY_MISMATCH, KIND_FUNCTION, name,
                      left=lf.visibility.value, right=rf.visibility.value)
        if lf.is_entry != rf.is_entry:
            self._add(MismatchCategory.ENTRY_MISMATCH, KIND_FUNCTION, name,
                      left=lf.is_entry, right=rf.is_entry)
        # is_native is only comparable when both sources report it
        if lf.is_native is not None and rf.is_native is not None and lf.is_native != rf.is_native:
            self._add(MismatchCategory.NATIVE_MISMATCH, KIND_FUNCTION, name,
                      left=lf.is_native, right=rf.is_native)
        self._type_parameters(KIND_FUNCTION, name, lf.type_parameters, rf.type_parameters)

        for slot, lseq, rseq in (("parameters", lf.parameters, rf.parameters),
                                 ("returns", lf.returns, rf.returns)):
            for idx in range(max(len(lseq), len(rseq))):
                lt = lseq[idx] if idx < len(lseq) else None
                rt = rseq[idx] if idx < len(rseq) else None
                if lt != rt:
                    self._add(MismatchCategory.FUNCTION_SIGNATURE_MISMATCH, KIND_FUNCTION, name,
                              slot=slot, position=idx, left=type_to_json(lt), right=type_to_json(rt))


# --------------------------- entry point ---------------------------

def summarize(mismatches: Sequence[Mismatch]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for m in mismatches:
        counts[m.category.value] = counts.get(m.category.value, 0) + 1
    return {k: counts[k] for k in sorted(counts)}


def diff_packages(left: PackageInterface, right: PackageInterface) -> DiffReport:
    """
    Structural diff of two canonical models of the same package.

    ``left`` is the local model, ``right`` the remote one. Modules missing on
    either side are reported once at module level; their contents are not
    compared. Inputs are never mutated.
    """
    if not isinstance(left, PackageInterface) or not isinstance(right, PackageInterface):
        raise DiffInternalError(
            f"expected two PackageInterface values, got {type(left).__name__} and {type(right).__name__}"
        )
    if left.package_id != right.package_id:
        raise DiffInternalError(f"package id mismatch: {left.package_id} vs {right.package_id}")

    report = DiffReport(
        package_id=left.package_id,
        missing_in_right=missing_in_right(left, right),
        extra_in_right=extra_in_right(left, right),
    )

    mismatches: List[Mismatch] = []
    for name in report.missing_in_right:
        mismatches.append(Mismatch(MismatchCategory.MISSING_IN_RIGHT, name, KIND_MODULE, name, left=True, right=False))
    for name in report.extra_in_right:
        mismatches.append(Mismatch(MismatchCategory.EXTRA_IN_RIGHT, name, KIND_MODULE, name, left=False, right=True))

    for name in sorted(set(left.modules) & set(right.modules)):
        md = _ModuleDiffer(name)
        md.structs(left.modules[name], right.modules[name])
        md.functions(left.modules[name], right.modules[name])
        if md.out:
            report.modules_with_diffs.append(name)
            mismatches.extend(md.out)

    report.mismatches = sorted(mismatches, key=Mismatch.sort_key)
    report.diff_summary = summarize(report.mismatches)

    if sum(report.diff_summary.values()) != len(report.mismatches):
        raise DiffInternalError("category counts do not add up to the mismatch list")
    return report
