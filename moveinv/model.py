# moveinv/model.py
"""
Canonical, source-independent model of a package's public interface.

Both raw encodings (local extractor output and RPC normalized modules) are
mapped onto these types by ``moveinv.normalize``; the differ only ever sees
these. Instances are built once and never mutated afterwards.

Ordering rules:
  - abilities, constraint sets: unordered (frozensets)
  - type parameters, fields, parameters, returns: positional (tuples)
  - modules, structs, functions: keyed by name, iterated lexicographically
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union


class Ability(Enum):
    COPY = 0x1
    DROP = 0x2
    STORE = 0x4
    KEY = 0x8

    @property
    def token(self) -> str:
        return self.name.capitalize()


class Visibility(Enum):
    PUBLIC = "Public"
    FRIEND = "Friend"
    PRIVATE = "Private"


PRIMITIVES = ("bool", "u8", "u16", "u32", "u64", "u128", "u256", "address", "signer")

AbilitySet = FrozenSet[Ability]


def ability_tokens(abilities: Iterable[Ability]) -> List[str]:
    """Stable rendering of an ability set (declaration order Copy, Drop, Store, Key)."""
    return [a.token for a in sorted(abilities, key=lambda a: a.value)]


# --------------------------- type signatures ---------------------------

@dataclass(frozen=True)
class Primitive:
    name: str

    def to_json(self) -> Any:
        return self.name

    def render(self) -> str:
        return self.name


@dataclass(frozen=True)
class TypeParameterRef:
    index: int

    def to_json(self) -> Any:
        return {"type_parameter": self.index}

    def render(self) -> str:
        return f"T{self.index}"


@dataclass(frozen=True)
class StructType:
    address: str
    module: str
    name: str
    type_arguments: Tuple["TypeSignature", ...] = ()

    @property
    def module_path(self) -> str:
        return f"{self.address}::{self.module}"

    def to_json(self) -> Any:
        return {
            "struct": {
                "address": self.address,
                "module": self.module,
                "name": self.name,
                "type_arguments": [t.to_json() for t in self.type_arguments],
            }
        }

    def render(self) -> str:
        base = f"{short_address(self.address)}::{self.module}::{self.name}"
        if not self.type_arguments:
            return base
        return base + "<" + ", ".join(t.render() for t in self.type_arguments) + ">"


@dataclass(frozen=True)
class Reference:
    mutable: bool
    inner: "TypeSignature"

    def to_json(self) -> Any:
        return {"mutable_reference" if self.mutable else "reference": self.inner.to_json()}

    def render(self) -> str:
        return ("&mut " if self.mutable else "&") + self.inner.render()


@dataclass(frozen=True)
class Vector:
    inner: "TypeSignature"

    def to_json(self) -> Any:
        return {"vector": self.inner.to_json()}

    def render(self) -> str:
        return f"vector<{self.inner.render()}>"


TypeSignature = Union[Primitive, TypeParameterRef, StructType, Reference, Vector]


def short_address(address: str) -> str:
    """0x000...02 -> 0x2 (display only; comparison uses the long form)."""
    body = address[2:] if address.startswith("0x") else address
    body = body.lstrip("0") or "0"
    return "0x" + body


def type_to_json(t: Optional[TypeSignature]) -> Any:
    return None if t is None else t.to_json()


# --------------------------- declarations ---------------------------

@dataclass(frozen=True)
class TypeParameter:
    constraints: AbilitySet = frozenset()
    is_phantom: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {"is_phantom": self.is_phantom, "constraints": ability_tokens(self.constraints)}


@dataclass(frozen=True)
class Field:
    name: str
    type: TypeSignature

    def to_json(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type.to_json()}


@dataclass(frozen=True)
class StructInterface:
    abilities: AbilitySet = frozenset()
    type_parameters: Tuple[TypeParameter, ...] = ()
    fields: Tuple[Field, ...] = ()


@dataclass(frozen=True)
class FunctionInterface:
    visibility: Visibility
    is_entry: bool = False
    # None: the source does not report the flag
    is_native: Optional[bool] = False
    type_parameters: Tuple[TypeParameter, ...] = ()
    parameters: Tuple[TypeSignature, ...] = ()
    returns: Tuple[TypeSignature, ...] = ()


@dataclass(frozen=True)
class ModuleInterface:
    name: str
    structs: Dict[str, StructInterface] = field(default_factory=dict)
    functions: Dict[str, FunctionInterface] = field(default_factory=dict)

    def struct_names(self) -> List[str]:
        return sorted(self.structs)

    def function_names(self) -> List[str]:
        return sorted(self.functions)


@dataclass(frozen=True)
class PackageInterface:
    package_id: str
    modules: Dict[str, ModuleInterface] = field(default_factory=dict)

    def module_names(self) -> List[str]:
        return sorted(self.modules)

    def counts(self) -> Dict[str, int]:
        return {
            "modules": len(self.modules),
            "structs": sum(len(m.structs) for m in self.modules.values()),
            "functions": sum(len(m.functions) for m in self.modules.values()),
        }
