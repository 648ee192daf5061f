# moveinv/normalize.py
from __future__ import annotations
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from moveinv.errors import (
    ExtractionError,
    MalformedInterface,
    UnknownAbilityToken,
    UnknownVisibilityToken,
)
from moveinv.model import (
    PRIMITIVES,
    Ability,
    AbilitySet,
    Field,
    FunctionInterface,
    ModuleInterface,
    PackageInterface,
    Primitive,
    Reference,
    StructInterface,
    StructType,
    TypeParameter,
    TypeParameterRef,
    TypeSignature,
    Vector,
    Visibility,
)

_HEX_RE = re.compile(r"^[0-9a-fA-F]{1,64}$")

_ABILITY_BY_NAME = {a.name.lower(): a for a in Ability}
_ABILITY_MASK = sum(a.value for a in Ability)

_LOCAL_VISIBILITY = {
    "public": Visibility.PUBLIC,
    "friend": Visibility.FRIEND,
    "public(friend)": Visibility.FRIEND,
    "package": Visibility.FRIEND,
    "public(package)": Visibility.FRIEND,
    "private": Visibility.PRIVATE,
}

_RPC_VISIBILITY = {
    "Public": Visibility.PUBLIC,
    "Friend": Visibility.FRIEND,
    "Package": Visibility.FRIEND,
    "Private": Visibility.PRIVATE,
}

_RPC_ABILITY = {a.token: a for a in Ability}
_RPC_PRIMITIVE = {p.capitalize(): p for p in PRIMITIVES}


def canonical_address(value: Any, *, source: str | None = None) -> str:
    """'0x2' / '2' / '0x0000..02' -> '0x' + 64 lowercase hex digits."""
    s = str(value or "").strip()
    body = s[2:] if s[:2].lower() == "0x" else s
    if not _HEX_RE.match(body):
        raise MalformedInterface(f"invalid address '{value}'", source=source)
    return "0x" + body.lower().rjust(64, "0")


class _Normalizer:
    """
    Shared skeleton: package -> modules -> structs/functions -> types.
    Subclasses only say how a token, a type or a declaration is spelled.
    """

    source = "raw"

    # --- hooks ---
    def _module_entries(self, raw: Any) -> List[Tuple[str, Dict[str, Any]]]:
        raise NotImplementedError

    def _struct_entries(self, module: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def _function_entries(self, module: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def _abilities(self, raw: Any, where: str) -> AbilitySet:
        raise NotImplementedError

    def _visibility(self, raw: Any, where: str) -> Visibility:
        raise NotImplementedError

    def _type_parameter(self, raw: Any, where: str) -> Tuple[Optional[str], TypeParameter]:
        raise NotImplementedError

    def _type(self, raw: Any, tparams: Sequence[Optional[str]], where: str) -> TypeSignature:
        raise NotImplementedError

    def _function(self, raw: Dict[str, Any], where: str) -> Optional[FunctionInterface]:
        raise NotImplementedError

    # --- shared ---
    def _fail(self, msg: str) -> MalformedInterface:
        return MalformedInterface(msg, source=self.source)

    def _named_entries(self, entries: Any, what: str, where: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Accept {name: obj} or [{name, ...}]; names must be unique."""
        out: List[Tuple[str, Dict[str, Any]]] = []
        if entries is None:
            return out
        if isinstance(entries, dict):
            items = [(str(k), v) for k, v in entries.items()]
        elif isinstance(entries, list):
            items = []
            for idx, v in enumerate(entries):
                if not isinstance(v, dict) or not v.get("name"):
                    raise self._fail(f"{where}: {what} #{idx} has no name")
                items.append((str(v["name"]), v))
        else:
            raise self._fail(f"{where}: {what}s must be a mapping or a list, got {type(entries).__name__}")

        seen = set()
        for name, v in items:
            if not isinstance(v, dict):
                raise self._fail(f"{where}: {what} '{name}' is not an object")
            if name in seen:
                raise self._fail(f"{where}: duplicate {what} '{name}'")
            seen.add(name)
            out.append((name, v))
        return out

    def _type_parameters(self, raw: Any, where: str) -> Tuple[List[Optional[str]], Tuple[TypeParameter, ...]]:
        if raw is None:
            return [], ()
        if not isinstance(raw, list):
            raise self._fail(f"{where}: type parameters must be a list")
        names: List[Optional[str]] = []
        params: List[TypeParameter] = []
        for idx, tp in enumerate(raw):
            name, param = self._type_parameter(tp, f"{where}<#{idx}>")
            names.append(name)
            params.append(param)
        return names, tuple(params)

    def _type_list(self, raw: Any, tparams: Sequence[Optional[str]], where: str) -> Tuple[TypeSignature, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, list):
            raise self._fail(f"{where}: expected a list of types")
        return tuple(self._type(t, tparams, f"{where}[{i}]") for i, t in enumerate(raw))

    def _type_param_index(self, raw: Any, tparams: Sequence[Optional[str]], where: str) -> int:
        if isinstance(raw, bool):
            raise self._fail(f"{where}: invalid type parameter reference {raw!r}")
        if isinstance(raw, int):
            idx = raw
        elif isinstance(raw, str) and raw in tparams:
            idx = list(tparams).index(raw)
        else:
            raise self._fail(f"{where}: unresolved type parameter {raw!r}")
        if idx < 0 or idx >= len(tparams):
            raise self._fail(f"{where}: type parameter index {idx} out of range ({len(tparams)} declared)")
        return idx

    def _struct(self, raw: Dict[str, Any], where: str) -> StructInterface:
        names, tparams = self._type_parameters(self._struct_type_params(raw), where)
        fields: List[Field] = []
        raw_fields = raw.get("fields")
        if raw_fields is None:
            raw_fields = []
        if not isinstance(raw_fields, list):
            raise self._fail(f"{where}: fields must be a list")
        for idx, f in enumerate(raw_fields):
            if not isinstance(f, dict) or not f.get("name") or "type" not in f:
                raise self._fail(f"{where}: field #{idx} needs 'name' and 'type'")
            fields.append(Field(str(f["name"]), self._type(f["type"], names, f"{where}.{f['name']}")))
        return StructInterface(
            abilities=self._abilities(self._struct_abilities(raw), where),
            type_parameters=tparams,
            fields=tuple(fields),
        )

    def _struct_type_params(self, raw: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def _struct_abilities(self, raw: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def _module(self, name: str, raw: Dict[str, Any]) -> ModuleInterface:
        structs: Dict[str, StructInterface] = {}
        for sname, sraw in self._named_entries(self._struct_entries(raw), "struct", name):
            structs[sname] = self._struct(sraw, f"{name}::{sname}")

        functions: Dict[str, FunctionInterface] = {}
        for fname, fraw in self._named_entries(self._function_entries(raw), "function", name):
            fn = self._function(fraw, f"{name}::{fname}")
            if fn is not None:
                functions[fname] = fn

        return ModuleInterface(
            name=name,
            structs={k: structs[k] for k in sorted(structs)},
            functions={k: functions[k] for k in sorted(functions)},
        )

    def normalize(self, package_id: str, raw: Any) -> PackageInterface:
        if isinstance(raw, PackageInterface):
            return raw
        modules: Dict[str, ModuleInterface] = {}
        for name, mraw in self._module_entries(raw):
            if name in modules:
                raise self._fail(f"duplicate module '{name}'")
            modules[name] = self._module(name, mraw)
        return PackageInterface(
            package_id=package_id,
            modules={k: modules[k] for k in sorted(modules)},
        )


class LocalNormalizer(_Normalizer):
    """
    Local extractor encoding (snake_case keys, lowercase tokens).

      - abilities: Move bitmask int (Copy=1, Drop=2, Store=4, Key=8) or list of names
      - visibility: public | friend | public(friend) | package | public(package) | private
      - type parameters may be referenced by declared name or by index
      - exposed_only drops private non-entry functions (not part of the RPC surface)
      - self_address drops modules that belong to other packages (dependencies)
    """

    source = "local"

    def __init__(self, *, exposed_only: bool = True, self_address: str | None = None):
        self.exposed_only = exposed_only
        self.self_address = canonical_address(self_address, source=self.source) if self_address else None

    def _module_entries(self, raw: Any) -> List[Tuple[str, Dict[str, Any]]]:
        if isinstance(raw, dict) and "modules" in raw:
            raw = raw["modules"]
        entries = self._named_entries(raw, "module", "package")
        # a package always has at least one module of its own
        if not entries:
            raise ExtractionError("local extraction produced no modules", kind="not_found")
        if self.self_address is None:
            return entries

        kept = []
        for name, m in entries:
            addr = m.get("address")
            if addr is None or canonical_address(addr, source=self.source) == self.self_address:
                kept.append((name, m))
        if not kept:
            raise ExtractionError(
                f"no local modules at package address {self.self_address} "
                f"(found {sorted({str(m.get('address')) for _, m in entries})})",
                kind="not_found",
            )
        return kept

    def _struct_entries(self, module: Dict[str, Any]) -> Any:
        return module.get("structs")

    def _function_entries(self, module: Dict[str, Any]) -> Any:
        return module.get("functions")

    def _struct_type_params(self, raw: Dict[str, Any]) -> Any:
        return raw.get("type_parameters")

    def _struct_abilities(self, raw: Dict[str, Any]) -> Any:
        return raw.get("abilities")

    def _abilities(self, raw: Any, where: str) -> AbilitySet:
        if raw is None:
            return frozenset()
        if isinstance(raw, bool):
            raise UnknownAbilityToken(f"{where}: ability set {raw!r}", source=self.source)
        if isinstance(raw, int):
            if raw < 0 or raw & ~_ABILITY_MASK:
                raise UnknownAbilityToken(f"{where}: ability bitmask 0x{raw:x} has unknown bits", source=self.source)
            return frozenset(a for a in Ability if raw & a.value)
        if isinstance(raw, (list, tuple)):
            out = set()
            for tok in raw:
                a = _ABILITY_BY_NAME.get(str(tok).strip().lower())
                if a is None:
                    raise UnknownAbilityToken(f"{where}: unknown ability '{tok}'", source=self.source)
                out.add(a)
            return frozenset(out)
        raise UnknownAbilityToken(f"{where}: unsupported ability encoding {raw!r}", source=self.source)

    def _visibility(self, raw: Any, where: str) -> Visibility:
        vis = _LOCAL_VISIBILITY.get(str(raw).strip().lower())
        if vis is None:
            raise UnknownVisibilityToken(f"{where}: unknown visibility '{raw}'", source=self.source)
        return vis

    def _type_parameter(self, raw: Any, where: str) -> Tuple[Optional[str], TypeParameter]:
        if raw is None:
            return None, TypeParameter()
        if not isinstance(raw, dict):
            raise self._fail(f"{where}: type parameter must be an object")
        name = raw.get("name")
        return (str(name) if name else None), TypeParameter(
            constraints=self._abilities(raw.get("constraints"), where),
            is_phantom=bool(raw.get("is_phantom", False)),
        )

    def _type(self, raw: Any, tparams: Sequence[Optional[str]], where: str) -> TypeSignature:
        if isinstance(raw, str):
            prim = raw.strip().lower()
            if prim not in PRIMITIVES:
                raise self._fail(f"{where}: unknown primitive type '{raw}'")
            return Primitive(prim)
        if not isinstance(raw, dict) or len(raw) != 1:
            raise self._fail(f"{where}: malformed type {raw!r}")

        tag, body = next(iter(raw.items()))
        if tag == "vector":
            return Vector(self._type(body, tparams, where))
        if tag == "reference":
            return Reference(False, self._type(body, tparams, where))
        if tag == "mutable_reference":
            return Reference(True, self._type(body, tparams, where))
        if tag == "type_parameter":
            return TypeParameterRef(self._type_param_index(body, tparams, where))
        if tag == "datatype":
            if not isinstance(body, dict) or not body.get("module") or not body.get("name"):
                raise self._fail(f"{where}: datatype needs 'address', 'module' and 'name'")
            return StructType(
                address=canonical_address(body.get("address"), source=self.source),
                module=str(body["module"]),
                name=str(body["name"]),
                type_arguments=self._type_list(body.get("type_arguments"), tparams, where),
            )
        raise self._fail(f"{where}: unknown type tag '{tag}'")

    def _function(self, raw: Dict[str, Any], where: str) -> Optional[FunctionInterface]:
        if "visibility" not in raw or raw.get("visibility") is None:
            raise self._fail(f"{where}: function has no declared visibility")
        visibility = self._visibility(raw["visibility"], where)
        is_entry = bool(raw.get("is_entry", False))
        if self.exposed_only and visibility is Visibility.PRIVATE and not is_entry:
            return None

        names, tparams = self._type_parameters(raw.get("type_parameters"), where)
        return FunctionInterface(
            visibility=visibility,
            is_entry=is_entry,
            is_native=bool(raw.get("is_native", False)),
            type_parameters=tparams,
            parameters=self._type_list(raw.get("parameters"), names, f"{where}(param)"),
            returns=self._type_list(raw.get("returns"), names, f"{where}(return)"),
        )


class RpcNormalizer(_Normalizer):
    """
    Sui fullnode normalized-module encoding (camelCase keys, PascalCase tokens),
    i.e. the result of sui_getNormalizedMoveModulesByPackage.
    """

    source = "rpc"

    def _module_entries(self, raw: Any) -> List[Tuple[str, Dict[str, Any]]]:
        if not isinstance(raw, dict):
            raise self._fail(f"expected modules to be an object, got {type(raw).__name__}")
        out = []
        for key, m in raw.items():
            if not isinstance(m, dict):
                raise self._fail(f"module '{key}' is not an object")
            # key by the module's self-name, which is what the local side sees
            out.append((str(m.get("name") or key), m))
        return out

    def _struct_entries(self, module: Dict[str, Any]) -> Any:
        return module.get("structs")

    def _function_entries(self, module: Dict[str, Any]) -> Any:
        return module.get("exposedFunctions")

    def _struct_type_params(self, raw: Dict[str, Any]) -> Any:
        return raw.get("typeParameters")

    def _struct_abilities(self, raw: Dict[str, Any]) -> Any:
        return raw.get("abilities")

    def _abilities(self, raw: Any, where: str) -> AbilitySet:
        # {"abilities": [...]} or a bare list; absent and empty are the same set
        if isinstance(raw, dict):
            raw = raw.get("abilities")
        if raw is None:
            return frozenset()
        if not isinstance(raw, list):
            raise UnknownAbilityToken(f"{where}: unsupported ability encoding {raw!r}", source=self.source)
        out = set()
        for tok in raw:
            a = _RPC_ABILITY.get(tok) if isinstance(tok, str) else None
            if a is None:
                raise UnknownAbilityToken(f"{where}: unknown ability '{tok}'", source=self.source)
            out.add(a)
        return frozenset(out)

    def _visibility(self, raw: Any, where: str) -> Visibility:
        vis = _RPC_VISIBILITY.get(raw) if isinstance(raw, str) else None
        if vis is None:
            raise UnknownVisibilityToken(f"{where}: unknown visibility '{raw}'", source=self.source)
        return vis

    def _type_parameter(self, raw: Any, where: str) -> Tuple[Optional[str], TypeParameter]:
        if not isinstance(raw, dict):
            raise self._fail(f"{where}: type parameter must be an object")
        # struct params: {constraints: {abilities}, isPhantom}; function params: {abilities}
        constraints = raw.get("constraints", raw)
        return None, TypeParameter(
            constraints=self._abilities(constraints, where),
            is_phantom=bool(raw.get("isPhantom", False)),
        )

    def _type(self, raw: Any, tparams: Sequence[Optional[str]], where: str) -> TypeSignature:
        if isinstance(raw, str):
            prim = _RPC_PRIMITIVE.get(raw)
            if prim is None:
                raise self._fail(f"{where}: unknown primitive type '{raw}'")
            return Primitive(prim)
        if not isinstance(raw, dict) or len(raw) != 1:
            raise self._fail(f"{where}: malformed type {raw!r}")

        tag, body = next(iter(raw.items()))
        if tag == "Vector":
            return Vector(self._type(body, tparams, where))
        if tag == "Reference":
            return Reference(False, self._type(body, tparams, where))
        if tag == "MutableReference":
            return Reference(True, self._type(body, tparams, where))
        if tag == "TypeParameter":
            return TypeParameterRef(self._type_param_index(body, tparams, where))
        if tag == "Struct":
            if not isinstance(body, dict) or not body.get("module") or not body.get("name"):
                raise self._fail(f"{where}: Struct needs 'address', 'module' and 'name'")
            return StructType(
                address=canonical_address(body.get("address"), source=self.source),
                module=str(body["module"]),
                name=str(body["name"]),
                type_arguments=self._type_list(body.get("typeArguments"), tparams, where),
            )
        raise self._fail(f"{where}: unknown type tag '{tag}'")

    def _function(self, raw: Dict[str, Any], where: str) -> Optional[FunctionInterface]:
        if raw.get("visibility") is None:
            raise self._fail(f"{where}: function has no declared visibility")
        names, tparams = self._type_parameters(raw.get("typeParameters"), where)
        native = raw.get("isNative")
        return FunctionInterface(
            visibility=self._visibility(raw["visibility"], where),
            is_entry=bool(raw.get("isEntry", False)),
            is_native=None if native is None else bool(native),
            type_parameters=tparams,
            parameters=self._type_list(raw.get("parameters"), names, f"{where}(param)"),
            returns=self._type_list(raw.get("return"), names, f"{where}(return)"),
        )


def normalize_local(
    package_id: str,
    raw: Any,
    *,
    exposed_only: bool = True,
    self_address: str | None = None,
) -> PackageInterface:
    return LocalNormalizer(exposed_only=exposed_only, self_address=self_address).normalize(package_id, raw)


def normalize_rpc(package_id: str, raw: Any) -> PackageInterface:
    return RpcNormalizer().normalize(package_id, raw)
