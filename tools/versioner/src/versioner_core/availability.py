from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from .arch import ARCHS_32, ARCHS_64, FUTURE_API_LEVEL, Arch, arch_from_string
from .common import AvailabilityError

AXES = ("introduced", "deprecated", "obsoleted")
KINDS = AXES + ("future",)

SCOPE_ARCHS: dict[str, tuple[Arch, ...]] = {
    "arm": (Arch.ARM,),
    "arm64": (Arch.ARM64,),
    "mips": (Arch.MIPS,),
    "mips64": (Arch.MIPS64,),
    "x86": (Arch.X86,),
    "x86_64": (Arch.X86_64,),
    "32": ARCHS_32,
    "64": ARCHS_64,
}

NO_GUARD_ANNOTATION = "versioner_no_guard"

_ANNOTATION_RE = re.compile(
    r"^(?P<kind>introduced|deprecated|obsoleted)_in(?:_(?P<scope>[a-z0-9_]+?))?\s*=\s*(?P<level>\S+)$"
)
_MACRO_KINDS = {
    "INTRODUCED_IN": "introduced",
    "DEPRECATED_IN": "deprecated",
    "REMOVED_IN": "obsoleted",
    "OBSOLETED_IN": "obsoleted",
}


@dataclass(frozen=True)
class AvailabilityAttribute:
    kind: str
    level: int = 0
    arch: Arch | None = None

    def sort_key(self) -> tuple[str, int, str]:
        return (self.kind, self.level, "" if self.arch is None else self.arch.value)

    def __str__(self) -> str:
        scope = "" if self.arch is None else f"_{self.arch}"
        if self.kind == "future":
            return f"introduced_in_future{scope}"
        return f"{self.kind}_in{scope}={self.level}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "level": self.level,
            "arch": None if self.arch is None else self.arch.value,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AvailabilityAttribute:
        kind = str(payload.get("kind"))
        if kind not in KINDS:
            raise AvailabilityError(f"unknown availability kind '{kind}'")
        arch_value = payload.get("arch")
        arch = None if arch_value is None else arch_from_string(str(arch_value))
        return cls(kind=kind, level=int(payload.get("level", 0)), arch=arch)


def _resolve_scope(scope: str | None, source: str) -> tuple[Arch | None, ...]:
    if not scope:
        return (None,)
    archs = SCOPE_ARCHS.get(scope.lower())
    if archs is None:
        raise AvailabilityError(f"unknown availability scope '{scope}' in '{source}'")
    return archs


def _make_attributes(kind: str, level_text: str, scope: str | None, source: str) -> list[AvailabilityAttribute]:
    archs = _resolve_scope(scope, source)
    level_text = level_text.strip()
    if level_text in {"__ANDROID_API_FUTURE__", "future"}:
        level = FUTURE_API_LEVEL
    else:
        try:
            level = int(level_text, 0)
        except ValueError as exc:
            raise AvailabilityError(f"invalid API level '{level_text}' in '{source}'") from exc
    if level <= 0:
        raise AvailabilityError(f"API level must be positive in '{source}'")
    if level >= FUTURE_API_LEVEL:
        if kind != "introduced":
            raise AvailabilityError(f"only introduced levels may be in the future: '{source}'")
        return [AvailabilityAttribute(kind="future", arch=arch) for arch in archs]
    return [AvailabilityAttribute(kind=kind, level=level, arch=arch) for arch in archs]


def parse_annotation(text: str) -> list[AvailabilityAttribute]:
    """Parse one ``annotate("...")`` string emitted by the versioning macros.

    Returns an empty list for annotations unrelated to availability, and
    raises AvailabilityError for malformed availability annotations.
    """
    value = text.strip()
    if value in {"introduced_in_future", "future"}:
        return [AvailabilityAttribute(kind="future")]
    if value.startswith("introduced_in_future_"):
        scope = value[len("introduced_in_future_"):]
        return [AvailabilityAttribute(kind="future", arch=arch) for arch in _resolve_scope(scope, value)]
    match = _ANNOTATION_RE.match(value)
    if not match:
        if re.match(r"^(introduced|deprecated|obsoleted)_in", value):
            raise AvailabilityError(f"malformed availability annotation '{value}'")
        return []
    return _make_attributes(match.group("kind"), match.group("level"), match.group("scope"), value)


def parse_macro(name: str, argument: str | None) -> list[AvailabilityAttribute]:
    """Translate a versioning macro use such as ``__INTRODUCED_IN_X86(12)``."""
    bare = name.strip("_")
    if bare == "INTRODUCED_IN_FUTURE":
        return [AvailabilityAttribute(kind="future")]
    for prefix, kind in _MACRO_KINDS.items():
        if bare == prefix or bare.startswith(prefix + "_"):
            scope = bare[len(prefix) + 1:] or None
            if argument is None:
                raise AvailabilityError(f"macro '{name}' requires an API level")
            return _make_attributes(kind, argument, scope.lower() if scope else None, f"{name}({argument})")
    return []


@dataclass(frozen=True)
class AvailabilityValues:
    future: bool = False
    introduced: int = 0
    deprecated: int = 0
    obsoleted: int = 0

    def empty(self) -> bool:
        return not (self.future or self.introduced or self.deprecated or self.obsoleted)

    def __str__(self) -> str:
        parts: list[str] = []
        if self.future:
            parts.append("future")
        for axis in AXES:
            value = getattr(self, axis)
            if value:
                parts.append(f"{axis} = {value}")
        return ", ".join(parts) if parts else "no availability"

    def as_dict(self) -> dict[str, Any]:
        return {
            "future": self.future,
            "introduced": self.introduced,
            "deprecated": self.deprecated,
            "obsoleted": self.obsoleted,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AvailabilityValues:
        return cls(
            future=bool(payload.get("future", False)),
            introduced=int(payload.get("introduced", 0)),
            deprecated=int(payload.get("deprecated", 0)),
            obsoleted=int(payload.get("obsoleted", 0)),
        )


def _merge_values(left: AvailabilityValues, right: AvailabilityValues, scope: str) -> AvailabilityValues:
    merged = replace(left, future=left.future or right.future)
    for axis in AXES:
        ours = getattr(left, axis)
        theirs = getattr(right, axis)
        if not theirs:
            continue
        if ours and ours != theirs:
            raise AvailabilityError(f"conflicting {axis} values for {scope}: {ours} and {theirs}")
        merged = replace(merged, **{axis: theirs})
    return merged


@dataclass
class DeclarationAvailability:
    global_availability: AvailabilityValues = field(default_factory=AvailabilityValues)
    arch_availability: dict[Arch, AvailabilityValues] = field(default_factory=dict)

    def for_arch(self, arch: Arch) -> AvailabilityValues:
        return self.arch_availability.get(arch, AvailabilityValues())

    def is_future(self, arch: Arch) -> bool:
        return self.global_availability.future or self.for_arch(arch).future

    def empty(self) -> bool:
        if not self.global_availability.empty():
            return False
        return all(values.empty() for values in self.arch_availability.values())

    def conflicts(self) -> list[str]:
        problems: list[str] = []
        for arch in sorted(self.arch_availability):
            values = self.arch_availability[arch]
            for axis in AXES:
                if getattr(self.global_availability, axis) and getattr(values, axis):
                    problems.append(f"{axis} is set both globally and for {arch}")
        return problems

    def ensure_compatible(self) -> DeclarationAvailability:
        problems = self.conflicts()
        if problems:
            raise AvailabilityError("; ".join(problems))
        return self

    def merge(self, other: DeclarationAvailability) -> DeclarationAvailability:
        result = DeclarationAvailability(
            global_availability=_merge_values(self.global_availability, other.global_availability, "global"),
            arch_availability=dict(self.arch_availability),
        )
        for arch, values in other.arch_availability.items():
            result.arch_availability[arch] = _merge_values(result.for_arch(arch), values, str(arch))
        return result.ensure_compatible()

    def normalized(self) -> DeclarationAvailability:
        return DeclarationAvailability(
            global_availability=self.global_availability,
            arch_availability={arch: values for arch, values in self.arch_availability.items() if not values.empty()},
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeclarationAvailability):
            return NotImplemented
        left = self.normalized()
        right = other.normalized()
        return (
            left.global_availability == right.global_availability
            and left.arch_availability == right.arch_availability
        )

    def __str__(self) -> str:
        parts: list[str] = []
        if not self.global_availability.empty():
            parts.append(f"global: {self.global_availability}")
        for arch in sorted(self.arch_availability):
            values = self.arch_availability[arch]
            if not values.empty():
                parts.append(f"{arch}: {values}")
        return "; ".join(parts) if parts else "no availability"

    def as_dict(self) -> dict[str, Any]:
        normalized = self.normalized()
        return {
            "global": normalized.global_availability.as_dict(),
            "arch": {arch.value: values.as_dict() for arch, values in sorted(normalized.arch_availability.items())},
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DeclarationAvailability:
        arch_payload = payload.get("arch") or {}
        return cls(
            global_availability=AvailabilityValues.from_dict(payload.get("global") or {}),
            arch_availability={
                arch_from_string(name): AvailabilityValues.from_dict(values)
                for name, values in arch_payload.items()
            },
        )


def reduce_attributes(attributes: Iterable[AvailabilityAttribute]) -> DeclarationAvailability:
    result = DeclarationAvailability()
    for attribute in attributes:
        if attribute.kind == "future":
            values = AvailabilityValues(future=True)
        else:
            values = AvailabilityValues(**{attribute.kind: attribute.level})
        if attribute.arch is None:
            result.global_availability = _merge_values(result.global_availability, values, "global")
        else:
            result.arch_availability[attribute.arch] = _merge_values(
                result.for_arch(attribute.arch), values, str(attribute.arch)
            )
    return result.ensure_compatible()


def merge_availability(values: Iterable[DeclarationAvailability]) -> DeclarationAvailability:
    result = DeclarationAvailability()
    for item in values:
        result = result.merge(item)
    return result
