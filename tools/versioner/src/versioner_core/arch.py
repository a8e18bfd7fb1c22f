from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Iterable

from .common import VersionerError


class Arch(str, enum.Enum):
    ARM = "arm"
    ARM64 = "arm64"
    MIPS = "mips"
    MIPS64 = "mips64"
    X86 = "x86"
    X86_64 = "x86_64"

    def __str__(self) -> str:
        return self.value


SUPPORTED_ARCHS: frozenset[Arch] = frozenset(Arch)
SUPPORTED_LEVELS: frozenset[int] = frozenset({9, 12, 13, 14, 15, 16, 17, 18, 19, 21, 23, 24})
FUTURE_API_LEVEL = 10000
FILE_OFFSET_BITS = (32, 64)

ARCH_MIN_API: dict[Arch, int] = {
    Arch.ARM: 9,
    Arch.ARM64: 21,
    Arch.MIPS: 9,
    Arch.MIPS64: 21,
    Arch.X86: 9,
    Arch.X86_64: 21,
}

ARCH_TARGETS: dict[Arch, str] = {
    Arch.ARM: "arm-linux-androideabi",
    Arch.ARM64: "aarch64-linux-android",
    Arch.MIPS: "mipsel-linux-android",
    Arch.MIPS64: "mips64el-linux-android",
    Arch.X86: "i686-linux-android",
    Arch.X86_64: "x86_64-linux-android",
}

# Preprocessor condition that is true only when compiling for the architecture.
ARCH_DEFINES: dict[Arch, str] = {
    Arch.ARM: "defined(__arm__)",
    Arch.ARM64: "defined(__aarch64__)",
    Arch.MIPS: "(defined(__mips__) && !defined(__LP64__))",
    Arch.MIPS64: "(defined(__mips__) && defined(__LP64__))",
    Arch.X86: "defined(__i386__)",
    Arch.X86_64: "defined(__x86_64__)",
}

# Macros the compiler predefines for each architecture.
ARCH_PREDEFINED_MACROS: dict[Arch, tuple[str, ...]] = {
    Arch.ARM: ("__arm__",),
    Arch.ARM64: ("__aarch64__", "__LP64__"),
    Arch.MIPS: ("__mips__",),
    Arch.MIPS64: ("__mips__", "__LP64__"),
    Arch.X86: ("__i386__",),
    Arch.X86_64: ("__x86_64__", "__LP64__"),
}

ARCHS_32: tuple[Arch, ...] = (Arch.ARM, Arch.MIPS, Arch.X86)
ARCHS_64: tuple[Arch, ...] = (Arch.ARM64, Arch.MIPS64, Arch.X86_64)

HEADER_BLACKLIST: dict[str, frozenset[Arch]] = {
    # Internal header.
    "sys/_system_properties.h": SUPPORTED_ARCHS,
    # time64.h errors out when included on LP64 architectures.
    "time64.h": frozenset(ARCHS_64),
}


def arch_from_string(value: str) -> Arch:
    try:
        return Arch(value.strip().lower())
    except ValueError as exc:
        known = ", ".join(sorted(arch.value for arch in Arch))
        raise VersionerError(f"unknown architecture '{value}'. Known architectures: {known}") from exc


def parse_api_level(value: str | int) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError) as exc:
        raise VersionerError(f"invalid API level '{value}'") from exc
    if level not in SUPPORTED_LEVELS:
        known = ", ".join(str(item) for item in sorted(SUPPORTED_LEVELS))
        raise VersionerError(f"unsupported API level {level}. Valid levels are {known}")
    return level


def is_header_blacklisted(header: str, arch: Arch) -> bool:
    normalized = header.replace("\\", "/")
    for suffix, archs in HEADER_BLACKLIST.items():
        if arch not in archs:
            continue
        if normalized == suffix or normalized.endswith("/" + suffix):
            return True
    return False


@dataclass(frozen=True, order=True)
class CompilationType:
    arch: Arch
    api_level: int
    file_offset_bits: int

    def __str__(self) -> str:
        return f"{self.arch}-{self.api_level} [fob = {self.file_offset_bits}]"

    def as_dict(self) -> dict[str, Any]:
        return {
            "arch": self.arch.value,
            "api_level": self.api_level,
            "file_offset_bits": self.file_offset_bits,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CompilationType:
        try:
            return cls(
                arch=arch_from_string(str(payload["arch"])),
                api_level=int(payload["api_level"]),
                file_offset_bits=int(payload["file_offset_bits"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise VersionerError(f"invalid compilation type: {payload!r}") from exc


def generate_compilation_types(
    selected_architectures: Iterable[Arch],
    selected_levels: Iterable[int],
    min_api: dict[Arch, int] | None = None,
) -> frozenset[CompilationType]:
    min_levels = ARCH_MIN_API if min_api is None else min_api
    levels = sorted(set(selected_levels))
    result: set[CompilationType] = set()
    for arch in set(selected_architectures):
        arch_min = min_levels[arch]
        for api_level in levels:
            if api_level < arch_min:
                continue
            for file_offset_bits in FILE_OFFSET_BITS:
                result.add(CompilationType(arch=arch, api_level=api_level, file_offset_bits=file_offset_bits))
    return frozenset(result)


def group_by_arch(types: Iterable[CompilationType]) -> dict[Arch, list[CompilationType]]:
    grouped: dict[Arch, list[CompilationType]] = {}
    for compilation_type in sorted(types):
        grouped.setdefault(compilation_type.arch, []).append(compilation_type)
    return grouped


def describe_types(types: Iterable[CompilationType]) -> str:
    return ", ".join(str(item) for item in sorted(types))
