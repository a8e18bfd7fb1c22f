from __future__ import annotations

import re
import shutil
import subprocess
from pathlib import Path
from typing import Any, Iterable

from .arch import Arch, CompilationType, group_by_arch
from .common import VersionerError, require_directory

SYMBOL_LIST_SUFFIXES = (".so.functions.txt", ".so.variables.txt")
LIBRARY_GLOBS = ("usr/lib/*.so", "usr/lib64/*.so", "usr/lib*/*.so")

PlatformSymbolDatabase = dict[str, set[CompilationType]]


def parse_symbol_list(content: str) -> set[str]:
    symbols: set[str] = set()
    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if line:
            symbols.add(line)
    return symbols


def strip_symbol_version(symbol: str) -> str:
    if "@" in symbol:
        return symbol.split("@", 1)[0]
    return symbol


def parse_nm_exports(output: str) -> list[str]:
    exports: set[str] = set()
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line or line.endswith(":"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        type_code = parts[-2]
        symbol = parts[-1]
        if len(type_code) != 1 or type_code == "U":
            continue
        # Lowercase codes are local symbols, except GNU unique "u".
        if not (type_code.isupper() or type_code == "u"):
            continue
        exports.add(strip_symbol_version(symbol))
    return sorted(exports)


def parse_readelf_exports(output: str) -> list[str]:
    exports: set[str] = set()
    for raw_line in output.splitlines():
        parts = raw_line.split()
        if len(parts) < 8:
            continue
        number_token = parts[0]
        if not number_token.endswith(":") or not number_token[:-1].isdigit():
            continue
        symbol_type = parts[3].upper()
        bind = parts[4].upper()
        visibility = parts[5].upper()
        section = parts[6].upper()
        name = parts[7]
        if section == "UND" or symbol_type in {"FILE", "SECTION"}:
            continue
        if bind not in {"GLOBAL", "WEAK", "GNU_UNIQUE", "UNIQUE"}:
            continue
        if visibility in {"HIDDEN", "INTERNAL"}:
            continue
        if name and name != "0":
            exports.add(strip_symbol_version(name))
    return sorted(exports)


def parse_objdump_exports(output: str) -> list[str]:
    exports: set[str] = set()
    for raw_line in output.splitlines():
        parts = raw_line.strip().split()
        if len(parts) < 7:
            continue
        if not re.fullmatch(r"[0-9A-Fa-f]+", parts[0]):
            continue
        if parts[1].lower() not in {"g", "w", "u"}:
            continue
        if parts[3] == "*UND*":
            continue
        name = parts[-1]
        if name and name != "*UND*":
            exports.add(strip_symbol_version(name))
    return sorted(exports)


def build_export_command_specs(library_path: Path) -> list[tuple[str, list[str], str]]:
    return [
        ("llvm-nm", ["llvm-nm", "-D", "--defined-only", str(library_path)], "nm"),
        ("nm", ["nm", "-D", "--defined-only", str(library_path)], "nm"),
        ("readelf", ["readelf", "-Ws", "--dyn-syms", str(library_path)], "readelf"),
        ("objdump", ["objdump", "-T", str(library_path)], "objdump"),
    ]


def parse_exports_with_format(output: str, parse_format: str) -> list[str]:
    if parse_format == "readelf":
        return parse_readelf_exports(output)
    if parse_format == "objdump":
        return parse_objdump_exports(output)
    return parse_nm_exports(output)


def extract_library_exports(library_path: Path) -> dict[str, Any]:
    tool_errors: list[str] = []
    for tool_name, command, parse_format in build_export_command_specs(library_path):
        if shutil.which(command[0]) is None:
            continue
        try:
            proc = subprocess.run(command, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as exc:
            message = exc.stderr.strip() or exc.stdout.strip() or "unknown command failure"
            tool_errors.append(f"{' '.join(command)}: {message}")
            continue
        except OSError as exc:
            tool_errors.append(f"{' '.join(command)}: {exc}")
            continue
        symbols = parse_exports_with_format(proc.stdout, parse_format=parse_format)
        # First successful tool wins so symbol tables are never mixed.
        return {
            "path": str(library_path),
            "tool": tool_name,
            "command": " ".join(command),
            "symbols": symbols,
        }

    if tool_errors:
        raise VersionerError(f"Failed to query exports of '{library_path}'. " + " | ".join(tool_errors))
    raise VersionerError("No export listing tool found. Install one of: llvm-nm, nm, readelf, objdump.")


def platform_arch_dir(platform_dir: Path, arch: Arch, api_level: int) -> Path:
    return platform_dir / f"android-{api_level}" / f"arch-{arch}"


def load_platform_symbols(platform_dir: Path, arch: Arch, api_level: int) -> set[str]:
    """Collect every symbol exported by one (architecture, API level) platform.

    Symbol list files take precedence; shared libraries are only inspected
    when no list exists for the configuration.
    """
    arch_dir = platform_arch_dir(platform_dir, arch, api_level)
    require_directory(arch_dir, "platform directory")

    symbols: set[str] = set()
    symbol_dir = arch_dir / "symbols"
    lists = sorted(
        path
        for path in (symbol_dir.iterdir() if symbol_dir.is_dir() else [])
        if path.is_file() and path.name.endswith(SYMBOL_LIST_SUFFIXES)
    )
    for path in lists:
        try:
            symbols.update(parse_symbol_list(path.read_text(encoding="utf-8")))
        except OSError as exc:
            raise VersionerError(f"Unable to read symbol list '{path}': {exc}") from exc
    if lists:
        return symbols

    libraries: set[Path] = set()
    for pattern in LIBRARY_GLOBS:
        libraries.update(path for path in arch_dir.glob(pattern) if path.is_file())
    for library in sorted(libraries):
        symbols.update(extract_library_exports(library)["symbols"])
    return symbols


def parse_platforms(types: Iterable[CompilationType], platform_dir: str | Path) -> PlatformSymbolDatabase:
    root = Path(platform_dir)
    require_directory(root, "platform directory")
    database: PlatformSymbolDatabase = {}
    for arch, arch_types in group_by_arch(types).items():
        by_level: dict[int, list[CompilationType]] = {}
        for compilation_type in arch_types:
            by_level.setdefault(compilation_type.api_level, []).append(compilation_type)
        for api_level, level_types in sorted(by_level.items()):
            # Exports do not depend on _FILE_OFFSET_BITS.
            for symbol in load_platform_symbols(root, arch, api_level):
                database.setdefault(symbol, set()).update(level_types)
    return database
