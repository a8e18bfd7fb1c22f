from __future__ import annotations

import os
import sys
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .arch import Arch, CompilationType, is_header_blacklisted
from .common import VersionerError, require_directory
from .declarations import HeaderDatabase
from .parser import HeaderParser, ParseResult

DEFAULT_JOBS = 8


@dataclass(frozen=True)
class CompilationRequirements:
    arch: Arch
    headers: tuple[str, ...]
    dependencies: tuple[str, ...]


@dataclass
class CompileResult:
    database: HeaderDatabase
    failed: bool = False
    failures: list[dict[str, Any]] = field(default_factory=list)
    declaration_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "failed": self.failed,
            "failure_count": len(self.failures),
            "failures": self.failures,
            "declaration_count": self.declaration_count,
            "symbol_count": len(self.database),
        }


def collect_headers(header_dir: Path) -> list[Path]:
    headers: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(header_dir):
        dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
        for filename in filenames:
            if filename.endswith(".h") and not filename.startswith("."):
                headers.append(Path(dirpath) / filename)
    return sorted(headers)


def _child_directories(path: Path) -> list[Path]:
    require_directory(path, "dependency directory")
    try:
        entries = sorted(path.iterdir())
    except OSError as exc:
        raise VersionerError(f"failed to open dependency directory '{path}': {exc}") from exc
    children: list[Path] = []
    for entry in entries:
        if entry.name.startswith("."):
            continue
        children.append(require_directory(entry, "dependency"))
    return children


def collect_requirements(arch: Arch, header_dir: Path, dependency_dir: Path | None) -> CompilationRequirements:
    header_root = Path(header_dir).resolve()
    headers = [
        str(path)
        for path in collect_headers(header_root)
        if not is_header_blacklisted(path.relative_to(header_root).as_posix(), arch)
    ]
    dependencies = [str(header_root)]
    if dependency_dir is not None:
        dependency_root = Path(dependency_dir).resolve()
        for subdir in ("common", arch.value):
            dependencies.extend(str(path) for path in _child_directories(dependency_root / subdir))
    return CompilationRequirements(arch=arch, headers=tuple(headers), dependencies=tuple(dependencies))


def _compile_one(
    parser: HeaderParser,
    database: HeaderDatabase,
    compilation_type: CompilationType,
    requirements: CompilationRequirements,
    cwd: str,
) -> tuple[ParseResult, int]:
    result = parser.parse(compilation_type, requirements.headers, requirements.dependencies, cwd)
    count = database.add_declarations(compilation_type, result.declarations)
    return result, count


def compile_headers(
    types: Iterable[CompilationType],
    header_dir: str | Path,
    dependency_dir: str | Path | None,
    parser: HeaderParser,
    jobs: int = DEFAULT_JOBS,
    verbose: bool = False,
) -> CompileResult:
    if jobs < 1:
        raise VersionerError("jobs must be at least 1")
    header_root = require_directory(Path(header_dir).resolve(), "header directory")
    dependency_root = None if dependency_dir is None else Path(dependency_dir)
    ordered_types = sorted(set(types))

    parser.prepare()
    requirements: dict[Arch, CompilationRequirements] = {}
    for compilation_type in ordered_types:
        if compilation_type.arch not in requirements:
            requirements[compilation_type.arch] = collect_requirements(
                compilation_type.arch, header_root, dependency_root
            )

    database = HeaderDatabase()
    compile_result = CompileResult(database=database)
    with ThreadPoolExecutor(max_workers=jobs) as executor:
        future_to_type: dict[Future[tuple[ParseResult, int]], CompilationType] = {
            executor.submit(
                _compile_one,
                parser,
                database,
                compilation_type,
                requirements[compilation_type.arch],
                str(header_root),
            ): compilation_type
            for compilation_type in ordered_types
        }
        try:
            for future in as_completed(future_to_type):
                compilation_type = future_to_type[future]
                result, count = future.result()
                compile_result.declaration_count += count
                if verbose:
                    print(f"versioner: parsed {compilation_type}: {count} declarations")
                if not result.failed:
                    continue
                for header in result.failed_headers or ("<unknown>",):
                    print(f"versioner: compilation failure for {compilation_type} in {header}", file=sys.stderr)
                for message in result.messages:
                    print(message, file=sys.stderr)
                compile_result.failures.append(
                    {
                        "type": str(compilation_type),
                        "arch": compilation_type.arch.value,
                        "api_level": compilation_type.api_level,
                        "file_offset_bits": compilation_type.file_offset_bits,
                        "headers": list(result.failed_headers),
                        "warnings": result.warnings,
                        "errors": result.errors,
                        "messages": list(result.messages),
                    }
                )
        except BaseException:
            for pending in future_to_type:
                pending.cancel()
            raise

    compile_result.failures.sort(key=lambda item: (item["arch"], item["api_level"], item["file_offset_bits"]))
    compile_result.failed = bool(compile_result.failures)
    if compile_result.failed:
        print("versioner: compilation generated warnings or errors", file=sys.stderr)
    return compile_result
