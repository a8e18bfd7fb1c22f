from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Any, Iterable

from .arch import ARCH_DEFINES, ARCH_MIN_API, Arch
from .availability import DeclarationAvailability
from .common import AvailabilityError, VersionerError, require_directory, write_if_changed
from .declarations import HeaderDatabase


def _arch_clause(availability: DeclarationAvailability, arch: Arch) -> str:
    if availability.is_future(arch):
        return "__ANDROID_API__ >= __ANDROID_API_FUTURE__"
    arch_values = availability.for_arch(arch)
    introduced = arch_values.introduced or availability.global_availability.introduced
    obsoleted = arch_values.obsoleted or availability.global_availability.obsoleted
    clauses: list[str] = []
    if introduced and introduced > ARCH_MIN_API[arch]:
        clauses.append(f"__ANDROID_API__ >= {introduced}")
    if obsoleted:
        clauses.append(f"__ANDROID_API__ < {obsoleted}")
    return " && ".join(clauses)


def calculate_guard(availability: DeclarationAvailability, archs: Iterable[Arch]) -> str | None:
    """Return the ``#if`` condition for a declaration, or None when always visible."""
    groups: dict[str, list[Arch]] = {}
    for arch in sorted(set(archs)):
        groups.setdefault(_arch_clause(availability, arch), []).append(arch)
    if not groups:
        return None
    if len(groups) == 1:
        clause = next(iter(groups))
        return clause or None

    parts: list[str] = []
    for clause, group_archs in sorted(groups.items(), key=lambda item: item[1]):
        arch_condition = " || ".join(ARCH_DEFINES[arch] for arch in group_archs)
        if len(group_archs) > 1:
            arch_condition = f"({arch_condition})"
        parts.append(f"({arch_condition} && {clause})" if clause else arch_condition)
    return " || ".join(parts)


def collect_guards(
    database: HeaderDatabase,
    header_dir: Path,
    archs: Iterable[Arch],
) -> tuple[dict[Path, list[tuple[int, int, str]]], list[str]]:
    root = header_dir.resolve()
    arch_list = sorted(set(archs))
    guards: dict[Path, dict[tuple[int, int], str]] = {}
    errors: list[str] = []
    for symbol in database:
        for declaration in symbol.sorted_declarations():
            if declaration.is_definition or declaration.no_guard:
                continue
            path = Path(os.path.normpath(declaration.location.filename))
            try:
                relative = path.relative_to(root)
            except ValueError:
                continue
            try:
                availability = declaration.calculate_availability()
            except AvailabilityError as exc:
                errors.append(f"cannot guard {symbol.name} at {declaration.location.display(root)}: {exc}")
                continue
            guard = calculate_guard(availability, arch_list)
            if guard is None:
                continue
            start = declaration.location.start_line
            end = max(start, declaration.location.end_line)
            guards.setdefault(relative, {})[(start, end)] = guard

    ordered: dict[Path, list[tuple[int, int, str]]] = {}
    for relative, ranges in guards.items():
        items: list[tuple[int, int, str]] = []
        last_end = 0
        for (start, end), guard in sorted(ranges.items()):
            # Nested or overlapping ranges keep the outermost guard.
            if start <= last_end:
                continue
            items.append((start, end, guard))
            last_end = end
        ordered[relative] = items
    return ordered, errors


def apply_guards(content: str, guards: list[tuple[int, int, str]]) -> str:
    lines = content.split("\n")
    for start, end, guard in sorted(guards, reverse=True):
        if start < 1 or start > len(lines):
            continue
        end = min(end, len(lines))
        lines.insert(end, f"#endif /* {guard} */")
        lines.insert(start - 1, f"#if {guard}")
    return "\n".join(lines)


def preprocess_headers(
    header_dir: str | Path,
    output_dir: str | Path,
    database: HeaderDatabase,
    archs: Iterable[Arch],
    check: bool = False,
    dry_run: bool = False,
) -> dict[str, Any]:
    src_root = require_directory(Path(header_dir).resolve(), "header directory")
    dst_root = Path(output_dir).resolve()
    if dst_root == src_root:
        raise VersionerError("preprocessor output directory must differ from the header directory")

    guards, errors = collect_guards(database, src_root, archs)
    files: dict[str, list[str]] = {"written": [], "would_write": [], "drift": [], "unchanged": []}
    diffs: dict[str, str] = {}
    guarded = 0
    for dirpath, dirnames, filenames in os.walk(src_root):
        dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
        for filename in sorted(filenames):
            source = Path(dirpath) / filename
            relative = source.relative_to(src_root)
            target = dst_root / relative
            if not filename.endswith(".h"):
                if check or dry_run:
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, target)
                continue
            try:
                content = source.read_text(encoding="utf-8")
            except OSError as exc:
                raise VersionerError(f"Unable to read header '{source}': {exc}") from exc
            header_guards = guards.get(relative, [])
            guarded += len(header_guards)
            status, diff = write_if_changed(target, apply_guards(content, header_guards), check=check, dry_run=dry_run)
            files[status].append(relative.as_posix())
            if diff:
                diffs[relative.as_posix()] = diff

    failed = bool(errors) or bool(files["drift"])
    return {
        "check": "preprocess",
        "status": "fail" if failed else "pass",
        "output_dir": str(dst_root),
        "guarded_declarations": guarded,
        "files": files,
        "diffs": diffs,
        "errors": errors + [f"output drift: {item}" for item in files["drift"]],
        "warnings": [],
    }
