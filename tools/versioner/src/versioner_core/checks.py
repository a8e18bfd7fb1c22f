from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from .arch import CompilationType, describe_types
from .availability import DeclarationAvailability
from .common import AvailabilityError, VersionerError
from .declarations import HeaderDatabase, Symbol
from .platforms import PlatformSymbolDatabase


def check_symbol(symbol: Symbol, root: str | Path | None = None) -> list[dict[str, Any]]:
    """Return every consistency violation for one symbol.

    A symbol may have at most one inline definition, definitions may not carry
    availability, and each declaration and the merged symbol must reduce to a
    compatible availability.
    """
    issues: list[dict[str, Any]] = []

    definitions = symbol.definitions()
    if len(definitions) > 1:
        issues.append(
            {
                "symbol": symbol.name,
                "kind": "multiple_definitions",
                "message": f"versioner: multiple definitions of symbol {symbol.name}",
                "declarations": [definition.describe(root) for definition in definitions],
                "locations": [definition.location.as_dict() for definition in definitions],
            }
        )

    declaration_failed = False
    for declaration in symbol.sorted_declarations():
        try:
            availability = declaration.calculate_availability()
        except AvailabilityError as exc:
            declaration_failed = True
            issues.append(
                {
                    "symbol": symbol.name,
                    "kind": "invalid_declaration_availability",
                    "message": (
                        "versioner: failed to calculate availability for declaration at "
                        f"{declaration.location.display(root)}: {exc}"
                    ),
                    "declarations": [declaration.describe(root)],
                    "locations": [declaration.location.as_dict()],
                }
            )
            continue
        if declaration.is_definition and not availability.empty():
            issues.append(
                {
                    "symbol": symbol.name,
                    "kind": "versioned_definition",
                    "message": (
                        "versioner: inline definition has non-empty versioning information at "
                        f"{declaration.location.display(root)}"
                    ),
                    "declarations": [declaration.describe(root)],
                    "locations": [declaration.location.as_dict()],
                }
            )

    # A broken declaration already explains why the merge would fail.
    if not declaration_failed:
        try:
            symbol.calculate_availability()
        except AvailabilityError as exc:
            issues.append(
                {
                    "symbol": symbol.name,
                    "kind": "inconsistent_symbol_availability",
                    "message": f"versioner: inconsistent availability for symbol '{symbol.name}': {exc}",
                    "declarations": symbol.describe(root),
                    "locations": [item.location.as_dict() for item in symbol.sorted_declarations()],
                }
            )
    return issues


def sanity_check(database: HeaderDatabase, root: str | Path | None = None) -> dict[str, Any]:
    issues: list[dict[str, Any]] = []
    for symbol in database:
        issues.extend(check_symbol(symbol, root))
    errors = [issue["message"] for issue in issues]
    return {
        "check": "sanity",
        "status": "pass" if not errors else "fail",
        "symbol_count": len(database),
        "issues": issues,
        "errors": errors,
        "warnings": [],
    }


def should_be_available(
    availability: DeclarationAvailability,
    compilation_type: CompilationType,
    declared: bool = True,
) -> bool | None:
    """Decide whether a symbol ought to be exported under one configuration.

    Returns None when the symbol is marked future for the configuration's
    architecture, which exempts it from comparison.
    """
    if availability.is_future(compilation_type.arch):
        return None
    level = compilation_type.api_level
    global_values = availability.global_availability
    arch_values = availability.for_arch(compilation_type.arch)
    available = True
    if global_values.introduced and global_values.introduced > level:
        available = False
    if arch_values.introduced and arch_values.introduced > level:
        available = False
    if global_values.obsoleted and global_values.obsoleted <= level:
        available = False
    if arch_values.obsoleted and arch_values.obsoleted <= level:
        available = False
    # Declarations can legitimately be absent under some configurations.
    if not declared:
        available = False
    return available


def check_versions(
    types: Iterable[CompilationType],
    database: HeaderDatabase,
    platform_database: PlatformSymbolDatabase,
    verbose: bool = False,
    root: str | Path | None = None,
) -> dict[str, Any]:
    """Compare declared availability with the platform exports.

    ``completely_unavailable`` lists header symbols the platform never exports;
    ``undeclared_exports`` lists exported symbols no header declares. Symbols
    whose availability cannot be merged are listed in ``inconsistent_skipped``
    and fail the check without stopping it.
    """
    ordered_types = sorted(set(types))
    missing: dict[str, list[CompilationType]] = {}
    extra: dict[str, list[CompilationType]] = {}
    completely_unavailable: list[str] = []
    inconsistent: list[str] = []
    skipped_future: dict[str, list[CompilationType]] = {}

    for symbol in database:
        try:
            availability = symbol.calculate_availability()
        except AvailabilityError:
            inconsistent.append(symbol.name)
            continue

        platform_types = platform_database.get(symbol.name)
        if platform_types is None:
            completely_unavailable.append(symbol.name)
            continue

        for compilation_type in ordered_types:
            expected = should_be_available(availability, compilation_type, symbol.has_declaration(compilation_type))
            if expected is None:
                skipped_future.setdefault(symbol.name, []).append(compilation_type)
                continue
            exported = compilation_type in platform_types
            if expected == exported:
                continue
            if exported:
                extra.setdefault(symbol.name, []).append(compilation_type)
            else:
                missing.setdefault(symbol.name, []).append(compilation_type)

    errors: list[str] = []
    warnings: list[str] = []
    divergences: list[dict[str, Any]] = []
    for name in sorted(set(missing) | set(extra)):
        entry: dict[str, Any] = {
            "symbol": name,
            "missing": [str(item) for item in missing.get(name, [])],
            "extra": [str(item) for item in extra.get(name, [])],
            "reported": False,
            "extra_reported": False,
            "declarations": [],
            "locations": [],
        }
        if name in missing:
            errors.append(
                f"{name}: declaration marked available but symbol missing in [{describe_types(missing[name])}]"
            )
            entry["reported"] = True
        if name in extra and verbose:
            errors.append(
                f"{name}: declaration marked unavailable but symbol available in [{describe_types(extra[name])}]"
            )
            entry["reported"] = True
            entry["extra_reported"] = True
        if entry["reported"]:
            symbol = database.get(name)
            if symbol is None:
                raise VersionerError(f"failed to find symbol '{name}' in header database")
            entry["declarations"] = symbol.describe(root)
            entry["locations"] = [item.location.as_dict() for item in symbol.sorted_declarations()]
        divergences.append(entry)

    hidden_extra = sorted(name for name in extra if not verbose)
    if hidden_extra:
        warnings.append(
            f"{len(hidden_extra)} symbol(s) are exported earlier than declared; rerun with -v for details"
        )

    if inconsistent:
        warnings.append(
            f"skipped {len(inconsistent)} symbol(s) with inconsistent availability: {', '.join(inconsistent)}"
        )

    undeclared_exports = sorted(name for name in platform_database if name not in database)
    failed = bool(missing or extra or inconsistent)
    return {
        "check": "versions",
        "status": "fail" if failed else "pass",
        "type_count": len(ordered_types),
        "symbol_count": len(database),
        "missing_availability": {name: [str(item) for item in items] for name, items in sorted(missing.items())},
        "extra_availability": {name: [str(item) for item in items] for name, items in sorted(extra.items())},
        "future_skipped": {name: [str(item) for item in items] for name, items in sorted(skipped_future.items())},
        "completely_unavailable": sorted(completely_unavailable),
        "inconsistent_skipped": inconsistent,
        "undeclared_exports": undeclared_exports,
        "divergences": divergences,
        "errors": errors,
        "warnings": warnings,
    }
