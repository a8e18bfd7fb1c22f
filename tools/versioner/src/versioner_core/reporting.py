from __future__ import annotations

from pathlib import Path
from typing import Any

from .common import TOOL_NAME, TOOL_VERSION, to_repo_relative, write_json

SARIF_RULES = (
    ("VER001", "InconsistentAnnotation", "Header availability annotations are inconsistent", "error"),
    ("VER002", "MissingAvailability", "Declaration marked available but symbol missing", "error"),
    ("VER003", "ExtraAvailability", "Declaration marked unavailable but symbol available", "error"),
    ("VER004", "CompilationFailure", "Headers failed to compile", "error"),
    ("VER005", "VersionerWarning", "versioner warning", "warning"),
)


def get_message_list(payload: dict[str, Any] | None, key: str) -> list[str]:
    if not isinstance(payload, dict):
        return []
    value = payload.get(key)
    if isinstance(value, list):
        return [str(item) for item in value]
    return []


def collect_messages(report: dict[str, Any], key: str) -> list[str]:
    messages = get_message_list(report, key)
    for section in ("sanity", "versions", "preprocess"):
        messages.extend(get_message_list(report.get(section), key))
    return messages


def print_report(report: dict[str, Any]) -> None:
    status = report.get("status", "unknown")
    print(f"versioner check status: {status}")

    compilation = report.get("compilation") or {}
    sanity = report.get("sanity") or {}
    versions = report.get("versions")
    print(f"Configurations: {len(report.get('types', []))}")
    print(f"Symbols: {compilation.get('symbol_count', 0)}")
    print(f"Compilation failures: {compilation.get('failure_count', 0)}")
    print(f"Consistency issues: {len(sanity.get('issues', []))}")
    if isinstance(versions, dict):
        print(f"Missing availability: {len(versions.get('missing_availability', {}))}")
        print(f"Extra availability: {len(versions.get('extra_availability', {}))}")
        print(f"Completely unavailable: {len(versions.get('completely_unavailable', []))}")
        print(f"Undeclared exports: {len(versions.get('undeclared_exports', []))}")
    else:
        print("Platform check: skipped")

    warnings = collect_messages(report, "warnings")
    errors = collect_messages(report, "errors")
    if warnings:
        print("Warnings:")
        for warning in warnings:
            print(f"  - {warning}")
    if errors:
        print("Errors:")
        for error in errors:
            print(f"  - {error}")

    for item in (versions or {}).get("divergences", []):
        declarations = item.get("declarations") or []
        if not declarations:
            continue
        print(f"{item.get('symbol')}:")
        for declaration in declarations:
            print(f"    {declaration}")


def print_sanity_issues(sanity: dict[str, Any]) -> None:
    for issue in sanity.get("issues", []):
        print(issue.get("message"))
        for declaration in issue.get("declarations") or []:
            print(f"    {declaration}")


def write_markdown_report(path: Path, report: dict[str, Any]) -> None:
    compilation = report.get("compilation") or {}
    sanity = report.get("sanity") or {}
    versions = report.get("versions")

    lines: list[str] = []
    lines.append(f"# versioner Report ({report.get('status', 'unknown')})")
    lines.append("")
    lines.append(f"- Configurations: `{len(report.get('types', []))}`")
    lines.append(f"- Symbols: `{compilation.get('symbol_count', 0)}`")
    lines.append(f"- Compilation failures: `{compilation.get('failure_count', 0)}`")
    lines.append(f"- Consistency issues: `{len(sanity.get('issues', []))}`")
    if isinstance(versions, dict):
        lines.append(f"- Missing availability: `{len(versions.get('missing_availability', {}))}`")
        lines.append(f"- Extra availability: `{len(versions.get('extra_availability', {}))}`")
        lines.append(f"- Completely unavailable: `{len(versions.get('completely_unavailable', []))}`")
    lines.append("")

    failures = compilation.get("failures") or []
    if failures:
        lines.append("## Compilation Failures")
        for failure in failures:
            headers = ", ".join(failure.get("headers", [])) or "<unknown>"
            lines.append(f"- `{failure.get('type')}`: {headers}")
        lines.append("")

    if isinstance(versions, dict) and versions.get("divergences"):
        lines.append("## Divergences")
        lines.append("")
        lines.append("| Symbol | Missing in | Extra in |")
        lines.append("|---|---|---|")
        for item in versions["divergences"]:
            missing = ", ".join(item.get("missing", [])) or "-"
            extra = ", ".join(item.get("extra", [])) or "-"
            lines.append(f"| `{item.get('symbol')}` | {missing} | {extra} |")
        lines.append("")

    warnings = collect_messages(report, "warnings")
    errors = collect_messages(report, "errors")
    if warnings:
        lines.append("## Warnings")
        for warning in warnings:
            lines.append(f"- {warning}")
        lines.append("")

    if errors:
        lines.append("## Errors")
        for error in errors:
            lines.append(f"- {error}")
        lines.append("")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _sarif_locations(locations: list[dict[str, Any]], root: Path | None) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for location in locations:
        filename = str(location.get("filename", ""))
        uri = to_repo_relative(Path(filename), root) if root is not None else filename
        out.append(
            {
                "physicalLocation": {
                    "artifactLocation": {
                        "uri": uri,
                    },
                    "region": {
                        "startLine": max(1, int(location.get("start_line", 1))),
                    },
                }
            }
        )
    return out


def _sarif_result(rule_id: str, level: str, text: str, locations: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    result: dict[str, Any] = {
        "ruleId": rule_id,
        "level": level,
        "message": {
            "text": text,
        },
    }
    if locations:
        result["locations"] = locations
    return result


def build_sarif_results(report: dict[str, Any], root: Path | None = None) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []

    compilation = report.get("compilation") or {}
    for failure in compilation.get("failures") or []:
        headers = failure.get("headers") or ["<unknown>"]
        for header in headers:
            results.append(
                _sarif_result(
                    "VER004",
                    "error",
                    f"versioner: compilation failure for {failure.get('type')} in {header}",
                    _sarif_locations([{"filename": header, "start_line": 1}], root),
                )
            )

    sanity = report.get("sanity") or {}
    for issue in sanity.get("issues") or []:
        results.append(
            _sarif_result("VER001", "error", str(issue.get("message")), _sarif_locations(issue.get("locations", []), root))
        )

    versions = report.get("versions") or {}
    for item in versions.get("divergences") or []:
        if not item.get("reported"):
            continue
        locations = _sarif_locations(item.get("locations", []), root)
        if item.get("missing"):
            results.append(
                _sarif_result(
                    "VER002",
                    "error",
                    f"{item.get('symbol')}: symbol missing in [{', '.join(item['missing'])}]",
                    locations,
                )
            )
        if item.get("extra") and item.get("extra_reported"):
            results.append(
                _sarif_result(
                    "VER003",
                    "error",
                    f"{item.get('symbol')}: symbol available in [{', '.join(item['extra'])}]",
                    locations,
                )
            )

    for message in collect_messages(report, "warnings"):
        results.append(_sarif_result("VER005", "warning", message))
    return results


def write_sarif_report(path: Path, results: list[dict[str, Any]]) -> None:
    payload = {
        "$schema": "https://json.schemastore.org/sarif-2.1.0.json",
        "version": "2.1.0",
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": TOOL_NAME,
                        "version": TOOL_VERSION,
                        "rules": [
                            {
                                "id": rule_id,
                                "name": name,
                                "shortDescription": {
                                    "text": description,
                                },
                                "defaultConfiguration": {
                                    "level": level,
                                },
                            }
                            for rule_id, name, description, level in SARIF_RULES
                        ],
                    }
                },
                "results": results,
            }
        ],
    }
    write_json(path, payload)
