from __future__ import annotations

import difflib
import json
import re
import stat
from pathlib import Path
from typing import Any

import jsonschema

TOOL_NAME = "versioner"
TOOL_VERSION = "1.0.0"
DUMP_SCHEMA_VERSION = 1


class VersionerError(Exception):
    pass


class AvailabilityError(VersionerError):
    pass


def normalize_ws(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def load_json(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise VersionerError(f"Unable to read JSON file '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise VersionerError(f"Invalid JSON in '{path}': {exc}") from exc
    if not isinstance(payload, dict):
        raise VersionerError(f"JSON root in '{path}' must be an object")
    return payload


def write_json(path: Path, value: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(value, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def write_if_changed(path: Path, content: str, check: bool, dry_run: bool) -> tuple[str, str]:
    existing = path.read_text(encoding="utf-8") if path.exists() else None
    if existing == content:
        return "unchanged", ""
    diff = "\n".join(
        difflib.unified_diff(
            (existing or "").splitlines(),
            content.splitlines(),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
            lineterm="",
        )
    )
    if check:
        return "drift", diff
    if dry_run:
        return "would_write", diff
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return "written", diff


def get_schema_path(kind: str) -> Path:
    base = Path(__file__).resolve().parent / "schemas"
    mapping = {
        "config": base / "config.schema.json",
        "dump": base / "dump.schema.json",
    }
    if kind not in mapping:
        raise VersionerError(f"Unknown schema kind: {kind}")
    return mapping[kind]


def validate_payload(kind: str, payload: dict[str, Any], label: str) -> None:
    schema_path = get_schema_path(kind)
    if not schema_path.exists():
        raise VersionerError(f"schema file not found: {schema_path}")
    schema = load_json(schema_path)
    try:
        jsonschema.validate(payload, schema)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise VersionerError(f"{label} failed JSON schema validation at {location}: {exc.message}") from exc


def ensure_relative_path(root: Path, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return root / path


def to_repo_relative(path: Path, repo_root: Path) -> str:
    try:
        return str(path.resolve().relative_to(repo_root.resolve()))
    except ValueError:
        return str(path.resolve())


def require_directory(path: Path, label: str) -> Path:
    try:
        mode = path.stat().st_mode
    except OSError as exc:
        raise VersionerError(f"failed to stat {label} '{path}': {exc}") from exc
    if not stat.S_ISDIR(mode):
        raise VersionerError(f"'{path}' is not a directory")
    return path
