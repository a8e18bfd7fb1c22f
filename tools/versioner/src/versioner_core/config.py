from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .arch import SUPPORTED_ARCHS, SUPPORTED_LEVELS, Arch, arch_from_string, parse_api_level
from .common import VersionerError, ensure_relative_path, load_json, require_directory, validate_payload
from .orchestration import DEFAULT_JOBS
from .parser import PARSER_BACKENDS

VERSIONER_SUBDIR = Path("bionic") / "tools" / "versioner"
VERSIONING_HEADER = Path("bionic") / "libc" / "include" / "android" / "versioning.h"


@dataclass(frozen=True)
class VersionerOptions:
    header_dir: Path
    dependency_dir: Path | None = None
    platform_dir: Path | None = None
    architectures: tuple[Arch, ...] = tuple(sorted(SUPPORTED_ARCHS))
    api_levels: tuple[int, ...] = tuple(sorted(SUPPORTED_LEVELS))
    jobs: int = DEFAULT_JOBS
    verbose: bool = False
    dump: bool = False
    dump_output: Path | None = None
    output_dir: Path | None = None
    force: bool = False
    check_output: bool = False
    dry_run: bool = False
    include_files: tuple[str, ...] = ()
    parser_backend: str = "clang_preprocess"
    compiler: str | None = None
    compiler_candidates: tuple[str, ...] = ()
    extra_args: tuple[str, ...] = ()
    fallback_to_regex: bool = False
    report: Path | None = None
    markdown_report: Path | None = None
    sarif_report: Path | None = None


def load_config(path: Path) -> dict[str, Any]:
    payload = load_json(path)
    validate_payload("config", payload, f"config '{path}'")
    return payload


def android_build_top(env: Mapping[str, str]) -> Path:
    top = env.get("ANDROID_BUILD_TOP", "").strip()
    if not top:
        raise VersionerError("failed to autodetect bionic paths. Is ANDROID_BUILD_TOP set?")
    return Path(top)


def autodetect_paths(env: Mapping[str, str]) -> dict[str, Path]:
    versioner_dir = android_build_top(env) / VERSIONER_SUBDIR
    return {
        "header_dir": versioner_dir / "current",
        "dependency_dir": versioner_dir / "dependencies",
        "platform_dir": versioner_dir / "platforms",
    }


def _config_path(config: dict[str, Any], key: str, base: Path) -> Path | None:
    value = config.get(key)
    if not isinstance(value, str) or not value:
        return None
    return ensure_relative_path(base, value).resolve()


def _cli_path(value: str | None) -> Path | None:
    if not value:
        return None
    return Path(value).resolve()


def resolve_options(args: argparse.Namespace, env: Mapping[str, str] | None = None) -> VersionerOptions:
    """Merge command line values over config file values and autodetected paths."""
    environ = os.environ if env is None else env
    config: dict[str, Any] = {}
    base = Path.cwd()
    if args.config:
        config_path = Path(args.config).resolve()
        config = load_config(config_path)
        base = config_path.parent
    parser_config = config.get("parser") or {}
    reports_config = config.get("reports") or {}

    if len(args.paths) > 2:
        raise VersionerError("expected at most HEADER_PATH and DEPS_PATH")

    header_dir = _cli_path(args.paths[0]) if args.paths else _config_path(config, "header_dir", base)
    dependency_dir = _cli_path(args.paths[1]) if len(args.paths) > 1 else None
    if dependency_dir is None and not args.paths:
        dependency_dir = _config_path(config, "dependency_dir", base)
    platform_dir = _cli_path(args.platform) or _config_path(config, "platform_dir", base)

    if header_dir is None:
        detected = autodetect_paths(environ)
        header_dir = detected["header_dir"]
        dependency_dir = detected["dependency_dir"]
        if platform_dir is None:
            platform_dir = detected["platform_dir"]
    require_directory(header_dir, "header directory")
    if platform_dir is not None:
        require_directory(platform_dir, "platform directory")

    if args.archs:
        architectures = {arch_from_string(value) for value in args.archs}
    else:
        architectures = {arch_from_string(value) for value in config.get("architectures", [])}
    if args.levels:
        api_levels = {parse_api_level(value) for value in args.levels}
    else:
        api_levels = {parse_api_level(value) for value in config.get("api_levels", [])}

    include_files = [str(ensure_relative_path(base, value)) for value in config.get("include_files", [])]
    if args.add_include:
        include_files.append(str(android_build_top(environ) / VERSIONING_HEADER))

    jobs = args.jobs if args.jobs is not None else int(config.get("jobs", DEFAULT_JOBS))
    if jobs < 1:
        raise VersionerError("jobs must be at least 1")

    backend = args.parser_backend or parser_config.get("backend", "clang_preprocess")
    if backend not in PARSER_BACKENDS:
        raise VersionerError(f"parser backend must be one of: {', '.join(PARSER_BACKENDS)}")

    output_dir = _cli_path(args.output) or _config_path(config, "output_dir", base)

    return VersionerOptions(
        header_dir=header_dir,
        dependency_dir=dependency_dir,
        platform_dir=platform_dir,
        architectures=tuple(sorted(architectures or SUPPORTED_ARCHS)),
        api_levels=tuple(sorted(api_levels or SUPPORTED_LEVELS)),
        jobs=jobs,
        verbose=bool(args.verbose or config.get("verbose", False)),
        dump=bool(args.dump or args.dump_json),
        dump_output=_cli_path(args.dump_json),
        output_dir=output_dir,
        force=bool(args.force or config.get("force", False)),
        check_output=bool(args.check),
        dry_run=bool(args.dry_run),
        include_files=tuple(include_files),
        parser_backend=backend,
        compiler=args.compiler or parser_config.get("compiler"),
        compiler_candidates=tuple(parser_config.get("compiler_candidates", [])),
        extra_args=tuple(parser_config.get("extra_args", [])),
        fallback_to_regex=bool(args.fallback_to_regex or parser_config.get("fallback_to_regex", False)),
        report=_cli_path(args.report) or _config_path(reports_config, "json", base),
        markdown_report=_cli_path(args.markdown_report) or _config_path(reports_config, "markdown", base),
        sarif_report=_cli_path(args.sarif_report) or _config_path(reports_config, "sarif", base),
    )
