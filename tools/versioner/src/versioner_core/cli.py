from __future__ import annotations

import argparse
import sys
from typing import Any

from .arch import SUPPORTED_ARCHS, SUPPORTED_LEVELS, describe_types, generate_compilation_types
from .checks import check_versions, sanity_check
from .common import TOOL_NAME, TOOL_VERSION, VersionerError, write_json
from .config import VersionerOptions, resolve_options
from .orchestration import compile_headers
from .parser import PARSER_BACKENDS, create_parser
from .platforms import parse_platforms
from .preprocessor import preprocess_headers
from .reporting import (
    build_sarif_results,
    print_report,
    print_sanity_issues,
    write_markdown_report,
    write_sarif_report,
)


def build_parser() -> argparse.ArgumentParser:
    levels = ", ".join(str(level) for level in sorted(SUPPORTED_LEVELS))
    archs = ", ".join(sorted(arch.value for arch in SUPPORTED_ARCHS))
    parser = argparse.ArgumentParser(
        prog=TOOL_NAME,
        description=(
            "Version headers at HEADER_PATH, with DEPS_PATH/ARCH/* on the include path. "
            "Autodetects paths if HEADER_PATH and DEPS_PATH are not specified."
        ),
    )
    parser.add_argument("paths", nargs="*", metavar="PATH", help="HEADER_PATH and optional DEPS_PATH.")

    target = parser.add_argument_group("target specification (defaults to all)")
    target.add_argument(
        "-a",
        "--api-level",
        dest="levels",
        action="append",
        default=[],
        help=f"Build with specified API level (can be repeated). Valid levels are {levels}.",
    )
    target.add_argument(
        "-r",
        "--arch",
        dest="archs",
        action="append",
        default=[],
        help=f"Build with specified architecture (can be repeated). Valid architectures are {archs}.",
    )

    validation = parser.add_argument_group("validation")
    validation.add_argument("-p", "--platform", help="Compare against NDK platform at PATH.")
    validation.add_argument("-v", "--verbose", action="store_true", help="Enable verbose warnings.")

    preprocessing = parser.add_argument_group("preprocessing")
    preprocessing.add_argument("-o", "--output", help="Preprocess header files and emit them at PATH.")
    preprocessing.add_argument(
        "-f", "--force", action="store_true", help="Preprocess header files even if validation fails."
    )
    preprocessing.add_argument("--check", action="store_true", help="Fail if preprocessed output would change.")
    preprocessing.add_argument("--dry-run", action="store_true", help="Show preprocessed changes without writing.")

    parsing = parser.add_argument_group("parsing")
    parsing.add_argument("-j", "--jobs", type=int, help="Number of configurations parsed in parallel (default: 8).")
    parsing.add_argument("--parser-backend", choices=PARSER_BACKENDS, help="Header parser backend.")
    parsing.add_argument("--compiler", help="clang executable used by the clang_preprocess backend.")
    parsing.add_argument(
        "--fallback-to-regex",
        action="store_true",
        help="Use the regex backend when clang cannot be found.",
    )
    parsing.add_argument(
        "-i",
        "--add-include",
        action="store_true",
        help="Force-include android/versioning.h from ANDROID_BUILD_TOP.",
    )

    misc = parser.add_argument_group("miscellaneous")
    misc.add_argument("-d", "--dump", action="store_true", help="Dump function availability.")
    misc.add_argument("--dump-json", help="Write the header database as JSON to path (implies --dump).")
    misc.add_argument("--config", help="Path to versioner config JSON.")
    misc.add_argument("--report", help="Write run report JSON to path.")
    misc.add_argument("--markdown-report", help="Write run report as Markdown.")
    misc.add_argument("--sarif-report", help="Write run report as SARIF.")
    misc.add_argument("--version", action="version", version=f"%(prog)s {TOOL_VERSION}")
    return parser


def run(options: VersionerOptions) -> int:
    types = generate_compilation_types(options.architectures, options.api_levels)
    if not types:
        raise VersionerError("no valid compilation types for the selected architectures and API levels")
    if options.verbose:
        print(f"versioner: checking {len(types)} configurations: {describe_types(types)}")

    # Platform data is loaded first so a bad platform directory fails before compiling.
    platform_database = None
    if options.platform_dir is not None:
        platform_database = parse_platforms(types, options.platform_dir)

    parser = create_parser(
        options.parser_backend,
        options.header_dir,
        compiler=options.compiler,
        compiler_candidates=options.compiler_candidates,
        include_files=options.include_files,
        extra_args=options.extra_args,
        fallback_to_regex=options.fallback_to_regex,
    )
    compile_result = compile_headers(
        types,
        options.header_dir,
        options.dependency_dir,
        parser,
        jobs=options.jobs,
        verbose=options.verbose,
    )
    database = compile_result.database
    root = options.header_dir
    failed = compile_result.failed

    report: dict[str, Any] = {
        "tool": {"name": TOOL_NAME, "version": TOOL_VERSION},
        "header_dir": str(options.header_dir),
        "platform_dir": None if options.platform_dir is None else str(options.platform_dir),
        "parser_backend": parser.backend,
        "types": [str(item) for item in sorted(types)],
        "compilation": compile_result.as_dict(),
        "sanity": None,
        "versions": None,
        "preprocess": None,
        "errors": ["versioner: compilation generated warnings or errors"] if compile_result.failed else [],
        "warnings": [],
    }

    if options.dump:
        if options.dump_output is not None:
            write_json(options.dump_output, database.dump_payload(root))
        else:
            sys.stdout.write(database.dump_text(root))
    else:
        sanity = sanity_check(database, root)
        report["sanity"] = sanity
        print_sanity_issues(sanity)
        if sanity["status"] != "pass":
            print("versioner: sanity check failed")
            failed = True

        if platform_database is not None:
            versions = check_versions(types, database, platform_database, verbose=options.verbose, root=root)
            report["versions"] = versions
            if versions["status"] != "pass":
                print("versioner: version check failed")
                failed = True

    if options.output_dir is not None:
        if options.force or not failed:
            archs = {item.arch for item in types}
            preprocess = preprocess_headers(
                options.header_dir,
                options.output_dir,
                database,
                archs,
                check=options.check_output,
                dry_run=options.dry_run,
            )
            report["preprocess"] = preprocess
            if options.dry_run:
                for diff in preprocess["diffs"].values():
                    print(diff)
            if preprocess["status"] != "pass":
                failed = True
        else:
            report["warnings"].append("preprocessing skipped because validation failed; use -f to force")

    report["status"] = "fail" if failed else "pass"
    if not options.dump:
        print_report(report)
    if options.report is not None:
        write_json(options.report, report)
    if options.markdown_report is not None:
        write_markdown_report(options.markdown_report, report)
    if options.sarif_report is not None:
        write_sarif_report(options.sarif_report, build_sarif_results(report, root))
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return run(resolve_options(args))
    except VersionerError as exc:
        print(f"versioner error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
