from __future__ import annotations

import io
import sys
import tempfile
import threading
import time
import unittest
from contextlib import redirect_stderr
from pathlib import Path
from typing import Iterable
from unittest import mock

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_ROOT = REPO_ROOT / "tools" / "versioner" / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from versioner_core import orchestration
from versioner_core.arch import Arch, CompilationType, generate_compilation_types
from versioner_core.availability import AvailabilityAttribute
from versioner_core.common import VersionerError
from versioner_core.declarations import Location, RawDeclaration
from versioner_core.orchestration import collect_headers, collect_requirements, compile_headers
from versioner_core.parser import HeaderParser, ParseResult


class FakeParser(HeaderParser):
    backend = "fake"

    def __init__(self, fail_for: CompilationType | None = None, explode_for: CompilationType | None = None) -> None:
        self.fail_for = fail_for
        self.explode_for = explode_for
        self.prepared = 0
        self.calls: list[tuple[CompilationType, tuple[str, ...], tuple[str, ...], str]] = []
        self._lock = threading.Lock()

    def prepare(self) -> None:
        self.prepared += 1

    def parse(
        self,
        compilation_type: CompilationType,
        headers: Iterable[str],
        include_dirs: Iterable[str],
        cwd: str,
    ) -> ParseResult:
        header_list = tuple(headers)
        with self._lock:
            self.calls.append((compilation_type, header_list, tuple(include_dirs), cwd))
        if compilation_type == self.explode_for:
            raise VersionerError("parser crashed")
        declarations = tuple(
            RawDeclaration(
                name=Path(header).stem,
                location=Location(filename=header, start_line=1),
                attributes=(AvailabilityAttribute("introduced", 9),),
            )
            for header in header_list
        )
        if compilation_type == self.fail_for:
            return ParseResult(
                compilation_type=compilation_type,
                declarations=declarations,
                errors=1,
                failed_headers=header_list[:1],
                messages=("a.h:1:1: error: boom",),
            )
        return ParseResult(compilation_type=compilation_type, declarations=declarations)


class SlowParser(FakeParser):
    def __init__(self) -> None:
        super().__init__()
        self.current = 0
        self.peak = 0

    def parse(
        self,
        compilation_type: CompilationType,
        headers: Iterable[str],
        include_dirs: Iterable[str],
        cwd: str,
    ) -> ParseResult:
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)
        try:
            time.sleep(0.05)
            return super().parse(compilation_type, headers, include_dirs, cwd)
        finally:
            with self._lock:
                self.current -= 1


class OrchestrationTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name).resolve()
        self.header_dir = root / "include"
        self.dependency_dir = root / "dependencies"
        for relative in ["a.h", "sub/b.h", "sys/_system_properties.h", "time64.h", ".hidden.h", ".git/c.h"]:
            path = self.header_dir / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("", encoding="utf-8")
        (self.header_dir / "README.txt").write_text("", encoding="utf-8")
        for relative in ["common/uapi", "common/kernel", "arm/asm", "arm64/asm"]:
            (self.dependency_dir / relative).mkdir(parents=True)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_collect_headers_skips_hidden_entries(self) -> None:
        headers = [path.relative_to(self.header_dir).as_posix() for path in collect_headers(self.header_dir)]
        self.assertEqual(headers, ["a.h", "sub/b.h", "sys/_system_properties.h", "time64.h"])

    def test_requirements_apply_blacklist_and_dependency_order(self) -> None:
        arm64 = collect_requirements(Arch.ARM64, self.header_dir, self.dependency_dir)
        self.assertEqual(
            [Path(item).relative_to(self.header_dir).as_posix() for item in arm64.headers],
            ["a.h", "sub/b.h"],
        )
        self.assertEqual(
            list(arm64.dependencies),
            [
                str(self.header_dir),
                str(self.dependency_dir / "common" / "kernel"),
                str(self.dependency_dir / "common" / "uapi"),
                str(self.dependency_dir / "arm64" / "asm"),
            ],
        )
        arm = collect_requirements(Arch.ARM, self.header_dir, self.dependency_dir)
        self.assertIn(str(self.header_dir / "time64.h"), arm.headers)

    def test_missing_arch_dependencies_are_fatal(self) -> None:
        with self.assertRaises(VersionerError):
            collect_requirements(Arch.X86, self.header_dir, self.dependency_dir)

    def test_dependency_entries_must_be_directories(self) -> None:
        (self.dependency_dir / "common" / "stray.h").write_text("", encoding="utf-8")
        with self.assertRaisesRegex(VersionerError, "is not a directory"):
            collect_requirements(Arch.ARM, self.header_dir, self.dependency_dir)

    def test_compiles_every_configuration(self) -> None:
        types = generate_compilation_types([Arch.ARM, Arch.ARM64], [9, 21])
        parser = FakeParser()
        result = compile_headers(types, self.header_dir, self.dependency_dir, parser, jobs=3)
        self.assertFalse(result.failed)
        self.assertEqual(parser.prepared, 1)
        self.assertEqual({call[0] for call in parser.calls}, set(types))
        self.assertEqual(len(parser.calls), 6)
        self.assertTrue(all(call[3] == str(self.header_dir) for call in parser.calls))
        symbol = result.database.get("a")
        assert symbol is not None
        self.assertEqual(symbol.compilation_types(), set(types))
        time64 = result.database.get("time64")
        assert time64 is not None
        self.assertEqual({item.arch for item in time64.compilation_types()}, {Arch.ARM})
        self.assertEqual(result.as_dict()["failure_count"], 0)

    def test_parses_run_concurrently_up_to_jobs(self) -> None:
        types = generate_compilation_types([Arch.ARM], [9, 12, 13, 14])
        parser = SlowParser()
        result = compile_headers(types, self.header_dir, None, parser, jobs=3)
        self.assertEqual(len(parser.calls), 8)
        self.assertGreater(parser.peak, 1)
        self.assertLessEqual(parser.peak, 3)
        symbol = result.database.get("a")
        assert symbol is not None
        self.assertEqual(symbol.compilation_types(), set(types))

    def test_requirements_are_collected_once_per_arch(self) -> None:
        types = generate_compilation_types([Arch.ARM, Arch.ARM64], [9, 21])
        with mock.patch.object(
            orchestration, "collect_requirements", wraps=orchestration.collect_requirements
        ) as collect:
            compile_headers(types, self.header_dir, self.dependency_dir, FakeParser(), jobs=2)
        self.assertEqual(collect.call_count, 2)
        self.assertEqual({call.args[0] for call in collect.call_args_list}, {Arch.ARM, Arch.ARM64})

    def test_failed_configuration_is_reported(self) -> None:
        types = generate_compilation_types([Arch.ARM], [9, 21])
        broken = CompilationType(Arch.ARM, 21, 64)
        stderr = io.StringIO()
        with redirect_stderr(stderr):
            result = compile_headers(types, self.header_dir, self.dependency_dir, FakeParser(fail_for=broken), jobs=2)
        self.assertTrue(result.failed)
        self.assertEqual([item["type"] for item in result.failures], [str(broken)])
        self.assertEqual(result.failures[0]["errors"], 1)
        output = stderr.getvalue()
        self.assertIn(f"versioner: compilation failure for {broken} in", output)
        self.assertIn("a.h:1:1: error: boom", output)
        self.assertIn("versioner: compilation generated warnings or errors", output)
        # Declarations from a failed configuration are still merged.
        symbol = result.database.get("a")
        assert symbol is not None
        self.assertIn(broken, symbol.compilation_types())

    def test_parser_exceptions_propagate(self) -> None:
        types = generate_compilation_types([Arch.ARM], [9])
        parser = FakeParser(explode_for=CompilationType(Arch.ARM, 9, 32))
        with self.assertRaisesRegex(VersionerError, "parser crashed"):
            compile_headers(types, self.header_dir, self.dependency_dir, parser, jobs=1)

    def test_without_dependency_dir_only_headers_are_searched(self) -> None:
        types = generate_compilation_types([Arch.X86], [9])
        parser = FakeParser()
        compile_headers(types, self.header_dir, None, parser)
        self.assertTrue(all(call[2] == (str(self.header_dir),) for call in parser.calls))

    def test_invalid_jobs(self) -> None:
        with self.assertRaises(VersionerError):
            compile_headers([], self.header_dir, None, FakeParser(), jobs=0)

    def test_missing_header_dir(self) -> None:
        with self.assertRaises(VersionerError):
            compile_headers([], self.header_dir / "absent", None, FakeParser())


if __name__ == "__main__":
    unittest.main()
