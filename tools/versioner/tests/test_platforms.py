from __future__ import annotations

import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_ROOT = REPO_ROOT / "tools" / "versioner" / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from versioner_core import platforms
from versioner_core.arch import Arch, CompilationType, generate_compilation_types
from versioner_core.common import VersionerError
from versioner_core.platforms import (
    extract_library_exports,
    load_platform_symbols,
    parse_nm_exports,
    parse_objdump_exports,
    parse_platforms,
    parse_readelf_exports,
    parse_symbol_list,
)


def write_symbols(root: Path, level: int, arch: str, functions: list[str], variables: list[str] = ()) -> None:
    symbol_dir = root / f"android-{level}" / f"arch-{arch}" / "symbols"
    symbol_dir.mkdir(parents=True, exist_ok=True)
    (symbol_dir / "libc.so.functions.txt").write_text("\n".join(functions) + "\n", encoding="utf-8")
    if variables:
        (symbol_dir / "libc.so.variables.txt").write_text("\n".join(variables) + "\n", encoding="utf-8")


class SymbolListTests(unittest.TestCase):
    def test_parse_symbol_list(self) -> None:
        self.assertEqual(parse_symbol_list("foo\n\n  bar  \n# comment\nbaz # trailing\n"), {"foo", "bar", "baz"})


class PlatformDatabaseTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        write_symbols(self.root, 9, "arm", ["foo"], ["environ"])
        write_symbols(self.root, 21, "arm", ["foo", "bar"], ["environ"])
        write_symbols(self.root, 21, "arm64", ["foo", "bar"])

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_symbols_map_to_both_offset_widths(self) -> None:
        types = generate_compilation_types([Arch.ARM, Arch.ARM64], [9, 21])
        database = parse_platforms(types, self.root)
        self.assertEqual(database["foo"], set(types))
        self.assertEqual(
            database["bar"],
            {item for item in types if item.api_level == 21},
        )
        self.assertEqual(
            database["environ"],
            {CompilationType(Arch.ARM, level, bits) for level in (9, 21) for bits in (32, 64)},
        )

    def test_missing_platform_directory_is_fatal(self) -> None:
        types = generate_compilation_types([Arch.X86], [9])
        with self.assertRaisesRegex(VersionerError, "platform directory"):
            parse_platforms(types, self.root)

    def test_missing_root_is_fatal(self) -> None:
        with self.assertRaises(VersionerError):
            parse_platforms([], self.root / "absent")

    def test_libraries_are_inspected_without_symbol_lists(self) -> None:
        lib_dir = self.root / "android-9" / "arch-x86" / "usr" / "lib"
        lib_dir.mkdir(parents=True)
        (lib_dir / "libc.so").write_bytes(b"\x7fELF")
        nm_output = "00001000 T foo\n00002000 D environ\n         U abort\n00003000 t local_helper\n"
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=nm_output, stderr="")
        with mock.patch.object(platforms.shutil, "which", side_effect=lambda name: f"/usr/bin/{name}"), mock.patch.object(
            platforms.subprocess, "run", return_value=completed
        ) as run:
            symbols = load_platform_symbols(self.root, Arch.X86, 9)
        self.assertEqual(symbols, {"foo", "environ"})
        self.assertEqual(run.call_args.args[0][0], "llvm-nm")


class ExportParsingTests(unittest.TestCase):
    def test_nm_versions_and_weak_symbols(self) -> None:
        output = "libc.so:\n00001000 T memcpy@@LIBC\n00002000 W weak_fn\n00003000 u unique_obj\n00004000 b local_bss\n"
        self.assertEqual(parse_nm_exports(output), ["memcpy", "unique_obj", "weak_fn"])

    def test_readelf(self) -> None:
        output = "\n".join(
            [
                "Symbol table '.dynsym' contains 4 entries:",
                "   Num:    Value  Size Type    Bind   Vis      Ndx Name",
                "     0: 00000000     0 NOTYPE  LOCAL  DEFAULT  UND ",
                "     1: 00000000     0 FUNC    GLOBAL DEFAULT  UND abort@LIBC (2)",
                "     2: 00001000    40 FUNC    GLOBAL DEFAULT   12 strlen@@LIBC",
                "     3: 00002000     4 OBJECT  WEAK   DEFAULT   22 environ",
                "     4: 00003000     4 FUNC    GLOBAL HIDDEN    12 hidden_fn",
            ]
        )
        self.assertEqual(parse_readelf_exports(output), ["environ", "strlen"])

    def test_objdump(self) -> None:
        output = "\n".join(
            [
                "DYNAMIC SYMBOL TABLE:",
                "00000000      DF *UND*  00000000  LIBC        abort",
                "00001000 g    DF .text  00000028  LIBC        strlen",
                "00002000 w    DO .data  00000004  Base        environ",
            ]
        )
        self.assertEqual(parse_objdump_exports(output), ["environ", "strlen"])

    def test_no_export_tool_available(self) -> None:
        with mock.patch.object(platforms.shutil, "which", return_value=None):
            with self.assertRaisesRegex(VersionerError, "No export listing tool found"):
                extract_library_exports(Path("/lib/libc.so"))

    def test_failing_tools_are_reported(self) -> None:
        error = subprocess.CalledProcessError(1, ["nm"], output="", stderr="bad file")
        with mock.patch.object(platforms.shutil, "which", return_value="/usr/bin/tool"), mock.patch.object(
            platforms.subprocess, "run", side_effect=error
        ):
            with self.assertRaisesRegex(VersionerError, "bad file"):
                extract_library_exports(Path("/lib/libc.so"))


if __name__ == "__main__":
    unittest.main()
