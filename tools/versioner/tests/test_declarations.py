from __future__ import annotations

import json
import sys
import threading
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_ROOT = REPO_ROOT / "tools" / "versioner" / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from versioner_core.arch import Arch, CompilationType, generate_compilation_types
from versioner_core.availability import AvailabilityAttribute, AvailabilityValues
from versioner_core.common import AvailabilityError, VersionerError
from versioner_core.declarations import HeaderDatabase, Location, RawDeclaration

HEADER = "/headers/foo.h"


def raw(name: str, line: int, *attributes: AvailabilityAttribute, definition: bool = False) -> RawDeclaration:
    return RawDeclaration(
        name=name,
        location=Location(filename=HEADER, start_line=line, start_column=1, end_line=line, end_column=30),
        is_definition=definition,
        attributes=tuple(attributes),
    )


class HeaderDatabaseTests(unittest.TestCase):
    def setUp(self) -> None:
        self.types = sorted(generate_compilation_types([Arch.ARM, Arch.ARM64], [9, 21]))
        self.database = HeaderDatabase()

    def test_declarations_are_grouped_by_location(self) -> None:
        for compilation_type in self.types:
            self.database.add_declarations(compilation_type, [raw("foo", 3, AvailabilityAttribute("introduced", 9))])
        symbol = self.database.get("foo")
        assert symbol is not None
        self.assertEqual(len(symbol.declarations), 1)
        self.assertEqual(symbol.compilation_types(), set(self.types))
        self.assertEqual(symbol.calculate_availability().global_availability, AvailabilityValues(introduced=9))

    def test_has_declaration_tracks_configurations(self) -> None:
        arm_types = [item for item in self.types if item.arch is Arch.ARM]
        for compilation_type in arm_types:
            self.database.add_declarations(compilation_type, [raw("arm_only", 5)])
        symbol = self.database.get("arm_only")
        assert symbol is not None
        self.assertTrue(symbol.has_declaration(CompilationType(Arch.ARM, 9, 32)))
        self.assertFalse(symbol.has_declaration(CompilationType(Arch.ARM64, 21, 64)))

    def test_declaration_availability_differs_between_configurations(self) -> None:
        self.database.add_declarations(self.types[0], [raw("bar", 7, AvailabilityAttribute("introduced", 9))])
        self.database.add_declarations(self.types[1], [raw("bar", 7, AvailabilityAttribute("introduced", 14))])
        symbol = self.database.get("bar")
        assert symbol is not None
        declaration = symbol.sorted_declarations()[0]
        with self.assertRaisesRegex(AvailabilityError, "differs between configurations"):
            declaration.calculate_availability()

    def test_inline_definition_and_declaration_at_one_site(self) -> None:
        self.database.add_declarations(self.types[0], [raw("baz", 9, definition=True)])
        self.database.add_declarations(self.types[1], [raw("baz", 9)])
        symbol = self.database.get("baz")
        assert symbol is not None
        self.assertEqual(len(symbol.declarations), 2)
        self.assertEqual(len(symbol.definitions()), 1)

    def test_concurrent_insertion(self) -> None:
        def worker(compilation_type: CompilationType) -> None:
            self.database.add_declarations(
                compilation_type,
                [raw(f"sym{index}", index) for index in range(1, 50)],
            )

        threads = [threading.Thread(target=worker, args=(item,)) for item in self.types]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(self.database), 49)
        for symbol in self.database:
            self.assertEqual(symbol.compilation_types(), set(self.types))

    def test_dump_round_trip_preserves_availability_triples(self) -> None:
        for compilation_type in self.types:
            declarations = [
                raw("foo", 3, AvailabilityAttribute("introduced", 9)),
                raw("bar", 4, AvailabilityAttribute("introduced", 14, Arch.ARM), AvailabilityAttribute("future", arch=Arch.ARM64)),
                raw("helper", 10, definition=True),
            ]
            if compilation_type.api_level >= 21:
                declarations.append(raw("late", 12, AvailabilityAttribute("introduced", 21), AvailabilityAttribute("obsoleted", 24)))
            self.database.add_declarations(compilation_type, declarations)

        payload = json.loads(json.dumps(self.database.dump_payload("/headers")))
        self.assertEqual(payload["symbol_count"], 4)
        self.assertEqual(payload["symbols"]["foo"]["availability"]["global"]["introduced"], 9)
        restored = HeaderDatabase.from_payload(payload)
        self.assertEqual(restored.availability_triples(), self.database.availability_triples())
        self.assertEqual(restored.dump_payload("/headers"), self.database.dump_payload("/headers"))

    def test_dump_records_inconsistent_symbols(self) -> None:
        self.database.add_declarations(self.types[0], [raw("bad", 1, AvailabilityAttribute("introduced", 9))])
        self.database.add_declarations(self.types[0], [raw("bad", 2, AvailabilityAttribute("introduced", 12, Arch.ARM))])
        payload = self.database.dump_payload()
        self.assertIsNone(payload["symbols"]["bad"]["availability"])
        self.assertIn("incompatible", payload["symbols"]["bad"]["availability_error"])

    def test_from_payload_validates_schema(self) -> None:
        with self.assertRaisesRegex(VersionerError, "schema validation"):
            HeaderDatabase.from_payload({"schema_version": 2, "symbols": {}})

    def test_dump_text_lists_declaration_sites(self) -> None:
        self.database.add_declarations(self.types[0], [raw("foo", 3, AvailabilityAttribute("introduced", 9))])
        text = self.database.dump_text("/headers")
        self.assertIn("foo: global: introduced = 9", text)
        self.assertIn("foo.h:3:1 declaration [arm-9 [fob = 32]]: global: introduced = 9", text)


if __name__ == "__main__":
    unittest.main()
