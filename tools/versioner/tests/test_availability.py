from __future__ import annotations

import sys
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_ROOT = REPO_ROOT / "tools" / "versioner" / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from versioner_core.arch import Arch
from versioner_core.availability import (
    AvailabilityAttribute,
    AvailabilityValues,
    DeclarationAvailability,
    merge_availability,
    parse_annotation,
    parse_macro,
    reduce_attributes,
)
from versioner_core.common import AvailabilityError


class AnnotationParsingTests(unittest.TestCase):
    def test_global_and_arch_annotations(self) -> None:
        self.assertEqual(parse_annotation("introduced_in=9"), [AvailabilityAttribute("introduced", 9)])
        self.assertEqual(
            parse_annotation("obsoleted_in_x86_64=23"),
            [AvailabilityAttribute("obsoleted", 23, Arch.X86_64)],
        )
        self.assertEqual(
            parse_annotation("deprecated_in_arm64=21"),
            [AvailabilityAttribute("deprecated", 21, Arch.ARM64)],
        )

    def test_bitness_scopes_expand_to_every_arch(self) -> None:
        attributes = parse_annotation("introduced_in_32=12")
        self.assertEqual({item.arch for item in attributes}, {Arch.ARM, Arch.MIPS, Arch.X86})
        attributes = parse_annotation("introduced_in_64=21")
        self.assertEqual({item.arch for item in attributes}, {Arch.ARM64, Arch.MIPS64, Arch.X86_64})

    def test_future_markers(self) -> None:
        self.assertEqual(parse_annotation("introduced_in_future"), [AvailabilityAttribute("future")])
        self.assertEqual(parse_annotation("introduced_in=10000"), [AvailabilityAttribute("future")])
        self.assertEqual(
            parse_annotation("introduced_in_mips=__ANDROID_API_FUTURE__"),
            [AvailabilityAttribute("future", arch=Arch.MIPS)],
        )
        with self.assertRaises(AvailabilityError):
            parse_annotation("deprecated_in=10000")

    def test_unrelated_annotations_are_ignored(self) -> None:
        self.assertEqual(parse_annotation("nonnull"), [])
        self.assertEqual(parse_annotation("versioner_no_guard"), [])

    def test_malformed_annotations_raise(self) -> None:
        with self.assertRaises(AvailabilityError):
            parse_annotation("introduced_in_sparc=9")
        with self.assertRaises(AvailabilityError):
            parse_annotation("introduced_in=soon")
        with self.assertRaises(AvailabilityError):
            parse_annotation("introduced_in")

    def test_macros(self) -> None:
        self.assertEqual(parse_macro("__INTRODUCED_IN", "9"), [AvailabilityAttribute("introduced", 9)])
        self.assertEqual(parse_macro("__REMOVED_IN", "23"), [AvailabilityAttribute("obsoleted", 23)])
        self.assertEqual(
            parse_macro("__INTRODUCED_IN_X86", "12"),
            [AvailabilityAttribute("introduced", 12, Arch.X86)],
        )
        self.assertEqual(parse_macro("__INTRODUCED_IN_FUTURE", None), [AvailabilityAttribute("future")])
        with self.assertRaises(AvailabilityError):
            parse_macro("__DEPRECATED_IN", None)


class ReductionTests(unittest.TestCase):
    def test_reduces_global_and_arch_values_on_different_axes(self) -> None:
        availability = reduce_attributes(
            [
                AvailabilityAttribute("introduced", 9),
                AvailabilityAttribute("obsoleted", 23, Arch.ARM),
            ]
        )
        self.assertEqual(availability.global_availability, AvailabilityValues(introduced=9))
        self.assertEqual(availability.for_arch(Arch.ARM), AvailabilityValues(obsoleted=23))
        self.assertTrue(availability.for_arch(Arch.X86).empty())

    def test_same_axis_global_and_arch_is_rejected(self) -> None:
        with self.assertRaisesRegex(AvailabilityError, "introduced is set both globally and for arm"):
            reduce_attributes(
                [
                    AvailabilityAttribute("introduced", 9),
                    AvailabilityAttribute("introduced", 14, Arch.ARM),
                ]
            )

    def test_conflicting_values_in_one_scope_are_rejected(self) -> None:
        with self.assertRaises(AvailabilityError):
            reduce_attributes([AvailabilityAttribute("introduced", 9), AvailabilityAttribute("introduced", 12)])

    def test_repeated_identical_values_are_accepted(self) -> None:
        availability = reduce_attributes([AvailabilityAttribute("introduced", 9), AvailabilityAttribute("introduced", 9)])
        self.assertEqual(availability.global_availability.introduced, 9)

    def test_empty_attributes_reduce_to_empty_availability(self) -> None:
        self.assertTrue(reduce_attributes([]).empty())


class MergeTests(unittest.TestCase):
    def test_merge_fills_unset_axes(self) -> None:
        merged = merge_availability(
            [
                DeclarationAvailability(global_availability=AvailabilityValues(introduced=9)),
                DeclarationAvailability(global_availability=AvailabilityValues(deprecated=21)),
            ]
        )
        self.assertEqual(merged.global_availability, AvailabilityValues(introduced=9, deprecated=21))

    def test_merge_rejects_global_and_arch_on_same_axis(self) -> None:
        left = DeclarationAvailability(global_availability=AvailabilityValues(introduced=9))
        right = DeclarationAvailability(arch_availability={Arch.ARM: AvailabilityValues(introduced=14)})
        with self.assertRaises(AvailabilityError):
            left.merge(right)

    def test_merge_rejects_different_levels(self) -> None:
        left = DeclarationAvailability(arch_availability={Arch.X86: AvailabilityValues(introduced=12)})
        right = DeclarationAvailability(arch_availability={Arch.X86: AvailabilityValues(introduced=14)})
        with self.assertRaises(AvailabilityError):
            merge_availability([left, right])

    def test_global_future_applies_to_every_arch(self) -> None:
        availability = DeclarationAvailability(global_availability=AvailabilityValues(future=True))
        self.assertTrue(availability.is_future(Arch.ARM))
        self.assertTrue(availability.is_future(Arch.X86_64))
        arch_only = DeclarationAvailability(arch_availability={Arch.ARM: AvailabilityValues(future=True)})
        self.assertTrue(arch_only.is_future(Arch.ARM))
        self.assertFalse(arch_only.is_future(Arch.X86))

    def test_equality_ignores_empty_arch_entries(self) -> None:
        self.assertEqual(
            DeclarationAvailability(),
            DeclarationAvailability(arch_availability={Arch.ARM: AvailabilityValues()}),
        )

    def test_dict_round_trip(self) -> None:
        availability = DeclarationAvailability(
            global_availability=AvailabilityValues(introduced=9),
            arch_availability={Arch.MIPS: AvailabilityValues(obsoleted=21)},
        )
        self.assertEqual(DeclarationAvailability.from_dict(availability.as_dict()), availability)
        self.assertEqual(str(availability), "global: introduced = 9; mips: obsoleted = 21")


if __name__ == "__main__":
    unittest.main()
