from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator

from .arch import CompilationType, describe_types
from .availability import (
    AvailabilityAttribute,
    DeclarationAvailability,
    merge_availability,
    reduce_attributes,
)
from .common import (
    DUMP_SCHEMA_VERSION,
    TOOL_NAME,
    TOOL_VERSION,
    AvailabilityError,
    validate_payload,
)


@dataclass(frozen=True, order=True)
class Location:
    filename: str
    start_line: int
    start_column: int = 1
    end_line: int = 0
    end_column: int = 0

    def display(self, root: str | Path | None = None) -> str:
        filename = self.filename
        if root is not None:
            prefix = str(root).rstrip("/") + "/"
            if filename.startswith(prefix):
                filename = filename[len(prefix):]
        return f"{filename}:{self.start_line}:{self.start_column}"

    def __str__(self) -> str:
        return self.display()

    def as_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "start_line": self.start_line,
            "start_column": self.start_column,
            "end_line": self.end_line,
            "end_column": self.end_column,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Location:
        return cls(
            filename=str(payload["filename"]),
            start_line=int(payload["start_line"]),
            start_column=int(payload.get("start_column", 1)),
            end_line=int(payload.get("end_line", 0)),
            end_column=int(payload.get("end_column", 0)),
        )


@dataclass(frozen=True)
class RawDeclaration:
    name: str
    location: Location
    is_definition: bool = False
    attributes: tuple[AvailabilityAttribute, ...] = ()
    no_guard: bool = False


@dataclass
class Declaration:
    name: str
    location: Location
    is_definition: bool = False
    no_guard: bool = False
    availability: dict[CompilationType, tuple[AvailabilityAttribute, ...]] = field(default_factory=dict)

    @property
    def compilation_types(self) -> list[CompilationType]:
        return sorted(self.availability)

    def add(self, compilation_type: CompilationType, raw: RawDeclaration) -> None:
        self.availability[compilation_type] = tuple(sorted(set(raw.attributes), key=AvailabilityAttribute.sort_key))
        self.no_guard = self.no_guard or raw.no_guard

    def calculate_availability_for(self, compilation_type: CompilationType) -> DeclarationAvailability:
        return reduce_attributes(self.availability.get(compilation_type, ()))

    def calculate_availability(self) -> DeclarationAvailability:
        per_type: list[DeclarationAvailability] = []
        for compilation_type in self.compilation_types:
            try:
                per_type.append(self.calculate_availability_for(compilation_type))
            except AvailabilityError as exc:
                raise AvailabilityError(f"{exc} (under {compilation_type})") from exc
        try:
            return merge_availability(per_type)
        except AvailabilityError as exc:
            raise AvailabilityError(f"availability differs between configurations: {exc}") from exc

    def describe(self, root: str | Path | None = None) -> str:
        kind = "definition" if self.is_definition else "declaration"
        try:
            availability = str(self.calculate_availability())
        except AvailabilityError as exc:
            availability = f"invalid availability ({exc})"
        return f"{self.location.display(root)} {kind} [{describe_types(self.availability)}]: {availability}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "location": self.location.as_dict(),
            "is_definition": self.is_definition,
            "no_guard": self.no_guard,
            "configurations": [
                {
                    "type": compilation_type.as_dict(),
                    "attributes": [attribute.as_dict() for attribute in self.availability[compilation_type]],
                }
                for compilation_type in self.compilation_types
            ],
        }

    @classmethod
    def from_dict(cls, name: str, payload: dict[str, Any]) -> Declaration:
        declaration = cls(
            name=name,
            location=Location.from_dict(payload["location"]),
            is_definition=bool(payload.get("is_definition", False)),
            no_guard=bool(payload.get("no_guard", False)),
        )
        for item in payload.get("configurations", []):
            compilation_type = CompilationType.from_dict(item["type"])
            declaration.availability[compilation_type] = tuple(
                sorted(
                    (AvailabilityAttribute.from_dict(attribute) for attribute in item.get("attributes", [])),
                    key=AvailabilityAttribute.sort_key,
                )
            )
        return declaration


class Symbol:
    def __init__(self, name: str) -> None:
        self.name = name
        # Keyed by (location, is_definition): one macro site may expand to an inline
        # body under some configurations and to a plain declaration under others.
        self.declarations: dict[tuple[Location, bool], Declaration] = {}

    def add(self, compilation_type: CompilationType, raw: RawDeclaration) -> None:
        key = (raw.location, raw.is_definition)
        declaration = self.declarations.get(key)
        if declaration is None:
            declaration = Declaration(
                name=self.name,
                location=raw.location,
                is_definition=raw.is_definition,
            )
            self.declarations[key] = declaration
        declaration.add(compilation_type, raw)

    def sorted_declarations(self) -> list[Declaration]:
        return [self.declarations[key] for key in sorted(self.declarations)]

    def definitions(self) -> list[Declaration]:
        return [declaration for declaration in self.sorted_declarations() if declaration.is_definition]

    def has_declaration(self, compilation_type: CompilationType) -> bool:
        return any(compilation_type in declaration.availability for declaration in self.declarations.values())

    def compilation_types(self) -> set[CompilationType]:
        types: set[CompilationType] = set()
        for declaration in self.declarations.values():
            types.update(declaration.availability)
        return types

    def calculate_availability(self) -> DeclarationAvailability:
        result = DeclarationAvailability()
        for declaration in self.sorted_declarations():
            availability = declaration.calculate_availability()
            try:
                result = result.merge(availability)
            except AvailabilityError as exc:
                raise AvailabilityError(
                    f"declaration at {declaration.location} is incompatible with earlier declarations: {exc}"
                ) from exc
        return result

    def describe(self, root: str | Path | None = None) -> list[str]:
        return [declaration.describe(root) for declaration in self.sorted_declarations()]

    def __repr__(self) -> str:
        return f"Symbol({self.name!r}, declarations={len(self.declarations)})"


class HeaderDatabase:
    def __init__(self) -> None:
        self.symbols: dict[str, Symbol] = {}
        self._lock = threading.Lock()

    def add_declarations(self, compilation_type: CompilationType, declarations: Iterable[RawDeclaration]) -> int:
        items = list(declarations)
        with self._lock:
            for raw in items:
                symbol = self.symbols.get(raw.name)
                if symbol is None:
                    symbol = Symbol(raw.name)
                    self.symbols[raw.name] = symbol
                symbol.add(compilation_type, raw)
        return len(items)

    def get(self, name: str) -> Symbol | None:
        return self.symbols.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.symbols

    def __len__(self) -> int:
        return len(self.symbols)

    def __iter__(self) -> Iterator[Symbol]:
        for name in sorted(self.symbols):
            yield self.symbols[name]

    def availability_triples(self) -> set[tuple[str, CompilationType, str]]:
        triples: set[tuple[str, CompilationType, str]] = set()
        for symbol in self:
            for declaration in symbol.declarations.values():
                for compilation_type in declaration.availability:
                    try:
                        availability = str(declaration.calculate_availability_for(compilation_type))
                    except AvailabilityError as exc:
                        availability = f"error: {exc}"
                    triples.add((symbol.name, compilation_type, availability))
        return triples

    def dump_payload(self, root: str | Path | None = None) -> dict[str, Any]:
        symbols: dict[str, Any] = {}
        for symbol in self:
            try:
                merged: dict[str, Any] | None = symbol.calculate_availability().as_dict()
                error = None
            except AvailabilityError as exc:
                merged = None
                error = str(exc)
            symbols[symbol.name] = {
                "availability": merged,
                "availability_error": error,
                "declarations": [declaration.as_dict() for declaration in symbol.sorted_declarations()],
            }
        return {
            "tool": {"name": TOOL_NAME, "version": TOOL_VERSION},
            "schema_version": DUMP_SCHEMA_VERSION,
            "root": None if root is None else str(root),
            "symbol_count": len(symbols),
            "symbols": symbols,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> HeaderDatabase:
        validate_payload("dump", payload, "header database dump")
        database = cls()
        for name, entry in payload["symbols"].items():
            symbol = Symbol(name)
            for item in entry.get("declarations", []):
                declaration = Declaration.from_dict(name, item)
                symbol.declarations[(declaration.location, declaration.is_definition)] = declaration
            database.symbols[name] = symbol
        return database

    def dump_text(self, root: str | Path | None = None) -> str:
        lines: list[str] = []
        for symbol in self:
            try:
                availability = str(symbol.calculate_availability())
            except AvailabilityError as exc:
                availability = f"inconsistent availability ({exc})"
            lines.append(f"{symbol.name}: {availability}")
            for entry in symbol.describe(root):
                lines.append(f"    {entry}")
        return "\n".join(lines) + ("\n" if lines else "")
