from .arch import Arch, CompilationType, generate_compilation_types
from .availability import AvailabilityAttribute, AvailabilityValues, DeclarationAvailability
from .checks import check_versions, sanity_check, should_be_available
from .common import AvailabilityError, VersionerError
from .declarations import Declaration, HeaderDatabase, Location, RawDeclaration, Symbol
from .orchestration import CompileResult, collect_requirements, compile_headers
from .parser import ClangHeaderParser, HeaderParser, ParseResult, RegexHeaderParser, create_parser
from .platforms import parse_platforms
from .preprocessor import preprocess_headers

__all__ = [
    "Arch",
    "AvailabilityAttribute",
    "AvailabilityError",
    "AvailabilityValues",
    "ClangHeaderParser",
    "CompilationType",
    "CompileResult",
    "Declaration",
    "DeclarationAvailability",
    "HeaderDatabase",
    "HeaderParser",
    "Location",
    "ParseResult",
    "RawDeclaration",
    "RegexHeaderParser",
    "Symbol",
    "VersionerError",
    "check_versions",
    "collect_requirements",
    "compile_headers",
    "create_parser",
    "generate_compilation_types",
    "parse_platforms",
    "preprocess_headers",
    "sanity_check",
    "should_be_available",
]
