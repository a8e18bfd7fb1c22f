from __future__ import annotations

import ast
import bisect
import os
import re
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from .arch import ARCH_PREDEFINED_MACROS, ARCH_TARGETS, FUTURE_API_LEVEL, CompilationType
from .availability import NO_GUARD_ANNOTATION, AvailabilityAttribute, parse_annotation, parse_macro
from .common import AvailabilityError, VersionerError, normalize_ws
from .declarations import Location, RawDeclaration

PARSER_BACKENDS = ("clang_preprocess", "regex")

COMPILE_FLAGS = (
    "-std=c11",
    "-DANDROID",
    "-D_FORTIFY_SOURCE=2",
    "-D_GNU_SOURCE",
    "-Wall",
    "-Wextra",
    "-Werror",
    "-Wundef",
    "-Wno-unused-macros",
    "-Wno-unused-function",
    "-Wno-unused-variable",
    "-Wno-unknown-attributes",
    "-Wno-pragma-once-outside-header",
)

_ANNOTATE_RE = re.compile(r"\bannotate\s*\(\s*\"(?P<text>[^\"]*)\"\s*\)")
_VERSION_MACRO_RE = re.compile(
    r"\b(?P<name>__(?:INTRODUCED_IN|DEPRECATED_IN|REMOVED_IN|OBSOLETED_IN)(?:_[A-Z0-9_]+)?)\b"
    r"(?:\s*\(\s*(?P<arg>[^()]*?)\s*\))?"
)
_NO_GUARD_MACRO_RE = re.compile(r"\b__VERSIONER_NO_GUARD\b")
_LINEMARKER_RE = re.compile(r'^#\s*(?:line\s+)?(?P<line>\d+)\s+"(?P<file>(?:[^"\\]|\\.)*)"')
_DIAGNOSTIC_RE = re.compile(r"^(?P<file>.*?):(?P<line>\d+):(?:(?P<column>\d+):)?\s*(?P<level>warning|error|fatal error):\s*(?P<message>.*)$")
_FUNCTION_RE = re.compile(r"^(?P<prefix>[^()]*?)\b(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*\(")
_FUNCTION_POINTER_RE = re.compile(r"\(\s*\*\s*(?:const\s+)?(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*\)\s*\(")
_VARIABLE_RE = re.compile(r"\b(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*(?:\[[^\]]*\]\s*)*(?:=.*)?$")
_TRAILING_PARAMS_RE = re.compile(r"\)\s*(?:[A-Za-z_][A-Za-z0-9_]*\s*)*$")
_DIRECTIVE_RE = re.compile(r"^\s*#\s*(?P<directive>[a-z_]+)\b(?P<rest>.*)$")

_NOT_DECLARATION_PREFIXES = ("typedef", "_Static_assert", "static_assert")
_DECLS_MARKER_RE = re.compile(r"^\s*__(?:BEGIN|END)_DECLS\s*$")
_C_KEYWORDS = frozenset(
    {
        "if",
        "else",
        "for",
        "while",
        "do",
        "switch",
        "return",
        "sizeof",
        "typeof",
        "__typeof__",
        "_Alignof",
        "__attribute__",
        "__asm__",
        "asm",
        "__asm",
        "__extension__",
    }
)


@dataclass(frozen=True)
class ParseResult:
    compilation_type: CompilationType
    declarations: tuple[RawDeclaration, ...] = ()
    warnings: int = 0
    errors: int = 0
    failed_headers: tuple[str, ...] = ()
    messages: tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return bool(self.warnings or self.errors)


class HeaderParser:
    backend = "abstract"

    def prepare(self) -> str | None:
        return None

    def parse(
        self,
        compilation_type: CompilationType,
        headers: Iterable[str],
        include_dirs: Iterable[str],
        cwd: str,
    ) -> ParseResult:
        raise NotImplementedError


# Source text handling shared by both backends.


@dataclass
class SourceText:
    text: str = ""
    line_starts: list[int] = field(default_factory=lambda: [0])
    line_origins: list[tuple[str, int]] = field(default_factory=list)

    @classmethod
    def from_lines(cls, lines: Iterable[tuple[str, int, str]]) -> SourceText:
        chunks: list[str] = []
        starts: list[int] = []
        origins: list[tuple[str, int]] = []
        offset = 0
        for filename, line_no, content in lines:
            starts.append(offset)
            origins.append((filename, line_no))
            chunks.append(content)
            offset += len(content) + 1
        source = cls(text="\n".join(chunks), line_starts=starts or [0], line_origins=origins)
        return source

    def position(self, offset: int) -> tuple[str, int, int]:
        if not self.line_origins:
            return "<unknown>", 0, 0
        index = max(0, bisect.bisect_right(self.line_starts, offset) - 1)
        filename, line_no = self.line_origins[index]
        return filename, line_no, offset - self.line_starts[index] + 1


def strip_c_comments_preserving_lines(content: str) -> str:
    def _blank(match: re.Match[str]) -> str:
        return "\n" * match.group(0).count("\n") + " "

    pattern = re.compile(r"/\*.*?\*/|//[^\n]*|\"(?:\\.|[^\"\\\n])*\"|'(?:\\.|[^'\\\n])*'", flags=re.S)

    def _replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.startswith("/"):
            return _blank(match)
        return token

    return pattern.sub(_replace, content)


def strip_balanced_macro_calls(payload: str, token_pattern: str) -> str:
    out = payload
    token_re = re.compile(token_pattern)
    while True:
        match = token_re.search(out)
        if not match:
            break
        open_idx = out.find("(", match.end())
        if open_idx < 0 or out[match.end():open_idx].strip():
            out = f"{out[:match.start()]} {out[match.end():]}"
            continue
        depth = 0
        end_idx = None
        for idx in range(open_idx, len(out)):
            ch = out[idx]
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    end_idx = idx + 1
                    break
        if end_idx is None:
            out = f"{out[:match.start()]} {out[match.end():]}"
            continue
        out = f"{out[:match.start()]} {out[end_idx:]}"
    return out


def _skip_literal(text: str, index: int) -> int:
    quote = text[index]
    index += 1
    while index < len(text):
        ch = text[index]
        if ch == "\\":
            index += 2
            continue
        if ch == quote or ch == "\n":
            return index
        index += 1
    return index


def _find_matching_brace(text: str, open_idx: int) -> int:
    depth = 0
    index = open_idx
    while index < len(text):
        ch = text[index]
        if ch in "\"'":
            index = _skip_literal(text, index)
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return index
        index += 1
    return len(text) - 1


def _clean_head(head: str) -> str:
    text = strip_balanced_macro_calls(head, r"\b__attribute__\b")
    text = strip_balanced_macro_calls(text, r"\b(?:__asm__|__asm|asm)\b")
    text = strip_balanced_macro_calls(text, r"\b__declspec\b")
    text = _VERSION_MACRO_RE.sub(" ", text)
    text = _NO_GUARD_MACRO_RE.sub(" ", text)
    return normalize_ws(text)


def _looks_like_function_head(head: str) -> bool:
    cleaned = _clean_head(head)
    if not cleaned or cleaned.startswith(_NOT_DECLARATION_PREFIXES):
        return False
    if "=" in cleaned:
        return False
    match = _FUNCTION_RE.match(cleaned)
    return bool(match and match.group("prefix").strip() and _TRAILING_PARAMS_RE.search(cleaned))


def split_statements(text: str) -> list[tuple[int, int, str, bool]]:
    statements: list[tuple[int, int, str, bool]] = []
    index = 0
    start = 0
    paren = 0
    brace = 0
    while index < len(text):
        ch = text[index]
        if ch in "\"'":
            index = _skip_literal(text, index) + 1
            continue
        if ch == "(":
            paren += 1
        elif ch == ")":
            paren = max(0, paren - 1)
        elif ch == "{":
            if brace == 0 and paren == 0 and _looks_like_function_head(text[start:index]):
                end = _find_matching_brace(text, index)
                statements.append((start, end + 1, text[start:index], True))
                index = end + 1
                start = index
                continue
            brace += 1
        elif ch == "}":
            brace = max(0, brace - 1)
        elif ch == ";" and brace == 0 and paren == 0:
            statements.append((start, index + 1, text[start:index], False))
            start = index + 1
        index += 1
    return statements


def extract_attributes(head: str) -> tuple[tuple[AvailabilityAttribute, ...], bool]:
    attributes: list[AvailabilityAttribute] = []
    no_guard = bool(_NO_GUARD_MACRO_RE.search(head))
    for match in _ANNOTATE_RE.finditer(head):
        text = match.group("text")
        if text == NO_GUARD_ANNOTATION:
            no_guard = True
            continue
        attributes.extend(parse_annotation(text))
    for match in _VERSION_MACRO_RE.finditer(head):
        attributes.extend(parse_macro(match.group("name"), match.group("arg")))
    return tuple(attributes), no_guard


def declared_name(head: str, is_definition: bool) -> str | None:
    cleaned = _clean_head(head)
    if not cleaned or cleaned.startswith("#") or "{" in cleaned:
        return None
    if cleaned.startswith(_NOT_DECLARATION_PREFIXES):
        return None

    pointer = _FUNCTION_POINTER_RE.search(cleaned)
    if pointer and pointer.start() == cleaned.find("(") and not is_definition:
        return pointer.group("name") if re.search(r"\bextern\b", cleaned) else None

    function = _FUNCTION_RE.match(cleaned)
    if function and "=" not in cleaned[: function.end()]:
        name = function.group("name")
        if function.group("prefix").strip() and name not in _C_KEYWORDS:
            return name
        return None

    if is_definition or not re.search(r"\bextern\b", cleaned):
        return None
    variable = _VARIABLE_RE.search(cleaned)
    if variable and variable.group("name") not in _C_KEYWORDS:
        return variable.group("name")
    return None


def extract_declarations(source: SourceText, accept_file: Callable[[str], bool] | None = None) -> list[RawDeclaration]:
    declarations: list[RawDeclaration] = []
    for start, end, head, is_definition in split_statements(source.text):
        name = declared_name(head, is_definition)
        if name is None:
            continue
        leading = len(head) - len(head.lstrip())
        filename, line, column = source.position(start + leading)
        if accept_file is not None and not accept_file(filename):
            continue
        _, end_line, end_column = source.position(max(start, end - 1))
        attributes, no_guard = extract_attributes(head)
        declarations.append(
            RawDeclaration(
                name=name,
                location=Location(
                    filename=filename,
                    start_line=line,
                    start_column=column,
                    end_line=end_line,
                    end_column=end_column,
                ),
                is_definition=is_definition,
                attributes=attributes,
                no_guard=no_guard,
            )
        )
    return declarations


def _within(filename: str, roots: tuple[str, ...]) -> bool:
    if filename.startswith("<"):
        return False
    normalized = os.path.normpath(filename)
    return any(normalized == root or normalized.startswith(root + os.sep) for root in roots)


# clang_preprocess backend.


def _dedupe_non_empty_strings(values: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for raw in values:
        value = raw.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def _default_clang_compiler_candidates() -> list[str]:
    candidates: list[str] = []
    for env_key in ["VERSIONER_CLANG", "LLVM_CLANG", "CC"]:
        value = os.environ.get(env_key)
        if isinstance(value, str) and value.strip():
            candidates.append(value.strip())
    candidates.extend(
        [
            "clang",
            "clang-20",
            "clang-19",
            "clang-18",
            "clang-17",
            "clang-16",
            "clang-15",
            "clang-14",
        ]
    )
    return _dedupe_non_empty_strings(candidates)


def _resolve_executable_candidate(candidate: str) -> str | None:
    expanded = os.path.expanduser(os.path.expandvars(candidate.strip()))
    if not expanded:
        return None

    # Explicit path (absolute or relative with separators).
    if any(sep in expanded for sep in ["/", "\\"]):
        candidate_path = Path(expanded)
        if candidate_path.exists():
            return str(candidate_path)
        return None

    return shutil.which(expanded)


def resolve_compiler(compiler: str | None, compiler_candidates: Iterable[str] = ()) -> tuple[str, dict[str, Any]]:
    candidate_sources: list[str] = []
    if compiler:
        candidate_sources.append(compiler)
    candidate_sources.extend(compiler_candidates)
    candidate_sources.extend(_default_clang_compiler_candidates())
    candidates = _dedupe_non_empty_strings(candidate_sources)

    for candidate in candidates:
        resolved = _resolve_executable_candidate(candidate)
        if resolved:
            return resolved, {
                "compiler_requested": compiler,
                "compiler_selected": candidate,
                "compiler_candidates": candidates,
            }

    raise VersionerError(
        "clang not found; tried: "
        + ", ".join(candidates)
        + ". Configure parser.compiler/parser.compiler_candidates or set VERSIONER_CLANG."
    )


def build_compile_command(
    compiler: str,
    compilation_type: CompilationType,
    filename: str,
    include_dirs: Iterable[str],
    include_files: Iterable[str] = (),
    extra_args: Iterable[str] = (),
) -> list[str]:
    command = [compiler, "-E", "-x", "c", filename, "-nostdlibinc"]
    for include_dir in include_dirs:
        command.extend(["-isystem", include_dir])
    command.extend(COMPILE_FLAGS)
    command.append(f"-D__ANDROID_API__={compilation_type.api_level}")
    command.extend(["-target", ARCH_TARGETS[compilation_type.arch]])
    for include_file in include_files:
        command.extend(["-include", include_file])
    command.append(f"-D_FILE_OFFSET_BITS={compilation_type.file_offset_bits}")
    command.extend(extra_args)
    return command


def parse_linemarked_output(output: str) -> SourceText:
    lines: list[tuple[str, int, str]] = []
    filename = "<unknown>"
    line_no = 1
    for raw_line in output.splitlines():
        marker = _LINEMARKER_RE.match(raw_line)
        if marker:
            filename = marker.group("file").replace('\\"', '"').replace("\\\\", "\\")
            line_no = int(marker.group("line"))
            continue
        if raw_line.lstrip().startswith("#"):
            # #pragma and #ident survive preprocessing.
            lines.append((filename, line_no, ""))
        else:
            lines.append((filename, line_no, raw_line))
        line_no += 1
    return SourceText.from_lines(lines)


def count_diagnostics(stderr: str) -> tuple[int, int, list[str]]:
    warnings = 0
    errors = 0
    messages: list[str] = []
    for line in stderr.splitlines():
        match = _DIAGNOSTIC_RE.match(line.strip())
        if not match:
            continue
        if match.group("level") == "warning":
            warnings += 1
        else:
            errors += 1
        messages.append(line.strip())
    return warnings, errors, messages


class ClangHeaderParser(HeaderParser):
    backend = "clang_preprocess"

    def __init__(
        self,
        source_root: str | Path,
        compiler: str | None = None,
        compiler_candidates: Iterable[str] = (),
        include_files: Iterable[str] = (),
        extra_args: Iterable[str] = (),
    ) -> None:
        self.source_root = os.path.normpath(str(Path(source_root).resolve()))
        self.compiler = compiler
        self.compiler_candidates = tuple(compiler_candidates)
        self.include_files = tuple(include_files)
        self.extra_args = tuple(extra_args)
        self.compiler_resolved: str | None = None
        self.compiler_metadata: dict[str, Any] = {}

    def prepare(self) -> str:
        if self.compiler_resolved is None:
            self.compiler_resolved, self.compiler_metadata = resolve_compiler(self.compiler, self.compiler_candidates)
        return self.compiler_resolved

    def _accept(self, filename: str) -> bool:
        return _within(filename, (self.source_root,))

    def parse(
        self,
        compilation_type: CompilationType,
        headers: Iterable[str],
        include_dirs: Iterable[str],
        cwd: str,
    ) -> ParseResult:
        compiler = self.prepare()
        include_dir_list = list(include_dirs)
        declarations: list[RawDeclaration] = []
        warnings = 0
        errors = 0
        failed_headers: list[str] = []
        messages: list[str] = []
        for header in headers:
            command = build_compile_command(
                compiler,
                compilation_type,
                header,
                include_dir_list,
                include_files=self.include_files,
                extra_args=self.extra_args,
            )
            try:
                proc = subprocess.run(command, cwd=cwd, capture_output=True, text=True, check=False)
            except OSError as exc:
                raise VersionerError(
                    f"failed to run '{' '.join(shlex.quote(item) for item in command)}': {exc}"
                ) from exc
            header_warnings, header_errors, header_messages = count_diagnostics(proc.stderr)
            if proc.returncode != 0 and header_errors == 0:
                header_errors = 1
                header_messages.append(proc.stderr.strip() or f"clang exited with status {proc.returncode}")
            if header_warnings or header_errors:
                failed_headers.append(header)
                messages.extend(header_messages)
            warnings += header_warnings
            errors += header_errors
            if proc.returncode != 0:
                continue
            try:
                declarations.extend(extract_declarations(parse_linemarked_output(proc.stdout), self._accept))
            except AvailabilityError as exc:
                errors += 1
                failed_headers.append(header)
                messages.append(f"{header}: {exc}")
        return ParseResult(
            compilation_type=compilation_type,
            declarations=tuple(declarations),
            warnings=warnings,
            errors=errors,
            failed_headers=tuple(dict.fromkeys(failed_headers)),
            messages=tuple(messages),
        )


# regex backend: reads headers directly and evaluates simple conditionals.


def _translate_c_condition(expr: str, defines: dict[str, str]) -> str | None:
    text = re.sub(
        r"\bdefined\s*\(\s*([A-Za-z_][A-Za-z0-9_]*)\s*\)|\bdefined\s+([A-Za-z_][A-Za-z0-9_]*)",
        lambda m: "1" if (m.group(1) or m.group(2)) in defines else "0",
        expr,
    )

    def _macro(match: re.Match[str]) -> str:
        name = match.group(0)
        value = defines.get(name)
        if value is None or not re.fullmatch(r"\s*-?(?:0[xX][0-9A-Fa-f]+|[0-9]+)[uUlL]*\s*", value):
            raise KeyError(name)
        return value.strip()

    try:
        text = re.sub(r"\b[A-Za-z_][A-Za-z0-9_]*\b", _macro, text)
    except KeyError:
        return None
    text = re.sub(r"\b(0[xX][0-9A-Fa-f]+|[0-9]+)[uUlL]+\b", r"\1", text)
    text = text.replace("&&", " and ").replace("||", " or ")
    text = re.sub(r"!(?!=)", " not ", text)
    text = text.replace("/", "//")
    return normalize_ws(text)


def eval_c_condition(expr: str, defines: dict[str, str]) -> bool | None:
    translated = _translate_c_condition(expr, defines)
    if translated is None:
        return None
    try:
        tree = ast.parse(translated, mode="eval")
    except SyntaxError:
        return None

    def _eval(node: ast.AST) -> int:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant):
            if isinstance(node.value, int):
                return int(node.value)
            raise ValueError("non-int literal")
        if isinstance(node, ast.UnaryOp):
            value = _eval(node.operand)
            if isinstance(node.op, ast.Not):
                return int(not value)
            if isinstance(node.op, ast.USub):
                return -value
            if isinstance(node.op, ast.UAdd):
                return +value
            if isinstance(node.op, ast.Invert):
                return ~value
            raise ValueError("unsupported unary op")
        if isinstance(node, ast.BoolOp):
            values = [_eval(item) for item in node.values]
            if isinstance(node.op, ast.And):
                return int(all(values))
            return int(any(values))
        if isinstance(node, ast.Compare):
            left = _eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                right = _eval(comparator)
                if isinstance(op, ast.Eq):
                    ok = left == right
                elif isinstance(op, ast.NotEq):
                    ok = left != right
                elif isinstance(op, ast.Lt):
                    ok = left < right
                elif isinstance(op, ast.LtE):
                    ok = left <= right
                elif isinstance(op, ast.Gt):
                    ok = left > right
                elif isinstance(op, ast.GtE):
                    ok = left >= right
                else:
                    raise ValueError("unsupported comparison")
                if not ok:
                    return 0
                left = right
            return 1
        if isinstance(node, ast.BinOp):
            left = _eval(node.left)
            right = _eval(node.right)
            if isinstance(node.op, ast.Add):
                return left + right
            if isinstance(node.op, ast.Sub):
                return left - right
            if isinstance(node.op, ast.Mult):
                return left * right
            if isinstance(node.op, ast.FloorDiv):
                return left // right
            if isinstance(node.op, ast.Mod):
                return left % right
            if isinstance(node.op, ast.BitOr):
                return left | right
            if isinstance(node.op, ast.BitAnd):
                return left & right
            raise ValueError("unsupported binary op")
        raise ValueError("unsupported expression")

    try:
        return bool(_eval(tree))
    except (ValueError, ZeroDivisionError):
        return None


def predefined_macros(compilation_type: CompilationType) -> dict[str, str]:
    defines = {
        "ANDROID": "1",
        "__ANDROID__": "1",
        "__ANDROID_API__": str(compilation_type.api_level),
        "__ANDROID_API_FUTURE__": str(FUTURE_API_LEVEL),
        "_FILE_OFFSET_BITS": str(compilation_type.file_offset_bits),
        "_FORTIFY_SOURCE": "2",
        "_GNU_SOURCE": "1",
    }
    for macro in ARCH_PREDEFINED_MACROS[compilation_type.arch]:
        defines[macro] = "1"
    return defines


def preprocess_conditionals(content: str, defines: dict[str, str]) -> list[str]:
    """Blank out inactive conditional blocks and directives, keeping line numbers.

    Conditions that cannot be evaluated are treated as true.
    """
    lines = content.split("\n")
    output: list[str] = []
    # Each frame: (parent_active, branch_active, branch_taken).
    stack: list[tuple[bool, bool, bool]] = []
    active = True
    index = 0
    while index < len(lines):
        line = lines[index]
        logical = line
        consumed = 1
        while logical.endswith("\\") and index + consumed < len(lines):
            logical = logical[:-1] + " " + lines[index + consumed]
            consumed += 1
        match = _DIRECTIVE_RE.match(logical)
        if match is None:
            output.append(line if active else "")
            index += 1
            continue

        directive = match.group("directive")
        rest = match.group("rest").strip()
        if directive in {"if", "ifdef", "ifndef"}:
            if directive == "if":
                value = eval_c_condition(rest, defines)
                taken = True if value is None else value
            else:
                name = rest.split()[0] if rest else ""
                taken = (name in defines) == (directive == "ifdef")
            stack.append((active, active and taken, taken))
            active = active and taken
        elif directive == "elif":
            if stack:
                parent_active, _, already_taken = stack[-1]
                value = eval_c_condition(rest, defines)
                taken = (True if value is None else value) and not already_taken
                stack[-1] = (parent_active, parent_active and taken, already_taken or taken)
                active = parent_active and taken
        elif directive == "else":
            if stack:
                parent_active, _, already_taken = stack[-1]
                stack[-1] = (parent_active, parent_active and not already_taken, True)
                active = parent_active and not already_taken
        elif directive == "endif":
            if stack:
                parent_active, _, _ = stack.pop()
                active = parent_active
        elif active and directive == "define":
            parts = rest.split(None, 1)
            if parts and "(" not in parts[0]:
                defines[parts[0]] = parts[1] if len(parts) > 1 else ""
        elif active and directive == "undef":
            defines.pop(rest.split()[0] if rest else "", None)
        output.extend([""] * consumed)
        index += consumed
    return output


class RegexHeaderParser(HeaderParser):
    backend = "regex"

    def parse(
        self,
        compilation_type: CompilationType,
        headers: Iterable[str],
        include_dirs: Iterable[str],
        cwd: str,
    ) -> ParseResult:
        declarations: list[RawDeclaration] = []
        errors = 0
        failed_headers: list[str] = []
        messages: list[str] = []
        for header in headers:
            path = Path(header) if os.path.isabs(header) else Path(cwd) / header
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise VersionerError(f"Unable to read header '{path}': {exc}") from exc
            content = strip_c_comments_preserving_lines(raw)
            active_lines = preprocess_conditionals(content, predefined_macros(compilation_type))
            filename = os.path.normpath(str(path))
            source = SourceText.from_lines(
                (filename, line_no, _DECLS_MARKER_RE.sub("", text))
                for line_no, text in enumerate(active_lines, start=1)
            )
            try:
                declarations.extend(extract_declarations(source))
            except AvailabilityError as exc:
                errors += 1
                failed_headers.append(header)
                messages.append(f"{header}: {exc}")
        return ParseResult(
            compilation_type=compilation_type,
            declarations=tuple(declarations),
            errors=errors,
            failed_headers=tuple(failed_headers),
            messages=tuple(messages),
        )


def create_parser(
    backend: str,
    source_root: str | Path,
    *,
    compiler: str | None = None,
    compiler_candidates: Iterable[str] = (),
    include_files: Iterable[str] = (),
    extra_args: Iterable[str] = (),
    fallback_to_regex: bool = False,
) -> HeaderParser:
    if backend not in PARSER_BACKENDS:
        raise VersionerError(f"parser backend must be one of: {', '.join(PARSER_BACKENDS)}")
    if backend == "regex":
        return RegexHeaderParser()

    parser = ClangHeaderParser(
        source_root,
        compiler=compiler,
        compiler_candidates=compiler_candidates,
        include_files=include_files,
        extra_args=extra_args,
    )
    try:
        parser.prepare()
    except VersionerError as exc:
        if not fallback_to_regex:
            raise
        print(f"versioner: {exc}; falling back to the regex parser", file=sys.stderr)
        return RegexHeaderParser()
    return parser
