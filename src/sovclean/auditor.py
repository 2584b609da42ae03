"""Last-mile gate: build breakers and live security hazards in the final tree.

Independent of the scorer. Works on the final tree only and never reads
the pipeline's findings.
"""

from __future__ import annotations

import json
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any

from sovclean import kinds as K
from sovclean.config import DEFAULT_POLICY, PLACEHOLDER_VALUE, Policy
from sovclean.models import VirtualFile, VirtualTree
from sovclean.rewriter import DEPENDENCY_SECTIONS
from sovclean.rules import (
    IMPORT_HEAD_RE,
    SCRIPT_MARKERS,
    SECRET_PATTERNS,
    TELEMETRY_DOMAIN_RE,
    TELEMETRY_LITERAL_RE,
    line_of,
)

RESOLVE_EXTENSIONS: tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx", ".mjs")
JSX_EXTENSIONS: tuple[str, ...] = (".tsx", ".jsx")
PATH_ALIASES: dict[str, str] = {"@/": "src/", "~/": "src/"}

NODE_BUILTINS: frozenset[str] = frozenset({
    "assert", "async_hooks", "buffer", "child_process", "cluster", "console", "constants",
    "crypto", "dgram", "diagnostics_channel", "dns", "domain", "events", "fs", "http", "http2",
    "https", "inspector", "module", "net", "os", "path", "perf_hooks", "process", "punycode",
    "querystring", "readline", "repl", "stream", "string_decoder", "sys", "timers", "tls",
    "trace_events", "tty", "url", "util", "v8", "vm", "wasi", "worker_threads", "zlib",
})

_IMPORT_FROM = re.compile(IMPORT_HEAD_RE + r"""(['"])(?P<spec>[^'"\n]+)\1""", re.MULTILINE)
_REQUIRE = re.compile(r"""\b(?:require|import)\(\s*(['"])(?P<spec>[^'"\n]+)\1\s*\)""")

_EVAL = re.compile(r"(?<![\w.$])eval\s*\(|\bnew\s+Function\s*\(")
# Only string literals reach the network; comments and JSX text do not
_TELEMETRY = re.compile(TELEMETRY_LITERAL_RE)
_TELEMETRY_HOST = re.compile(TELEMETRY_DOMAIN_RE)
_INJECTED_SCRIPT = re.compile(rf"<script\b[^>]*{SCRIPT_MARKERS}", re.IGNORECASE)
_SECRETS = [(name, re.compile(p)) for name, p in SECRET_PATTERNS]
_HEX_RUN = re.compile(r"(?:\\x[0-9a-fA-F]{2}){8,}")

CODE_KINDS = frozenset({K.SOURCE, K.MARKUP, K.BUILD_CONFIG})


@dataclass(frozen=True)
class AuditIssue:
    path: str
    code: str
    message: str
    line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"path": self.path, "code": self.code, "message": self.message}
        if self.line is not None:
            out["line"] = self.line
        return out

    def render(self) -> str:
        where = f"{self.path}:{self.line}" if self.line is not None else self.path
        return f"{where} [{self.code}] {self.message}"


@dataclass(frozen=True)
class AuditResult:
    passed: bool
    build_errors: tuple[AuditIssue, ...] = ()
    security_hazards: tuple[AuditIssue, ...] = ()
    warnings: tuple[AuditIssue, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "buildErrors": [i.to_dict() for i in self.build_errors],
            "securityHazards": [i.to_dict() for i in self.security_hazards],
            "warnings": [i.to_dict() for i in self.warnings],
        }


# --- Bracket balance ---


def check_brackets(code: str, jsx: bool = False) -> str | None:
    """Return an error message if (), [], {} are unbalanced, else None.

    Strings, template literals, comments and regex literals are skipped.
    Quoted strings end at a newline, which keeps stray apostrophes in
    JSX text from swallowing the rest of the file. With `jsx`, an
    apostrophe right after a letter or digit ("We're") is text, not the
    start of a string.
    """
    pairs = {"(": ")", "[": "]", "{": "}"}
    closers = set(pairs.values())
    stack: list[tuple[str, int]] = []
    i = 0
    n = len(code)
    prev = ""  # last significant character outside strings and comments

    while i < n:
        ch = code[i]
        nxt = code[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            end = code.find("\n", i)
            i = n if end < 0 else end
            continue
        if ch == "/" and nxt == "*":
            end = code.find("*/", i + 2)
            i = n if end < 0 else end + 2
            continue
        if ch == "'" and jsx and i > 0 and code[i - 1].isalnum():
            i += 1
            continue
        if ch in "'\"`":
            i = _skip_string(code, i, ch)
            prev = ch
            continue
        if ch == "/" and (not prev or prev in "(,=:[!&|?{};+-*%~^"):
            i = _skip_regex(code, i)
            prev = "/"
            continue

        if ch in pairs:
            stack.append((pairs[ch], i))
        elif ch in closers:
            if not stack:
                return f"unexpected '{ch}' at line {line_of(code, i)}"
            expected, _ = stack.pop()
            if expected != ch:
                return f"mismatched '{ch}' at line {line_of(code, i)} (expected '{expected}')"
        if not ch.isspace():
            prev = ch
        i += 1

    if stack:
        closer, pos = stack[-1]
        return f"unclosed bracket opened at line {line_of(code, pos)} (missing '{closer}')"
    return None


def _skip_string(code: str, i: int, quote: str) -> int:
    j = i + 1
    n = len(code)
    while j < n:
        c = code[j]
        if c == "\\":
            j += 2
            continue
        if c == quote:
            return j + 1
        if c == "\n" and quote != "`":
            return j
        j += 1
    return n


def _skip_regex(code: str, i: int) -> int:
    j = i + 1
    n = len(code)
    in_class = False
    while j < n:
        c = code[j]
        if c == "\\":
            j += 2
            continue
        if c == "\n":
            # not a regex after all; treat the slash as an operator
            return i + 1
        if in_class:
            if c == "]":
                in_class = False
        elif c == "[":
            in_class = True
        elif c == "/":
            return j + 1
        j += 1
    return i + 1


# --- Import resolution ---


def import_specifiers(code: str) -> list[tuple[str, int]]:
    found: list[tuple[int, str]] = []
    for rx in (_IMPORT_FROM, _REQUIRE):
        for m in rx.finditer(code):
            found.append((m.start("spec"), m.group("spec")))
    found.sort()
    return [(spec, line_of(code, pos)) for pos, spec in found]


def resolve_relative(tree: VirtualTree, importer: str, spec: str) -> bool:
    spec = spec.split("?", 1)[0]
    for alias, target in PATH_ALIASES.items():
        if spec.startswith(alias):
            base = target + spec[len(alias):]
            break
    else:
        base = posixpath.join(posixpath.dirname(importer), spec)
    base = posixpath.normpath(base)
    if base.startswith("../") or base == "..":
        return False

    candidates = [base]
    candidates += [base + ext for ext in RESOLVE_EXTENSIONS]
    candidates += [f"{base}/index{ext}" for ext in RESOLVE_EXTENSIONS]
    return any(c in tree for c in candidates)


def package_name(spec: str) -> str:
    parts = spec.split("/")
    if spec.startswith("@") and len(parts) > 1:
        return "/".join(parts[:2])
    return parts[0]


def is_local_spec(spec: str) -> bool:
    return spec.startswith(".") or any(spec.startswith(a) for a in PATH_ALIASES)


def is_builtin(spec: str) -> bool:
    return spec.startswith("node:") or package_name(spec) in NODE_BUILTINS


def _declared_packages(tree: VirtualTree, manifest_path: str) -> set[str] | None:
    f = tree.get(manifest_path)
    if f is None or f.binary:
        return None
    try:
        data = json.loads(f.text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    declared: set[str] = set()
    for section in DEPENDENCY_SECTIONS:
        deps = data.get(section)
        if isinstance(deps, dict):
            declared.update(deps)
    return declared


# --- Gates ---


def _build_gate(tree: VirtualTree, policy: Policy) -> tuple[list[AuditIssue], list[AuditIssue]]:
    errors: list[AuditIssue] = []
    warnings: list[AuditIssue] = []

    for required in policy.required_files:
        f = tree.get(required)
        if f is None:
            errors.append(AuditIssue(required, "MISSING_REQUIRED_FILE", "required file is missing"))
            continue
        if f.kind == K.MANIFEST and _declared_packages(tree, required) is None:
            errors.append(AuditIssue(required, "MANIFEST_UNPARSABLE", "manifest is not a valid JSON object"))

    declared = _declared_packages(tree, "package.json")
    if declared is None:
        warnings.append(AuditIssue("package.json", "DEPENDENCIES_UNCHECKED", "no readable manifest; bare imports not checked"))

    for f in tree.files():
        if f.binary or f.kind != K.SOURCE:
            continue
        code = f.text
        problem = check_brackets(code, jsx=f.path.endswith(JSX_EXTENSIONS))
        if problem:
            errors.append(AuditIssue(f.path, "UNBALANCED_BRACKETS", problem))

        for spec, line in import_specifiers(code):
            if is_local_spec(spec):
                if not resolve_relative(tree, f.path, spec):
                    errors.append(AuditIssue(f.path, "UNRESOLVED_IMPORT", f"cannot resolve '{spec}'", line))
            elif declared is not None and not is_builtin(spec) and "://" not in spec and not spec.startswith("virtual:"):
                name = package_name(spec)
                if name not in declared:
                    errors.append(AuditIssue(f.path, "UNDECLARED_PACKAGE", f"'{name}' is not declared in package.json", line))

    return errors, warnings


def _security_gate(f: VirtualFile) -> tuple[list[AuditIssue], list[AuditIssue]]:
    hazards: list[AuditIssue] = []
    warnings: list[AuditIssue] = []
    text = f.text

    for name, rx in _SECRETS:
        for m in rx.finditer(text):
            hazards.append(AuditIssue(f.path, "EXPOSED_SECRET", f"{name} {m.group(0)[:8]}***", line_of(text, m.start())))

    if f.kind in CODE_KINDS:
        for m in _EVAL.finditer(text):
            hazards.append(AuditIssue(f.path, "UNSAFE_EVAL", "dynamic code evaluation", line_of(text, m.start())))
        for m in _TELEMETRY.finditer(text):
            host = _TELEMETRY_HOST.search(m.group(0))
            hazards.append(AuditIssue(f.path, "TELEMETRY_ENDPOINT", f"reference to {host.group(0)}", line_of(text, m.start())))
        for m in _HEX_RUN.finditer(text):
            warnings.append(AuditIssue(f.path, "HEX_ESCAPES", "long hex-escaped string", line_of(text, m.start())))

    if f.kind == K.MARKUP:
        for m in _INJECTED_SCRIPT.finditer(text):
            hazards.append(AuditIssue(f.path, "INJECTED_SCRIPT", "platform script tag", line_of(text, m.start())))

    if f.kind == K.ENV and PLACEHOLDER_VALUE in text:
        warnings.append(AuditIssue(f.path, "PLACEHOLDER_VALUES", "placeholder values must be filled before deploy"))

    return hazards, warnings


def audit(tree: VirtualTree, policy: Policy = DEFAULT_POLICY) -> AuditResult:
    """Run both gates. Packaging must not proceed unless `passed`."""
    build_errors, warnings = _build_gate(tree, policy)
    hazards: list[AuditIssue] = []
    for f in tree.files():
        if f.binary:
            continue
        found, warned = _security_gate(f)
        hazards.extend(found)
        warnings.extend(warned)

    return AuditResult(
        passed=not build_errors and not hazards,
        build_errors=tuple(build_errors),
        security_hazards=tuple(hazards),
        warnings=tuple(warnings),
    )


def render_report(result: AuditResult, title: str = "Sovereignty audit") -> str:
    lines = [f"{title}: {'PASSED' if result.passed else 'FAILED'}", ""]
    sections = (
        ("Build errors", result.build_errors),
        ("Security hazards", result.security_hazards),
        ("Warnings", result.warnings),
    )
    for heading, issues in sections:
        lines.append(f"{heading} ({len(issues)}):")
        if not issues:
            lines.append("  none")
        for issue in issues:
            lines.append(f"  - {issue.render()}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
