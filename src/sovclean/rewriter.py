"""Per-file rewriter: one cleaning strategy per file kind.

Every strategy is a pure function of (file, catalog, deadline). Faults and
time-budget overruns inside a strategy never escape rewrite_file(); they
become `unprocessable` findings and the file passes through unchanged.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sovclean import kinds as K
from sovclean.errors import PatternTimeout
from sovclean.log import EventLogger, get_logger
from sovclean.models import (
    CRITICAL,
    GHOST_HOOK,
    MAJOR,
    MINOR,
    PROPRIETARY_DEPENDENCY,
    UNPROCESSABLE,
    Finding,
    VirtualFile,
)
from sovclean.rules import Catalog, first_delete_match, line_of, rewrite_content, scan_content

DEPENDENCY_SECTIONS: tuple[str, ...] = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)

# `v0` alone is too common a token (tags, branches); only count it when run
# through a package runner
PLATFORM_CLI_RE = re.compile(
    r"(?:^|[\s;&|(])"
    r"(?:(?:npx\s+|pnpm\s+dlx\s+|bunx\s+)?(?:lovable|gpt-?engineer|gpteng|bolt)|(?:npx\s+|pnpm\s+dlx\s+|bunx\s+)v0)"
    r"(?:-[\w-]+)?(?=$|[\s;&|)])"
)

MANIFEST_UNPARSABLE = "manifest-unparsable"
PROPRIETARY_DEPENDENCY_RULE = "proprietary-dependency"
PLATFORM_CLI_SCRIPT = "platform-cli-script"
OVERSIZED_FILE = "oversized-file"
ENGINE_FAULT = "engine-fault"
PATTERN_TIMEOUT = "pattern-timeout"


@dataclass(frozen=True)
class FileResult:
    path: str
    content: str | bytes | None  # None when the file is deleted
    findings: tuple[Finding, ...] = ()
    modified: bool = False
    deleted: bool = False
    packages_removed: int = 0
    notes: tuple[str, ...] = field(default=())


# --- Strategies ---


def clean_source(file: VirtualFile, catalog: Catalog, deadline: float | None = None) -> FileResult:
    """Additive span rewriting; source files are never deleted by content rules."""
    content, findings = rewrite_content(catalog.rules_for(file.kind), file.path, file.text, deadline)
    return FileResult(
        path=file.path,
        content=content,
        findings=tuple(findings),
        modified=content != file.text,
    )


def clean_textual(file: VirtualFile, catalog: Catalog, deadline: float | None = None) -> FileResult:
    """Delete rules first (short-circuit), then span rewriting."""
    text = file.text
    hit = first_delete_match(catalog.delete_rules_for(file.kind), text, deadline)
    if hit is not None:
        rule, m = hit
        finding = Finding(
            path=file.path,
            category=rule.category,
            severity=rule.severity,
            description=rule.description,
            rule_id=rule.rule_id,
            line=line_of(text, m.start()),
            snippet=" ".join(m.group(0).split()),
            remediation=rule.remediation,
            quarantined=True,
            trigger=rule.trigger,
        )
        return FileResult(path=file.path, content=None, findings=(finding,), modified=True, deleted=True)

    content, findings = rewrite_content(catalog.rules_for(file.kind), file.path, text, deadline)
    return FileResult(
        path=file.path,
        content=content,
        findings=tuple(findings),
        modified=content != text,
    )


def _manifest_line(text: str, needle: str) -> int | None:
    idx = text.find(needle)
    return line_of(text, idx) if idx >= 0 else None


def clean_manifest(file: VirtualFile, catalog: Catalog, deadline: float | None = None) -> FileResult:
    """Remove denied packages and platform CLI scripts from package.json.

    The document is re-serialized only when something was removed, so an
    already-clean manifest keeps its exact formatting.
    """
    text = file.text
    try:
        data = json.loads(text)
    except ValueError as exc:
        return _unparsable(file, f"invalid JSON: {exc}")
    if not isinstance(data, dict):
        return _unparsable(file, "top-level value is not an object")

    findings: list[Finding] = []
    removed = 0

    for section in DEPENDENCY_SECTIONS:
        deps = data.get(section)
        if not isinstance(deps, dict):
            continue
        for name in list(deps):
            if not catalog.is_denied_package(name):
                continue
            version = deps.pop(name)
            removed += 1
            findings.append(Finding(
                path=file.path,
                category=PROPRIETARY_DEPENDENCY,
                severity=CRITICAL,
                description=f"Proprietary dependency removed: {name}",
                rule_id=PROPRIETARY_DEPENDENCY_RULE,
                line=_manifest_line(text, f'"{name}"'),
                snippet=f"{section}.{name}@{version}",
                remediation="Replace the package with an open-source alternative if the app needs it.",
                quarantined=True,
            ))

    scripts = data.get("scripts")
    if isinstance(scripts, dict):
        for key in list(scripts):
            value = scripts[key]
            if isinstance(value, str) and PLATFORM_CLI_RE.search(value):
                del scripts[key]
                findings.append(Finding(
                    path=file.path,
                    category=GHOST_HOOK,
                    severity=MAJOR,
                    description=f"Script invoking a platform CLI removed: {key}",
                    rule_id=PLATFORM_CLI_SCRIPT,
                    line=_manifest_line(text, f'"{key}"'),
                    snippet=f"scripts.{key}: {value}"[:200],
                    remediation="Re-add the script using the framework's own CLI if needed.",
                    quarantined=True,
                ))

    if not findings:
        return FileResult(path=file.path, content=text)

    content = json.dumps(data, indent=2, ensure_ascii=False)
    if text.endswith("\n"):
        content += "\n"
    return FileResult(
        path=file.path,
        content=content,
        findings=tuple(findings),
        modified=content != text,
        packages_removed=removed,
    )


def _unparsable(file: VirtualFile, reason: str) -> FileResult:
    finding = Finding(
        path=file.path,
        category=UNPROCESSABLE,
        severity=MAJOR,
        description="manifest unparsable",
        rule_id=MANIFEST_UNPARSABLE,
        remediation=f"Fix the manifest by hand ({reason}); dependencies were not checked.",
        quarantined=False,
    )
    return FileResult(path=file.path, content=file.text, findings=(finding,), notes=(reason,))


Strategy = Callable[..., FileResult]

STRATEGIES: dict[str, Strategy] = {
    K.MANIFEST: clean_manifest,
    K.SOURCE: clean_source,
    K.BUILD_CONFIG: clean_textual,
    K.MARKUP: clean_textual,
    K.STYLESHEET: clean_textual,
    K.ENV: clean_textual,
    K.DOC: clean_textual,
    K.SHELL: clean_textual,
    K.SQL: clean_textual,
    K.OTHER: clean_textual,
}


# --- Entry points ---


def _unprocessable(file: VirtualFile, rule_id: str, description: str) -> FileResult:
    finding = Finding(
        path=file.path,
        category=UNPROCESSABLE,
        severity=MINOR,
        description=description,
        rule_id=rule_id,
        remediation="Review this file by hand; it was passed through unchanged.",
        quarantined=False,
    )
    return FileResult(path=file.path, content=file.content, findings=(finding,), notes=(description,))


def _deadline(time_budget_ms: int) -> float | None:
    if time_budget_ms <= 0:
        return None
    return time.monotonic() + time_budget_ms / 1000


def _timed_out(file: VirtualFile, time_budget_ms: int) -> FileResult:
    return _unprocessable(file, PATTERN_TIMEOUT, f"pattern timeout: rules ran past {time_budget_ms}ms")


def _oversized(file: VirtualFile, max_file_chars: int) -> FileResult:
    return _unprocessable(file, OVERSIZED_FILE, f"file exceeds {max_file_chars} characters")


def rewrite_file(
    file: VirtualFile,
    catalog: Catalog,
    max_file_chars: int,
    logger: EventLogger | None = None,
    time_budget_ms: int = 0,
) -> FileResult:
    """Clean one file. Never raises for a bad file.

    A positive `time_budget_ms` bounds how long the rules may run on this
    file; on overrun the file passes through with a minor finding.
    """
    if file.binary:
        return FileResult(path=file.path, content=file.content)

    logger = logger or get_logger("rewriter")
    if len(file.text) > max_file_chars:
        logger.warning(
            "file.oversized", "passed through unchanged",
            path=file.path, chars=len(file.text), limit=max_file_chars,
        )
        return _oversized(file, max_file_chars)

    strategy = STRATEGIES.get(file.kind, clean_textual)
    try:
        return strategy(file, catalog, _deadline(time_budget_ms))
    except PatternTimeout as exc:
        logger.warning("file.timeout", str(exc), path=file.path, budget_ms=time_budget_ms)
        return _timed_out(file, time_budget_ms)
    except Exception as exc:  # one bad file must not stop the run
        logger.exception("file.fault", exc, path=file.path, kind=file.kind)
        return _unprocessable(file, ENGINE_FAULT, f"engine fault: {type(exc).__name__}")


def detect_file(file: VirtualFile, catalog: Catalog, max_file_chars: int, time_budget_ms: int = 0) -> list[Finding]:
    """What the rewriter would act on in this file, without changing it.

    Files the rewriter cannot process report the same `unprocessable`
    finding here, so they are never counted as verified clean.
    """
    if file.binary:
        return []
    if len(file.text) > max_file_chars:
        return list(_oversized(file, max_file_chars).findings)
    try:
        if file.kind == K.MANIFEST:
            return list(clean_manifest(file, catalog).findings)
        deadline = _deadline(time_budget_ms)
        return scan_content(catalog.detection_rules_for(file.kind), file.path, file.text, deadline)
    except PatternTimeout:
        return list(_timed_out(file, time_budget_ms).findings)
    except Exception as exc:
        get_logger("verifier").exception("file.fault", exc, path=file.path, kind=file.kind)
        return []


def summarize(results: list[FileResult]) -> dict[str, Any]:
    return {
        "modified": sum(1 for r in results if r.modified and not r.deleted),
        "deleted": sum(1 for r in results if r.deleted),
        "findings": sum(len(r.findings) for r in results),
        "packagesRemoved": sum(r.packages_removed for r in results),
    }
