"""Data models: VirtualFile, VirtualTree, Rule/Action, Finding, polyfills, Report."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Union

from sovclean.kinds import file_kind, is_binary_content, is_binary_path
from sovclean.paths import normalize_path

# Severities, highest first
CRITICAL = "critical"
MAJOR = "major"
MINOR = "minor"

SEVERITY_RANK: dict[str, int] = {CRITICAL: 3, MAJOR: 2, MINOR: 1}

# Rule categories
OBFUSCATION = "obfuscation"
TELEMETRY = "telemetry"
GHOST_HOOK = "ghost-hook"
PROPRIETARY_CDN = "proprietary-cdn"
UNSAFE_EVAL = "unsafe-eval"
PROPRIETARY_IMPORT = "proprietary-import"
PROPRIETARY_DEPENDENCY = "proprietary-dependency"
MISSING_REQUIRED_FILE = "missing-required-file"
# Finding-only categories
EXPOSED_SECRET = "exposed-secret"
UNPROCESSABLE = "unprocessable"

# Verdicts
SOVEREIGN = "sovereign"
REQUIRES_REVIEW = "requires_review"
BLOCKED = "blocked"


@dataclass(frozen=True)
class VirtualFile:
    path: str
    content: str | bytes
    kind: str = ""

    def __post_init__(self) -> None:
        if not self.kind:
            object.__setattr__(self, "kind", file_kind(self.path))

    @property
    def binary(self) -> bool:
        return is_binary_path(self.path) or is_binary_content(self.content)

    @property
    def text(self) -> str:
        """Text content. Only meaningful for non-binary files."""
        if isinstance(self.content, bytes):
            raise TypeError(f"{self.path} is binary")
        return self.content

    def with_content(self, content: str) -> VirtualFile:
        return VirtualFile(path=self.path, content=content, kind=self.kind)


class VirtualTree:
    """Immutable, path-ordered snapshot of a project's files.

    Every transform returns a new tree; nothing is edited in place.
    """

    __slots__ = ("_files",)

    def __init__(self, files: Mapping[str, VirtualFile] | None = None) -> None:
        ordered = dict(sorted((files or {}).items()))
        object.__setattr__(self, "_files", ordered)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("VirtualTree is immutable")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, str | bytes]) -> VirtualTree:
        """Build a tree from a flat path -> content mapping.

        Raises ValueError on paths that escape the root or collide after
        normalization.
        """
        files: dict[str, VirtualFile] = {}
        for raw_path, content in raw.items():
            path = normalize_path(raw_path)
            if path in files:
                raise ValueError(f"Duplicate path after normalization: {raw_path!r}")
            files[path] = VirtualFile(path=path, content=content)
        return cls(files)

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def __getitem__(self, path: str) -> VirtualFile:
        return self._files[path]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VirtualTree):
            return NotImplemented
        return self._files == other._files

    def __hash__(self) -> int:
        return hash(self.digest())

    def __repr__(self) -> str:
        return f"VirtualTree({len(self)} files)"

    def get(self, path: str) -> VirtualFile | None:
        return self._files.get(path)

    def paths(self) -> list[str]:
        return list(self._files)

    def files(self) -> list[VirtualFile]:
        return list(self._files.values())

    def with_files(self, files: list[VirtualFile]) -> VirtualTree:
        merged = dict(self._files)
        for f in files:
            merged[f.path] = f
        return VirtualTree(merged)

    def replace(self, path: str, content: str | bytes) -> VirtualTree:
        """Return a tree where one file's content is swapped; the path must exist."""
        current = self._files[path]
        merged = dict(self._files)
        merged[path] = VirtualFile(path=path, content=content, kind=current.kind)
        return VirtualTree(merged)

    def without(self, paths: set[str]) -> VirtualTree:
        return VirtualTree({p: f for p, f in self._files.items() if p not in paths})

    def to_mapping(self) -> dict[str, str | bytes]:
        return {p: f.content for p, f in self._files.items()}

    def total_chars(self) -> int:
        return sum(len(f.content) for f in self._files.values())

    def digest(self) -> str:
        """SHA-256 over (path, content) pairs in path order."""
        h = hashlib.sha256()
        for path, f in self._files.items():
            data = f.content if isinstance(f.content, bytes) else f.content.encode("utf-8")
            h.update(path.encode("utf-8"))
            h.update(b"\0")
            h.update(hashlib.sha256(data).digest())
        return h.hexdigest()


# --- Rule actions: closed set, dispatched exhaustively ---


@dataclass(frozen=True)
class Delete:
    """Drop the whole file."""


@dataclass(frozen=True)
class Rewrite:
    """Replace the matched span. `replacement` is a re template (\\g<name> allowed)."""

    replacement: str = ""


@dataclass(frozen=True)
class FlagOnly:
    """Report, leave content untouched."""


Action = Union[Delete, Rewrite, FlagOnly]


@dataclass(frozen=True)
class Rule:
    rule_id: str
    category: str
    severity: str
    applies_to: frozenset[str]
    pattern: re.Pattern[str]
    action: Action
    description: str
    remediation: str
    trigger: str | None = None
    predicate: Callable[[re.Match[str]], bool] | None = None

    def matches(self, content: str) -> Iterator[re.Match[str]]:
        for m in self.pattern.finditer(content):
            if m.end() == m.start():
                continue
            if self.predicate is not None and not self.predicate(m):
                continue
            yield m


@dataclass(frozen=True)
class Finding:
    path: str
    category: str
    severity: str
    description: str
    rule_id: str = ""
    line: int | None = None
    snippet: str = ""
    remediation: str = ""
    quarantined: bool = False
    trigger: str | None = None

    def key(self) -> tuple[str, str, str]:
        return (self.path, self.rule_id, self.snippet)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "path": self.path,
            "category": self.category,
            "severity": self.severity,
            "description": self.description,
            "quarantined": self.quarantined,
        }
        if self.line is not None:
            out["line"] = self.line
        if self.rule_id:
            out["ruleId"] = self.rule_id
        if self.snippet:
            out["snippet"] = self.snippet
        if self.remediation:
            out["remediation"] = self.remediation
        return out


@dataclass(frozen=True)
class PolyfillModule:
    trigger: str
    path: str
    exports: tuple[str, ...]
    content: str


@dataclass(frozen=True)
class SovereigntyScore:
    score: int
    verdict: str
    grade: str
    counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Report:
    project_id: str
    files_scanned: int
    files_removed: int
    files_cleaned: int
    files_verified_clean: int
    polyfills_generated: int
    packages_removed: int
    findings: tuple[Finding, ...]
    score: SovereigntyScore
    catalog_version: str = ""
    score_before: SovereigntyScore | None = None  # detection-only, before any rewrite
    env_vars: tuple[str, ...] = ()

    @property
    def verdict(self) -> str:
        return self.score.verdict

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "projectId": self.project_id,
            "filesScanned": self.files_scanned,
            "filesRemoved": self.files_removed,
            "filesCleaned": self.files_cleaned,
            "filesVerifiedClean": self.files_verified_clean,
            "polyfillsGenerated": self.polyfills_generated,
            "packagesRemoved": self.packages_removed,
            "findings": [f.to_dict() for f in self.findings],
            "issueCounts": dict(self.score.counts),
            "grade": self.score.grade,
            "score": self.score.score,
            "verdict": self.score.verdict,
            "catalogVersion": self.catalog_version,
            "envVars": list(self.env_vars),
        }
        if self.score_before is not None:
            out["scoreBefore"] = self.score_before.score
            out["gradeBefore"] = self.score_before.grade
        return out
