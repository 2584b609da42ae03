"""Removal filter: path-only classification of files that must not survive."""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase

from sovclean.config import Policy
from sovclean.models import VirtualTree
from sovclean.paths import basename, is_under_dir, normalize_path

ANY_DEPTH = "**/"


@dataclass(frozen=True)
class RemovalResult:
    tree: VirtualTree
    removed: tuple[str, ...]
    reasons: dict[str, str]

    @property
    def count(self) -> int:
        return len(self.removed)


def removal_reason(
    path: str,
    denied_filenames: tuple[str, ...],
    denied_dirs: tuple[str, ...],
    remove_list: frozenset[str],
    remove_prefixes: tuple[str, ...],
) -> str | None:
    """Why a path is removed, or None if it survives. No content is read.

    Denied directories are prefixes anchored at the project root
    ("dist" removes dist/app.js, not src/dist/x.ts). An entry written
    "**/name" matches that directory at any depth.
    """
    name = basename(path)
    for pattern in denied_filenames:
        if fnmatchcase(name, pattern):
            return f"denied filename ({pattern})"

    for entry in denied_dirs:
        any_depth = entry.startswith(ANY_DEPTH)
        prefix = entry[len(ANY_DEPTH):].strip("/") if any_depth else entry.strip("/")
        if not prefix:
            continue
        if any_depth and f"/{prefix}/" in f"/{path}":
            return f"denied directory ({prefix}/)"
        if not any_depth and path.startswith(prefix + "/"):
            return f"denied directory ({prefix}/)"

    if path in remove_list:
        return "external removal list"
    for prefix in remove_prefixes:
        if is_under_dir(path, prefix):
            return f"external removal list ({prefix}/)"
    return None


def _split_remove_list(remove_list: list[str]) -> tuple[frozenset[str], tuple[str, ...]]:
    exact: set[str] = set()
    prefixes: list[str] = []
    for raw in remove_list:
        if not raw or not raw.strip():
            continue
        try:
            path = normalize_path(raw)
        except ValueError:
            # outside the tree: cannot name any file we hold
            continue
        if raw.replace("\\", "/").rstrip().endswith("/"):
            prefixes.append(path)
        else:
            exact.add(path)
    return frozenset(exact), tuple(sorted(prefixes))


def filter_tree(tree: VirtualTree, remove_list: list[str], policy: Policy) -> RemovalResult:
    """Drop denylisted and externally-listed paths from the tree."""
    exact, prefixes = _split_remove_list(remove_list)
    removed: list[str] = []
    reasons: dict[str, str] = {}
    for path in tree:
        reason = removal_reason(path, policy.denied_filenames, policy.denied_dirs, exact, prefixes)
        if reason is not None:
            removed.append(path)
            reasons[path] = reason
    return RemovalResult(tree=tree.without(set(removed)), removed=tuple(removed), reasons=reasons)
