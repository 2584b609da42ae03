"""Virtual path utilities: normalization, root confinement, directory membership."""

from __future__ import annotations

import posixpath


def normalize_path(path: str) -> str:
    """Normalize a project-relative path to a unique identifier.

    "./src\\App.tsx" -> "src/App.tsx"
    "/a/./b"         -> "a/b"

    Raises ValueError if the path is empty or escapes the tree root.
    """
    p = path.replace("\\", "/").strip()
    while p.startswith("./"):
        p = p[2:]
    p = p.lstrip("/")
    if not p:
        raise ValueError("Empty path")
    p = posixpath.normpath(p)
    if p == "." or not is_under_root(p):
        raise ValueError(f"Path escapes tree root: {path!r}")
    return p


def is_under_root(path: str) -> bool:
    """Check that a normalized relative path stays inside the tree root."""
    return not (path == ".." or path.startswith("../") or path.startswith("/"))


def basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def is_under_dir(path: str, prefix: str) -> bool:
    """Check whether path lives under the directory prefix ("src/" or "src")."""
    prefix = prefix.strip("/")
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix + "/")


def relative_import(from_path: str, to_path: str) -> str:
    """Relative import specifier from one file to another module path.

    relative_import("src/pages/App.tsx", "src/__sovereign_shims__")
        -> "../__sovereign_shims__"
    """
    start = posixpath.dirname(from_path) or "."
    rel = posixpath.relpath(to_path, start)
    if not rel.startswith("."):
        rel = "./" + rel
    return rel
