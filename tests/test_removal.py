"""Removal filter: denylisted names, denylisted dirs, external removal list."""

from __future__ import annotations

from sovclean.config import DEFAULT_POLICY, Policy
from sovclean.models import VirtualTree
from sovclean.removal import filter_tree


def _tree(*paths: str) -> VirtualTree:
    return VirtualTree.from_mapping({p: "x" for p in paths})


def test_denied_filenames_and_dirs_removed():
    tree = _tree(
        "package.json",
        "lovable.config.ts",
        ".gptengineer.json",
        ".lovable/settings.json",
        "node_modules/react/index.js",
        "src/App.tsx",
    )
    result = filter_tree(tree, [], DEFAULT_POLICY)
    assert result.tree.paths() == ["package.json", "src/App.tsx"]
    assert result.count == 4
    assert result.reasons[".lovable/settings.json"] == "denied directory (.lovable/)"
    assert result.reasons["lovable.config.ts"].startswith("denied filename")


def test_denied_dirs_are_anchored_at_the_root():
    tree = _tree("dist/app.js", "src/dist/x.ts", "docs/.lovable/notes.md", "dist", "src/App.tsx")
    result = filter_tree(tree, [], DEFAULT_POLICY)
    assert result.removed == ("dist/app.js",)
    assert result.reasons["dist/app.js"] == "denied directory (dist/)"


def test_any_depth_denied_dirs_match_nested_directories():
    tree = _tree("packages/a/node_modules/r.js", "packages/a/.git/HEAD", "packages/a/src/git.ts")
    result = filter_tree(tree, [], DEFAULT_POLICY)
    assert set(result.removed) == {"packages/a/node_modules/r.js", "packages/a/.git/HEAD"}
    assert result.reasons["packages/a/node_modules/r.js"] == "denied directory (node_modules/)"


def test_filename_match_is_case_sensitive_and_basename_only():
    tree = _tree("docs/Lovable.config.md", "src/lovable-helpers.ts")
    result = filter_tree(tree, [], DEFAULT_POLICY)
    assert result.removed == ()


def test_external_removal_list_exact_and_directory():
    tree = _tree("package.json", "src/legacy/a.ts", "src/legacy/b.ts", "src/keep.ts", "notes.md")
    result = filter_tree(tree, ["./notes.md", "src/legacy/", "", "../outside.txt", "missing.ts"], DEFAULT_POLICY)
    assert set(result.removed) == {"notes.md", "src/legacy/a.ts", "src/legacy/b.ts"}
    assert result.reasons["notes.md"] == "external removal list"
    assert result.reasons["src/legacy/a.ts"] == "external removal list (src/legacy/)"


def test_policy_controls_denylists():
    policy = Policy(denied_filenames=("*.bak",), denied_dirs=("tmp",))
    tree = _tree("a.bak", "tmp/x.ts", ".lovable/settings.json")
    result = filter_tree(tree, [], policy)
    assert result.tree.paths() == [".lovable/settings.json"]


def test_input_tree_untouched():
    tree = _tree("lovable.config.ts", "src/App.tsx")
    filter_tree(tree, [], DEFAULT_POLICY)
    assert "lovable.config.ts" in tree
