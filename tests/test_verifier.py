"""Verifier: detection-only rescan, single bounded retry, residual findings."""

from __future__ import annotations

import re

from sovclean.models import CRITICAL, MAJOR, MINOR, FlagOnly, Rewrite, Rule, VirtualTree
from sovclean.rewriter import rewrite_file
from sovclean.rules import build_catalog
from sovclean.verifier import MAX_RETRY_PASSES, verify


def _catalog(pattern: str, action, severity=MAJOR):
    rule = Rule(
        rule_id="test-rule",
        category="ghost-hook",
        severity=severity,
        applies_to=frozenset({"source"}),
        pattern=re.compile(pattern),
        action=action,
        description="test rule",
        remediation="",
    )
    return build_catalog(rules=[rule])


def _rewrite_pass(tree: VirtualTree, catalog):
    known = set()
    for path in tree:
        result = rewrite_file(tree[path], catalog, 10_000)
        known.update(f.key() for f in result.findings)
        if result.modified:
            tree = tree.replace(path, result.content)
    return tree, known


def test_clean_tree_needs_no_retry():
    tree = VirtualTree.from_mapping({"src/a.ts": "export const a = 1;\n", "logo.png": b"\x89PNG"})
    outcome = verify(tree, set(), build_catalog(), 10_000)
    assert outcome.passes == 0
    assert outcome.residual == ()
    assert outcome.tree is tree
    assert outcome.clean_paths == frozenset({"src/a.ts"})


def test_retry_is_bounded_and_leftovers_become_residual():
    catalog = _catalog(r"ab", Rewrite(""))
    tree, known = _rewrite_pass(VirtualTree.from_mapping({"src/x.ts": "aaabbb"}), catalog)
    assert tree["src/x.ts"].text == "aabb"

    outcome = verify(tree, known, catalog, 10_000)
    assert MAX_RETRY_PASSES == 1
    assert outcome.passes == 1
    assert outcome.retried == ("src/x.ts",)
    assert outcome.tree["src/x.ts"].text == "ab"
    (residual,) = outcome.residual
    assert residual.description.startswith("residual: ")
    assert not residual.quarantined
    assert outcome.retry_findings == ()


def test_known_flag_only_finding_is_resolved():
    catalog = _catalog(r"hmm", FlagOnly(), severity=MINOR)
    tree, known = _rewrite_pass(VirtualTree.from_mapping({"src/x.ts": "hmm\n"}), catalog)
    outcome = verify(tree, known, catalog, 10_000)
    assert outcome.passes == 0
    assert outcome.residual == ()


def test_critical_flag_only_always_surfaces_as_residual():
    catalog = _catalog(r"danger", FlagOnly(), severity=CRITICAL)
    tree, known = _rewrite_pass(VirtualTree.from_mapping({"src/x.ts": "danger\n"}), catalog)
    outcome = verify(tree, known, catalog, 10_000)
    assert outcome.passes == 1
    assert [f.severity for f in outcome.residual] == [CRITICAL]


def test_unknown_detection_is_rewritten_in_retry():
    tree = VirtualTree.from_mapping({"src/x.ts": 'import "@lovable/runtime";\nexport {};\n'})
    outcome = verify(tree, set(), build_catalog(), 10_000)
    assert outcome.passes == 1
    assert outcome.tree["src/x.ts"].text == "export {};\n"
    assert [f.rule_id for f in outcome.retry_findings] == ["proprietary-import"]
    assert outcome.residual == ()
    assert "src/x.ts" in outcome.clean_paths


def test_retry_can_delete_generated_config():
    tree = VirtualTree.from_mapping({
        "vite.config.ts": "// generated by lovable\nexport default {};\n",
        "src/a.ts": "export const a = 1;\n",
    })
    outcome = verify(tree, set(), build_catalog(), 10_000)
    assert outcome.deleted == ("vite.config.ts",)
    assert "vite.config.ts" not in outcome.tree
    assert outcome.residual == ()


def test_map_fn_is_used_for_fan_out():
    calls = []

    def tracking_map(fn, items):
        items = list(items)
        calls.append(len(items))
        return map(fn, items)

    tree = VirtualTree.from_mapping({"src/a.ts": "a", "src/b.ts": "b"})
    verify(tree, set(), build_catalog(), 10_000, map_fn=tracking_map)
    assert calls == [2]
