"""Verifier: detection-only rescan of the assembled tree with one bounded retry."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Iterable

from sovclean.log import EventLogger, get_logger
from sovclean.models import CRITICAL, Finding, VirtualTree
from sovclean.rewriter import FileResult, detect_file, rewrite_file
from sovclean.rules import Catalog

MAX_RETRY_PASSES = 1

MapFn = Callable[..., Iterable]


@dataclass(frozen=True)
class VerifyOutcome:
    tree: VirtualTree
    retry_findings: tuple[Finding, ...]
    residual: tuple[Finding, ...]
    retried: tuple[str, ...]
    deleted: tuple[str, ...]
    passes: int
    clean_paths: frozenset[str]


def is_unresolved(detection: Finding, known: set[tuple[str, str, str]]) -> bool:
    """New, or something the engine claims to remove, or critical."""
    return detection.key() not in known or detection.quarantined or detection.severity == CRITICAL


def detect_tree(
    tree: VirtualTree,
    paths: Iterable[str],
    catalog: Catalog,
    max_file_chars: int,
    map_fn: MapFn = map,
    time_budget_ms: int = 0,
) -> dict[str, list[Finding]]:
    paths = list(paths)
    files = [tree[p] for p in paths]
    detected = map_fn(lambda f: detect_file(f, catalog, max_file_chars, time_budget_ms), files)
    return dict(zip(paths, detected))


def as_residual(detection: Finding) -> Finding:
    return replace(detection, quarantined=False, description=f"residual: {detection.description}")


def verify(
    tree: VirtualTree,
    known: set[tuple[str, str, str]],
    catalog: Catalog,
    max_file_chars: int,
    map_fn: MapFn = map,
    logger: EventLogger | None = None,
    time_budget_ms: int = 0,
) -> VerifyOutcome:
    """Rescan, re-rewrite unresolved files at most MAX_RETRY_PASSES times.

    `known` holds the keys of every finding the rewrite pass produced.
    Anything still unresolved after the retry comes back as a residual
    finding; nothing is dropped.
    """
    logger = logger or get_logger("verifier")
    known = set(known)
    detections = detect_tree(tree, tree.paths(), catalog, max_file_chars, map_fn, time_budget_ms)

    retry_findings: list[Finding] = []
    retried: list[str] = []
    deleted: list[str] = []
    passes = 0

    while passes < MAX_RETRY_PASSES:
        targets = sorted(p for p, found in detections.items() if any(is_unresolved(d, known) for d in found))
        if not targets:
            break
        passes += 1
        logger.info("verify.retry", "re-rewriting unresolved files", pass_no=passes, files=len(targets))

        results: list[FileResult] = list(
            map_fn(lambda p: rewrite_file(tree[p], catalog, max_file_chars, logger, time_budget_ms), targets)
        )
        changed = []
        gone: set[str] = set()
        for result in results:
            for f in result.findings:
                if f.key() not in known:
                    retry_findings.append(f)
                    known.add(f.key())
            if result.deleted:
                gone.add(result.path)
            elif result.modified:
                changed.append((result.path, result.content))

        for path, content in changed:
            tree = tree.replace(path, content)
        if gone:
            tree = tree.without(gone)
            deleted.extend(sorted(gone))
        retried.extend(targets)

        for p in gone:
            detections.pop(p, None)
        survivors = [p for p in targets if p not in gone]
        detections.update(detect_tree(tree, survivors, catalog, max_file_chars, map_fn, time_budget_ms))

    residual = [
        as_residual(d)
        for p in sorted(detections)
        for d in detections[p]
        if is_unresolved(d, known)
    ]
    if residual:
        logger.warning("verify.residual", "findings survived the retry pass", count=len(residual))

    clean_paths = frozenset(
        p for p, found in detections.items() if not found and not tree[p].binary
    )
    return VerifyOutcome(
        tree=tree,
        retry_findings=tuple(retry_findings),
        residual=tuple(residual),
        retried=tuple(retried),
        deleted=tuple(deleted),
        passes=passes,
        clean_paths=clean_paths,
    )
